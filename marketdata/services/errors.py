"""
Service layer exceptions.

Callers can tell "try again later" failures (``retryable = True``) apart from
bad input and genuinely missing data.
"""


class MarketDataError(Exception):
    """Base exception for market data errors."""

    retryable = False

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class ValidationError(MarketDataError):
    """Request input is missing or invalid."""

    pass


class RateLimitExceeded(MarketDataError):
    """Caller exceeded the request ceiling for the current window."""

    retryable = True

    def __init__(self, identifier: str, retry_after: float | None = None):
        self.identifier = identifier
        self.retry_after = retry_after
        msg = f"Rate limit exceeded for '{identifier}'"
        if retry_after:
            msg += f", retry after {retry_after:.1f}s"
        super().__init__(msg)


class CircuitOpen(MarketDataError):
    """Circuit breaker is open, request blocked."""

    retryable = True

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class OriginError(MarketDataError):
    """Upstream market data provider failed."""

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, service_id=service_id)


class AuthError(OriginError):
    """Upstream rejected our credentials (401/403)."""

    pass


class OriginRateLimited(OriginError):
    """Upstream is throttling us (429)."""

    retryable = True

    def __init__(
        self,
        message: str,
        service_id: str | None = None,
        retry_after: float | None = None,
    ):
        self.retry_after = retry_after
        super().__init__(message, service_id=service_id, status_code=429)


class OriginUnavailable(OriginError):
    """Upstream returned 5xx, timed out, or could not be reached."""

    retryable = True


class OriginMalformedResponse(OriginError):
    """Upstream answered but the payload is not usable."""

    pass


class StorageError(MarketDataError):
    """Persistent store operation failed."""

    pass


class CacheError(MarketDataError):
    """Hot cache operation failed."""

    pass


class NotFoundError(MarketDataError):
    """No market data exists for the requested key."""

    pass

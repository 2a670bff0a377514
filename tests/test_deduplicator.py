"""
Tests for single-flight request deduplication.
"""

import asyncio

import pytest

from marketdata.services.deduplicator import RequestDeduplicator
from marketdata.services.errors import OriginUnavailable


class TestDedupe:
    """Tests for concurrent callers sharing one request."""

    @pytest.mark.asyncio
    async def test_concurrent_same_key_runs_once(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            await release.wait()
            return "record"

        waiters = [asyncio.create_task(dedup.dedupe("k", request)) for _ in range(5)]
        await asyncio.sleep(0)
        assert dedup.get_in_flight_count() == 1

        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["record"] * 5
        assert calls == 1
        assert dedup.get_in_flight_count() == 0

        stats = dedup.get_stats().to_dict()
        assert stats["total_requests"] == 1
        assert stats["deduplicated"] == 4

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator()
        calls: list[str] = []

        async def request(key):
            calls.append(key)
            await asyncio.sleep(0)
            return key

        results = await asyncio.gather(
            dedup.dedupe("a", lambda: request("a")),
            dedup.dedupe("b", lambda: request("b")),
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def request():
            await release.wait()
            raise OriginUnavailable("down")

        waiters = [asyncio.create_task(dedup.dedupe("k", request)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()

        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, OriginUnavailable) for r in results)
        assert dedup.get_in_flight_count() == 0

    @pytest.mark.asyncio
    async def test_sequential_calls_are_not_shared(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.dedupe("k", request) == 1
        assert await dedup.dedupe("k", request) == 2

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_request(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def request():
            await release.wait()
            return "record"

        first = asyncio.create_task(dedup.dedupe("k", request))
        second = asyncio.create_task(dedup.dedupe("k", request))
        await asyncio.sleep(0)

        first.cancel()
        release.set()

        assert await second == "record"
        with pytest.raises(asyncio.CancelledError):
            await first

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        dedup = RequestDeduplicator()

        async def request():
            await asyncio.sleep(60)

        waiter = asyncio.create_task(dedup.dedupe("k", request))
        await asyncio.sleep(0)

        assert await dedup.cancel_all() == 1
        with pytest.raises(asyncio.CancelledError):
            await waiter

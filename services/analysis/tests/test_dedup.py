"""
Tests for RequestDeduplicator: coalescing, settle/expiry cleanup and cancellation.
"""

import asyncio

import pytest

from glow_engine.cancellation import CancellationToken
from glow_engine.dedup import RequestDeduplicator, make_request_key
from glow_engine.errors import NetworkError, NetworkErrorCode


class TestRequestKey:
    """Tests for canonical request keys."""

    def test_key_ignores_dict_order(self):
        a = make_request_key("https://x/annotate", {"a": 1, "b": [1, 2]})
        b = make_request_key("https://x/annotate", {"b": [1, 2], "a": 1})
        assert a == b

    def test_key_depends_on_endpoint_and_body(self):
        base = make_request_key("https://x/a", {"a": 1})
        assert base != make_request_key("https://x/b", {"a": 1})
        assert base != make_request_key("https://x/a", {"a": 2})
        assert base.startswith("https://x/a:")


class TestCoalescing:
    """Tests for sharing one in-flight operation."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_invocation(self):
        """Two concurrent identical calls should run the operation once."""
        dedup = RequestDeduplicator(window_ms=5_000)
        calls = []

        async def start(token):
            calls.append(token)
            await asyncio.sleep(0.02)
            return {"value": 42}

        first, second = await asyncio.gather(
            dedup.coalesce("k", start), dedup.coalesce("k", start)
        )

        assert len(calls) == 1
        assert first == second == {"value": 42}
        assert len(dedup) == 0

    @pytest.mark.asyncio
    async def test_shared_error(self):
        """All callers should observe the same error."""
        dedup = RequestDeduplicator()
        calls = []

        async def start(token):
            calls.append(1)
            await asyncio.sleep(0.01)
            raise NetworkError("HTTP 500", NetworkErrorCode.HTTP, http_status=500)

        results = await asyncio.gather(
            dedup.coalesce("k", start), dedup.coalesce("k", start), return_exceptions=True
        )

        assert len(calls) == 1
        assert all(isinstance(r, NetworkError) for r in results)
        assert results[0] is results[1]
        assert len(dedup) == 0

    @pytest.mark.asyncio
    async def test_distinct_keys_run_separately(self):
        dedup = RequestDeduplicator()
        calls = []

        async def start(token):
            calls.append(1)
            await asyncio.sleep(0.01)
            return len(calls)

        await asyncio.gather(dedup.coalesce("a", start), dedup.coalesce("b", start))

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_sequential_calls_start_fresh(self):
        """Settled entries are removed, so a later call runs again."""
        dedup = RequestDeduplicator()
        calls = []

        async def start(token):
            calls.append(1)
            return "ok"

        await dedup.coalesce("k", start)
        await dedup.coalesce("k", start)

        assert len(calls) == 2


class TestExpiry:
    """Tests for the dedup-expiry window."""

    @pytest.mark.asyncio
    async def test_window_expiry_aborts_and_removes(self):
        dedup = RequestDeduplicator(window_ms=20)

        async def start(token):
            await token.wait()
            raise NetworkError("aborted", NetworkErrorCode.ABORTED)

        with pytest.raises(NetworkError) as exc_info:
            await dedup.coalesce("k", start)

        assert exc_info.value.aborted
        assert len(dedup) == 0

    @pytest.mark.asyncio
    async def test_expired_entry_not_joined(self):
        """After expiry a new caller starts a new operation."""
        dedup = RequestDeduplicator(window_ms=20)
        calls = []

        async def slow(token):
            calls.append(token)
            try:
                await asyncio.wait_for(token.wait(), timeout=1)
            except asyncio.TimeoutError:
                return "late"
            return "cut"

        first = asyncio.create_task(dedup.coalesce("k", slow))
        await asyncio.sleep(0.05)
        assert calls[0].cancelled
        assert not dedup.in_flight("k")

        async def fast(token):
            calls.append(token)
            return "fresh"

        assert await dedup.coalesce("k", fast) == "fresh"
        assert await first == "cut"
        assert len(calls) == 2


class TestCancellation:
    """Tests for per-caller cancellation."""

    @pytest.mark.asyncio
    async def test_sole_caller_cancel_aborts_operation(self):
        dedup = RequestDeduplicator()
        started = asyncio.Event()
        shared = {}

        async def start(token):
            shared["token"] = token
            started.set()
            await token.wait()
            raise NetworkError("aborted", NetworkErrorCode.ABORTED)

        token = CancellationToken()
        task = asyncio.create_task(dedup.coalesce("k", start, cancel_token=token))
        await started.wait()
        token.cancel()

        with pytest.raises(NetworkError) as exc_info:
            await task

        assert exc_info.value.code is NetworkErrorCode.ABORTED
        assert shared["token"].cancelled
        assert len(dedup) == 0

    @pytest.mark.asyncio
    async def test_one_caller_cancel_does_not_poison_others(self):
        """A cancelling caller leaves; the remaining caller still gets the value."""
        dedup = RequestDeduplicator()
        shared = {}

        async def start(token):
            shared["token"] = token
            await asyncio.sleep(0.05)
            return "value"

        leaving = CancellationToken()
        first = asyncio.create_task(dedup.coalesce("k", start, cancel_token=leaving))
        second = asyncio.create_task(dedup.coalesce("k", start))
        await asyncio.sleep(0.01)
        leaving.cancel()

        with pytest.raises(NetworkError):
            await first
        assert await second == "value"
        assert not shared["token"].cancelled

    @pytest.mark.asyncio
    async def test_cancelled_token_rejected_upfront(self):
        dedup = RequestDeduplicator()
        token = CancellationToken()
        token.cancel()

        async def start(token):  # pragma: no cover
            raise AssertionError("should not start")

        with pytest.raises(NetworkError):
            await dedup.coalesce("k", start, cancel_token=token)

    @pytest.mark.asyncio
    async def test_cancel_all(self):
        dedup = RequestDeduplicator()

        async def start(token):
            await token.wait()
            raise NetworkError("aborted", NetworkErrorCode.ABORTED)

        task = asyncio.create_task(dedup.coalesce("k", start))
        await asyncio.sleep(0)
        assert dedup.cancel_all() == 1

        with pytest.raises(NetworkError):
            await task

"""
Tests for NetworkClient: retry policy, error classification, timeouts and cancellation.
"""

import asyncio
import json

import httpx
import pytest

from conftest import make_network
from glow_engine.cancellation import CancellationToken
from glow_engine.errors import NetworkError, NetworkErrorCode, ParseError, is_retryable
from glow_engine.network import RequestConfig

URL = "https://api.test/v1/annotate"


class TestClassification:
    """Tests for the pure retryable classification."""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 408, 429])
    def test_retryable_statuses(self, status):
        assert is_retryable(status, NetworkErrorCode.HTTP) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_terminal_statuses(self, status):
        assert is_retryable(status, NetworkErrorCode.HTTP) is False

    def test_no_response_is_retryable(self):
        assert is_retryable(None, NetworkErrorCode.NETWORK) is True
        assert is_retryable(None, NetworkErrorCode.TIMEOUT) is True

    def test_aborted_never_retryable(self):
        assert is_retryable(None, NetworkErrorCode.ABORTED) is False
        assert NetworkError("x", NetworkErrorCode.ABORTED).retryable is False


class TestRequestConfig:
    """Tests for backoff computation."""

    def test_exponential_backoff(self):
        config = RequestConfig(retry_delay_ms=1000)

        assert [config.backoff_ms(n) for n in (1, 2, 3)] == [1000, 2000, 4000]

    def test_jitter_bounds(self):
        config = RequestConfig(retry_delay_ms=1000, jitter=True)
        for _ in range(50):
            assert 500 <= config.backoff_ms(1) <= 1500

    def test_from_settings_overrides(self, settings):
        config = RequestConfig.from_settings(settings, timeout_ms=5)

        assert config.timeout_ms == 5
        assert config.max_retries == settings.request_max_retries
        assert config.max_attempts == settings.request_max_retries + 1


class TestRetryPolicy:
    """Tests for the send retry loop."""

    @pytest.mark.asyncio
    async def test_retries_503_then_succeeds(self):
        """Two 503s then a 200 should succeed on exactly the third attempt."""
        statuses = iter([503, 503, 200])
        client, transport = make_network(
            lambda request: httpx.Response(next(statuses), json={"ok": True})
        )

        payload = await client.post_json(URL, {"a": 1})

        assert payload == {"ok": True}
        assert transport.calls == 3

    @pytest.mark.asyncio
    async def test_404_single_attempt(self):
        """A terminal 4xx should not be retried."""
        client, transport = make_network(lambda request: httpx.Response(404))

        with pytest.raises(NetworkError) as exc_info:
            await client.post_json(URL, {"a": 1})

        assert transport.calls == 1
        assert exc_info.value.code is NetworkErrorCode.HTTP
        assert exc_info.value.http_status == 404
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_exhausted_retries(self):
        """Should give up after max_retries + 1 attempts."""
        client, transport = make_network(
            lambda request: httpx.Response(500),
            RequestConfig(timeout_ms=1_000, max_retries=2, retry_delay_ms=1),
        )

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL, "POST", {"a": 1})

        assert transport.calls == 3
        assert exc_info.value.http_status == 500

    @pytest.mark.asyncio
    async def test_connect_error_is_network(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, transport = make_network(
            handler, RequestConfig(timeout_ms=1_000, max_retries=1, retry_delay_ms=1)
        )

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL)

        assert exc_info.value.code is NetworkErrorCode.NETWORK
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_json_body_sent(self):
        client, transport = make_network(lambda request: httpx.Response(200, json={}))

        await client.post_json(URL, {"image": {"content": "abc"}})

        assert transport.requests[0].method == "POST"
        assert json.loads(transport.requests[0].read()) == {"image": {"content": "abc"}}

    @pytest.mark.asyncio
    async def test_non_json_body_is_parse_error(self):
        client, _ = make_network(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(ParseError) as exc_info:
            await client.post_json(URL, {})

        assert "<html>" in exc_info.value.excerpt


class TestTimeouts:
    """Tests for per-attempt timeouts."""

    @pytest.mark.asyncio
    async def test_attempt_timeout(self):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        client, transport = make_network(
            slow, RequestConfig(timeout_ms=20, max_retries=1, retry_delay_ms=1)
        )

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL)

        assert exc_info.value.code is NetworkErrorCode.TIMEOUT
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_timeout_then_success(self):
        """Each retry gets a fresh timeout window."""
        calls = {"n": 0}

        async def flaky(request):
            calls["n"] += 1
            if calls["n"] == 1:
                await asyncio.sleep(5)
            return httpx.Response(200, json={"n": calls["n"]})

        client, _ = make_network(
            flaky, RequestConfig(timeout_ms=50, max_retries=2, retry_delay_ms=1)
        )

        assert await client.post_json(URL, {}) == {"n": 2}


class TestCancellation:
    """Tests for caller cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_mid_flight_aborts(self):
        """Cancelling mid-flight yields ABORTED and no further attempts."""
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200)

        client, transport = make_network(
            slow, RequestConfig(timeout_ms=2_000, max_retries=3, retry_delay_ms=1)
        )
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel, "user left")

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL, cancel_token=token)

        assert exc_info.value.code is NetworkErrorCode.ABORTED
        assert exc_info.value.retryable is False
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_already_cancelled_makes_no_attempt(self):
        client, transport = make_network(lambda request: httpx.Response(200))
        token = CancellationToken()
        token.cancel()

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL, cancel_token=token)

        assert exc_info.value.aborted
        assert transport.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff(self):
        """A cancel while waiting to retry is terminal."""
        client, transport = make_network(
            lambda request: httpx.Response(503),
            RequestConfig(timeout_ms=1_000, max_retries=3, retry_delay_ms=5_000),
        )
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(NetworkError) as exc_info:
            await client.send(URL, cancel_token=token)

        assert exc_info.value.aborted
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_no_tasks_leaked_after_success(self):
        client, _ = make_network(lambda request: httpx.Response(200, json={}))
        token = CancellationToken()
        before = len(asyncio.all_tasks())

        await client.post_json(URL, {}, cancel_token=token)

        assert len(asyncio.all_tasks()) == before


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_health_check(self):
        client, _ = make_network(lambda request: httpx.Response(200))
        assert await client.health_check("https://api.test/") is True

        client, _ = make_network(lambda request: httpx.Response(404))
        assert await client.health_check("https://api.test/") is False

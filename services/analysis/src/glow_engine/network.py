"""
Resilient outbound request execution.

Provides:
- Per-attempt timeouts (retries get a fresh window each)
- Exponential backoff between attempts
- Pure retryable/terminal error classification
- Merging of the internal timeout with a caller's cancellation token
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional

import httpx

from glow_common.config import Settings
from glow_common.http import create_client
from glow_common.logging import excerpt, get_logger

from .cancellation import CancellationToken
from .errors import AnalysisError, NetworkError, NetworkErrorCode, ParseError
from .metrics import NETWORK_ATTEMPTS, NETWORK_LATENCY

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class RequestConfig:
    """Retry and timeout policy for one logical request."""

    timeout_ms: int = 30_000
    max_retries: int = 3
    retry_delay_ms: int = 1_000
    headers: Mapping[str, str] = field(default_factory=dict)
    jitter: bool = False

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "RequestConfig":
        config = cls(
            timeout_ms=settings.request_timeout_ms,
            max_retries=settings.request_max_retries,
            retry_delay_ms=settings.request_retry_delay_ms,
        )
        return replace(config, **overrides) if overrides else config

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_ms(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based)."""
        delay = self.retry_delay_ms * (2 ** (retry - 1))
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay


def _aborted(url: str) -> NetworkError:
    return NetworkError(f"Request to {url} was cancelled by caller", NetworkErrorCode.ABORTED)


class NetworkClient:
    """
    Executes a single logical outbound request with timeout, retry and cancellation.

    State machine per call:
        Idle -> Attempting(n) -> Success
                              -> WaitingBackoff -> Attempting(n+1)
                              -> Failed

    Usage:
        async with NetworkClient() as client:
            payload = await client.post_json(url, body, config, cancel_token=token)
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        default_config: Optional[RequestConfig] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.default_config = default_config or RequestConfig()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = create_client()
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "NetworkClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def send(
        self,
        url: str,
        method: str = "POST",
        body: Any = None,
        config: Optional[RequestConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Args:
            url: Absolute request URL
            method: HTTP method
            body: JSON-serializable payload, or raw bytes/str content
            config: Retry/timeout policy (client default if None)
            cancel_token: Caller cancellation; fires ABORTED, never retried

        Returns:
            The successful (2xx) response

        Raises:
            NetworkError: After exhausting retries or on a terminal failure
        """
        config = config or self.default_config
        client = await self._get_client()
        started = time.monotonic()
        last_error: Optional[NetworkError] = None

        try:
            for attempt in range(1, config.max_attempts + 1):
                if cancel_token is not None and cancel_token.cancelled:
                    raise _aborted(url)

                LOGGER.debug("Network request attempt", url=url, method=method, attempt=attempt)
                try:
                    response = await self._attempt(client, method, url, body, config, cancel_token)
                except NetworkError as error:
                    NETWORK_ATTEMPTS.labels(outcome=error.code.value.lower()).inc()
                    if error.aborted:
                        LOGGER.debug("Request cancelled by caller", url=url, attempt=attempt)
                        raise
                    last_error = error
                else:
                    if response.is_success:
                        NETWORK_ATTEMPTS.labels(outcome="success").inc()
                        LOGGER.debug(
                            "Network request successful",
                            url=url,
                            status=response.status_code,
                            attempt=attempt,
                        )
                        return response
                    NETWORK_ATTEMPTS.labels(outcome="http").inc()
                    last_error = NetworkError(
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        NetworkErrorCode.HTTP,
                        http_status=response.status_code,
                    )

                if not last_error.retryable or attempt == config.max_attempts:
                    LOGGER.error(
                        "Network request failed",
                        url=url,
                        code=last_error.code.value,
                        status=last_error.http_status,
                        attempts=attempt,
                        error=str(last_error),
                    )
                    raise last_error

                delay_ms = config.backoff_ms(attempt)
                LOGGER.warning(
                    "Request failed, retrying",
                    url=url,
                    attempt=attempt,
                    delay_ms=round(delay_ms),
                    code=last_error.code.value,
                    status=last_error.http_status,
                )
                await self._backoff(delay_ms, url, cancel_token)
        finally:
            NETWORK_LATENCY.observe((time.monotonic() - started) * 1000)

        # max_attempts is always >= 1, so the loop either returned or raised
        raise last_error  # type: ignore[misc]

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        body: Any,
        config: RequestConfig,
        cancel_token: Optional[CancellationToken],
    ) -> httpx.Response:
        """Run one transport call raced against its timeout and the caller's token.

        Whichever fires first cancels the transport task; every task created
        here is cancelled and awaited before returning.
        """
        kwargs: dict[str, Any] = {"headers": dict(config.headers)}
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        request_task = asyncio.create_task(client.request(method, url, **kwargs))
        waiters: set[asyncio.Task] = {request_task}
        cancel_task: Optional[asyncio.Task] = None
        if cancel_token is not None:
            cancel_task = asyncio.create_task(cancel_token.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=config.timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if request_task in done:
                try:
                    return request_task.result()
                except httpx.TimeoutException as exc:
                    raise NetworkError(
                        f"Transport timeout: {exc}", NetworkErrorCode.TIMEOUT
                    ) from exc
                except httpx.TransportError as exc:
                    raise NetworkError(
                        f"Network connection failed: {exc}", NetworkErrorCode.NETWORK
                    ) from exc
            if cancel_task is not None and cancel_task in done:
                raise _aborted(url)
            LOGGER.debug("Request timeout, aborting", url=url, timeout_ms=config.timeout_ms)
            raise NetworkError(
                f"Request timeout after {config.timeout_ms}ms", NetworkErrorCode.TIMEOUT
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    async def _backoff(
        self,
        delay_ms: float,
        url: str,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        """Wait out a backoff delay; a cancellation during the wait is terminal."""
        if cancel_token is None:
            await asyncio.sleep(delay_ms / 1000)
            return
        try:
            await asyncio.wait_for(cancel_token.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return
        raise _aborted(url)

    async def post_json(
        self,
        url: str,
        payload: Any,
        config: Optional[RequestConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        response = await self.send(url, "POST", payload, config, cancel_token)
        return self._decode(url, response)

    async def get_json(
        self,
        url: str,
        config: Optional[RequestConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        response = await self.send(url, "GET", None, config, cancel_token)
        return self._decode(url, response)

    @staticmethod
    def _decode(url: str, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            snippet = excerpt(response.text)
            LOGGER.error("Response body is not JSON", url=url, excerpt=snippet)
            raise ParseError(f"Response from {url} is not valid JSON", excerpt=snippet) from exc

    async def health_check(self, url: str) -> bool:
        """Return True if ``url`` answers with a 2xx status."""
        try:
            await self.send(url, "GET", config=RequestConfig(timeout_ms=5_000, max_retries=1))
            return True
        except AnalysisError as exc:
            LOGGER.warning("Health check failed", url=url, error=str(exc))
            return False


__all__ = ["NetworkClient", "RequestConfig"]

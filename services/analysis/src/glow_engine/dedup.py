"""
In-flight request deduplication.

Concurrent callers asking for the same (endpoint, body) share one outbound
operation. Entries are removed when the operation settles or when the dedup
window expires, whichever comes first.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from glow_common.logging import get_logger

from .cancellation import CancellationToken
from .errors import NetworkError, NetworkErrorCode
from .metrics import DEDUP_IN_FLIGHT, DEDUP_JOINS

LOGGER = get_logger(__name__)

T = TypeVar("T")

StartFn = Callable[[CancellationToken], Awaitable[T]]


def make_request_key(endpoint: str, body: Any) -> str:
    """Canonical dedup key for an endpoint and JSON-serialisable body."""
    serialized = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return f"{endpoint}:{hashlib.sha256(serialized.encode('utf-8')).hexdigest()}"


@dataclass(eq=False)
class InFlightEntry(Generic[T]):
    """One shared outbound operation and the callers waiting on it."""

    key: str
    task: "asyncio.Task[T]"
    token: CancellationToken
    created_at: float = field(default_factory=time.monotonic)
    waiters: int = 1
    expiry_handle: Optional[asyncio.TimerHandle] = None


class RequestDeduplicator:
    """
    Coalesces concurrent identical requests into one in-flight operation.

    Each caller may pass its own cancellation token. A cancelling caller
    leaves immediately with ``ABORTED``; the shared operation is aborted only
    once every caller has left.

    Usage:
        dedup = RequestDeduplicator(window_ms=30_000)
        payload = await dedup.coalesce(key, lambda token: client.post_json(url, body, cancel_token=token))
    """

    def __init__(self, window_ms: int = 30_000):
        self.window_ms = window_ms
        self._entries: Dict[str, InFlightEntry[Any]] = {}
        self._mutex = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def in_flight(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.token.cancelled

    async def coalesce(
        self,
        key: str,
        start_fn: StartFn[T],
        cancel_token: Optional[CancellationToken] = None,
    ) -> T:
        """
        Join the in-flight operation for ``key`` or start a new one.

        Args:
            key: Canonical request key, see ``make_request_key``
            start_fn: Starts the operation; receives the shared cancellation token
            cancel_token: This caller's cancellation

        Returns:
            The shared operation's result; every caller sees the same value or error
        """
        if cancel_token is not None and cancel_token.cancelled:
            raise NetworkError(f"Request {key} was cancelled by caller", NetworkErrorCode.ABORTED)

        with self._mutex:
            entry = self._entries.get(key)
            if entry is not None and not entry.token.cancelled:
                entry.waiters += 1
                DEDUP_JOINS.inc()
                LOGGER.debug("Joined in-flight request", key=key, waiters=entry.waiters)
            else:
                entry = self._start(key, start_fn)

        return await self._wait(entry, cancel_token)

    def _start(self, key: str, start_fn: StartFn[T]) -> InFlightEntry[T]:
        loop = asyncio.get_running_loop()
        token = CancellationToken()
        task = asyncio.ensure_future(start_fn(token))
        entry: InFlightEntry[T] = InFlightEntry(key=key, task=task, token=token)
        entry.expiry_handle = loop.call_later(self.window_ms / 1000, self._expire, entry)
        self._entries[key] = entry
        DEDUP_IN_FLIGHT.inc()
        task.add_done_callback(lambda _task: self._settle(entry))
        LOGGER.debug("Started request", key=key)
        return entry

    async def _wait(self, entry: InFlightEntry[T], cancel_token: Optional[CancellationToken]) -> T:
        try:
            if cancel_token is None:
                return await asyncio.shield(entry.task)

            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            try:
                done, _ = await asyncio.wait(
                    {entry.task, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                if not cancel_wait.done():
                    cancel_wait.cancel()
                    await asyncio.gather(cancel_wait, return_exceptions=True)
            if entry.task in done:
                return entry.task.result()
            raise NetworkError(
                f"Request {entry.key} was cancelled by caller", NetworkErrorCode.ABORTED
            )
        finally:
            self._release(entry)

    def _release(self, entry: InFlightEntry[Any]) -> None:
        with self._mutex:
            entry.waiters -= 1
            if entry.waiters > 0 or entry.task.done():
                return
            self._discard(entry)
        LOGGER.debug("All callers left, aborting request", key=entry.key)
        entry.token.cancel("all callers cancelled")

    def _expire(self, entry: InFlightEntry[Any]) -> None:
        with self._mutex:
            if self._entries.get(entry.key) is not entry:
                return
            self._discard(entry)
        LOGGER.warning("Dedup window expired, aborting request", key=entry.key, window_ms=self.window_ms)
        entry.token.cancel("dedup window expired")

    def _settle(self, entry: InFlightEntry[Any]) -> None:
        DEDUP_IN_FLIGHT.dec()
        with self._mutex:
            self._discard(entry)
        if not entry.task.cancelled():
            # Mark the exception retrieved when no caller is left to see it
            entry.task.exception()

    def _discard(self, entry: InFlightEntry[Any]) -> None:
        if entry.expiry_handle is not None:
            entry.expiry_handle.cancel()
            entry.expiry_handle = None
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]

    def cancel_all(self, reason: str = "deduplicator shut down") -> int:
        """Abort every in-flight operation; returns how many were aborted."""
        with self._mutex:
            entries = list(self._entries.values())
            for entry in entries:
                self._discard(entry)
        for entry in entries:
            entry.token.cancel(reason)
        return len(entries)


__all__ = ["InFlightEntry", "RequestDeduplicator", "make_request_key"]

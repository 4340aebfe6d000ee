"""Cooperative cancellation tokens for outbound requests."""

from __future__ import annotations

import asyncio
from typing import Callable, List, Optional


class CancellationToken:
    """
    One-shot cancellation signal shared between a caller and the engine.

    A token fires at most once. Callbacks registered before or after the
    token fires are each invoked exactly once.

    Usage:
        token = CancellationToken()
        task = asyncio.create_task(orchestrator.analyze_face(image, cancel_token=token))
        ...
        token.cancel("user navigated away")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[["CancellationToken"], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled by caller") -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)
        return True

    def add_callback(self, callback: Callable[["CancellationToken"], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        if self._event.is_set():
            callback(self)
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass

        return _remove

    async def wait(self) -> None:
        """Suspend until the token fires."""
        await self._event.wait()

    def link(self, parent: Optional["CancellationToken"]) -> Callable[[], None]:
        """Fire this token when ``parent`` fires."""
        if parent is None:
            return lambda: None
        return parent.add_callback(lambda p: self.cancel(p.reason or "cancelled by parent"))

    def __repr__(self) -> str:
        state = f"cancelled={self._reason!r}" if self.cancelled else "active"
        return f"<CancellationToken {state}>"


__all__ = ["CancellationToken"]

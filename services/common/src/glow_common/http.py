"""Standard HTTP client helpers for external integrations."""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from .config import settings


def build_headers(
    bearer_token: Optional[str] = None,
    api_key: Optional[str] = None,
) -> Dict[str, str]:
    headers: Dict[str, str] = {
        "User-Agent": f"{settings.app_name}/{settings.app_version}",
        "Content-Type": "application/json",
    }
    if bearer_token:
        headers["Authorization"] = f"Bearer {bearer_token}"
    if api_key:
        headers["x-api-key"] = api_key
    return headers


def create_client(
    base_url: str = "",
    bearer_token: Optional[str] = None,
    api_key: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Build an async client without a client-level timeout.

    Per-attempt timeouts are enforced by the caller.
    """

    return httpx.AsyncClient(
        base_url=base_url,
        timeout=None,
        headers=build_headers(bearer_token, api_key),
        transport=transport,
    )


__all__ = ["build_headers", "create_client"]

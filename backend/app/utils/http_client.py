"""
Lazy-initialized shared httpx client for calls to the generation endpoints.
"""

import os
from typing import Optional
import httpx

_client: Optional[httpx.AsyncClient] = None

# Image synthesis for six panels is slow; connect should still fail fast
DEFAULT_TIMEOUT = httpx.Timeout(
    float(os.getenv("GENERATION_TIMEOUT_SECONDS", "120")),
    connect=10.0
)


def get_http_client() -> httpx.AsyncClient:
    """
    Get the process-wide AsyncClient, creating it on first use.

    Creating it lazily keeps import of the app free of network setup, and
    lets tests swap it out with ``reset_client``.
    """
    global _client

    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=DEFAULT_TIMEOUT,
            headers={"Content-Type": "application/json"}
        )

    return _client


async def close_client() -> None:
    """Close the shared client on application shutdown."""
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


def reset_client() -> None:
    """
    Drop the cached client without closing it (useful for testing).
    """
    global _client
    _client = None

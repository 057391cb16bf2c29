"""
comicstrip Utilities Package

Contains:
- http_client: Lazy-initialized shared httpx client
"""

from app.utils.http_client import get_http_client, close_client, reset_client

__all__ = [
    "get_http_client",
    "close_client",
    "reset_client"
]

"""
comicstrip Schemas Package

Pydantic models for request/response validation.
"""

from app.schemas.comics import (
    GenerateRequest,
    ScreenshotRequest,
    PanelSlot,
    CreditsResponse,
    SessionResponse,
    ComicRecordResponse,
)

__all__ = [
    "GenerateRequest",
    "ScreenshotRequest",
    "PanelSlot",
    "CreditsResponse",
    "SessionResponse",
    "ComicRecordResponse",
]

"""
Request/response models for the comic endpoints.

Field names follow what the browser page already consumes (``imageUrls``,
``imgDesc``) rather than Python naming.
"""

from datetime import date
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_PROMPT_CHARS = 2000
SCREENSHOT_URL_PREFIX = "data:image/"


class GenerateRequest(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=MAX_PROMPT_CHARS)

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt cannot be blank")
        return v


class ScreenshotRequest(BaseModel):
    screenshot_url: str

    @field_validator("screenshot_url")
    @classmethod
    def must_be_image_data_url(cls, v: str) -> str:
        if not v.startswith(SCREENSHOT_URL_PREFIX) or ";base64," not in v:
            raise ValueError("screenshot_url must be a base64 image data URL")
        return v


class PanelSlot(BaseModel):
    index: int
    grid_area: str
    height_px: int
    image_url: Optional[str] = None
    description: Optional[str] = None
    alt: str


class CreditsResponse(BaseModel):
    credits: int
    max_credits: int


class SessionResponse(BaseModel):
    state: str
    loading: bool
    credits: int
    max_credits: int
    imageUrls: List[str]
    imgDesc: List[Optional[str]]
    slots: List[PanelSlot]
    generation_id: Optional[str] = None
    prompt: Optional[str] = None
    outcome: Optional[str] = None
    message: Optional[str] = None


class ComicRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: date
    prompt: str
    screenshot_url: Optional[str] = None

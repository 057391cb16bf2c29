"""
Mock infrastructure for comicstrip testing.
Provides deterministic fakes for the generation endpoints.
"""

from .generation_mocks import (
    MOCK_PANEL_PROMPTS,
    MOCK_IMG_DESC,
    MOCK_PROMPT_RESPONSE,
    MOCK_IMAGE_URLS,
    FakePromptClient,
    FakeImageClient,
    BlockingImageClient,
)

__all__ = [
    "MOCK_PANEL_PROMPTS",
    "MOCK_IMG_DESC",
    "MOCK_PROMPT_RESPONSE",
    "MOCK_IMAGE_URLS",
    "FakePromptClient",
    "FakeImageClient",
    "BlockingImageClient",
]

"""
Clients for the two external generation endpoints.

The prompt generator turns one free-text idea into per-panel image prompts and
captions; the image generator turns those prompts into image references in the
same order. Both report failures as a JSON payload with a ``message`` field.
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.utils.http_client import get_http_client

logger = logging.getLogger(__name__)

PROMPT_GENERATOR_URL = os.getenv("PROMPT_GENERATOR_URL", "http://localhost:3000/api/prompt-generator")
IMAGE_GENERATOR_URL = os.getenv("IMAGE_GENERATOR_URL", "http://localhost:3000/api/image-generator")


class GenerationServiceError(Exception):
    """A generation endpoint could not be reached or returned a non-success response."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        self.service = service
        self.message = message
        self.status_code = status_code
        super().__init__(f"{service}: {message}")


@dataclass
class PromptExpansion:
    prompts: List[str]
    descriptions: List[str] = field(default_factory=list)


async def _post_json(service: str, url: str, payload: Dict[str, Any], client: httpx.AsyncClient) -> Dict[str, Any]:
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        raise GenerationServiceError(service, f"request failed: {e}") from e

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.is_success:
        message = data.get("message") if isinstance(data, dict) else None
        raise GenerationServiceError(
            service,
            message or f"HTTP {response.status_code}",
            status_code=response.status_code
        )

    if not isinstance(data, dict):
        raise GenerationServiceError(service, "response body is not a JSON object", response.status_code)

    return data


class PromptGeneratorClient:
    service = "prompt-generator"

    def __init__(self, url: str = PROMPT_GENERATOR_URL, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client

    async def expand(self, prompt: str) -> PromptExpansion:
        """Expand a user prompt into per-panel image prompts and captions."""
        data = await _post_json(self.service, self.url, {"prompt": prompt}, self._client or get_http_client())

        prompts = data.get("prompts")
        if not isinstance(prompts, list):
            raise GenerationServiceError(self.service, "response is missing 'prompts'")

        # Captions arrive keyed ({"panel1": ...}); only their order matters
        img_desc = data.get("img_desc") or {}
        if isinstance(img_desc, dict):
            descriptions = [str(v) for v in img_desc.values()]
        elif isinstance(img_desc, list):
            descriptions = [str(v) for v in img_desc]
        else:
            raise GenerationServiceError(self.service, "'img_desc' must be an object")

        return PromptExpansion(prompts=[str(p) for p in prompts], descriptions=descriptions)


class ImageGeneratorClient:
    service = "image-generator"

    def __init__(self, url: str = IMAGE_GENERATOR_URL, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client

    async def generate(self, prompts: List[str]) -> List[str]:
        """Return one image URL (or data URI) per prompt, in prompt order."""
        data = await _post_json(self.service, self.url, {"prompts": prompts}, self._client or get_http_client())

        image_urls = data.get("imageUrls")
        if not isinstance(image_urls, list):
            raise GenerationServiceError(self.service, "response is missing 'imageUrls'")

        if len(image_urls) != len(prompts):
            logger.warning(
                f"Image generator returned {len(image_urls)} images for {len(prompts)} prompts"
            )

        return [str(u) for u in image_urls]


def get_prompt_generator() -> PromptGeneratorClient:
    """FastAPI dependency"""
    return PromptGeneratorClient()


def get_image_generator() -> ImageGeneratorClient:
    """FastAPI dependency"""
    return ImageGeneratorClient()

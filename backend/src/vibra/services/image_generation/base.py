"""Shared contract and helpers for text-to-image generators.

Every generator takes a prompt and a genre, calls its provider, downloads the
provider's output and re-uploads it to owned storage. Provider URLs are never
returned to callers.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, TypeVar, runtime_checkable

import httpx
import structlog

from vibra.services.exceptions import (
    ContentPolicyError,
    DownloadError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    TransientError,
)
from vibra.services.image_generation.prompt_validator import validate_prompt
from vibra.services.storage.cloudinary_client import CloudinaryUploader, UploadResult

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GeneratorTier(str, Enum):
    """Cost/latency/quality class of a generator."""

    FAST = "fast"
    MID = "mid"
    EXPENSIVE = "expensive"


@dataclass(frozen=True)
class GenerationResult:
    """Image produced by a generator, already stored in owned storage."""

    image_url: str
    thumbnail_url: str
    storage_key: str
    storage_folder: str
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ImageGenerator(Protocol):
    """Capability shared by all generators."""

    tier: GeneratorTier

    async def generate_image(self, prompt_text: str, genre: str) -> GenerationResult: ...

    def get_name(self) -> str: ...

    async def is_available(self) -> bool: ...


CONTENT_POLICY_MARKERS = ("content policy", "content_policy", "nsfw", "safety", "inappropriate")


def classify_response(response: httpx.Response, provider: str) -> ProviderError:
    """Classify a non-2xx provider response into retry category.

    Classification rules:
        - 429 (rate limit) → ProviderTransientError
        - 5xx (provider outage) → ProviderTransientError
        - 401/403 (authentication) → ProviderPermanentError
        - Content policy wording → ContentPolicyError
        - Other 4xx → ProviderPermanentError
    """
    status = response.status_code
    body = response.text
    body_lower = body.lower()

    if status == 429:
        return ProviderTransientError(f"{provider} rate limit exceeded: {body}")
    if status >= 500:
        return ProviderTransientError(f"{provider} unavailable ({status}): {body}")
    if status in (401, 403):
        return ProviderPermanentError(f"{provider} rejected credentials ({status})")
    if any(marker in body_lower for marker in CONTENT_POLICY_MARKERS):
        return ContentPolicyError(f"{provider} content policy violation: {body}")
    return ProviderPermanentError(f"{provider} bad request ({status}): {body}")


def checked_prompt(prompt_text: str) -> str:
    """Validate prompt text, reporting problems as a malformed-prompt provider error."""
    try:
        return validate_prompt(prompt_text)
    except ValueError as e:
        raise ProviderPermanentError(f"Prompt validation failed: {str(e)}") from e


async def download_image(http_client: httpx.AsyncClient, url: str) -> bytes:
    """Download provider output.

    Raises:
        DownloadError: Network failure or non-2xx response
    """
    try:
        response = await http_client.get(url)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download image from provider: {str(e)}") from e

    if not response.content:
        raise DownloadError("Provider returned an empty image")
    return response.content


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    base_delay: float,
    generator: str,
) -> T:
    """Run operation, retrying transient failures with linear backoff.

    The n-th retry waits n * base_delay seconds. Permanent errors are raised
    immediately; the last transient error is raised once retries are exhausted.

    Args:
        operation: Zero-argument coroutine factory (called once per attempt)
        max_retries: Retries after the first attempt
        base_delay: Backoff unit in seconds
        generator: Generator name for logging
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except TransientError as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "generation.provider.retry",
                generator=generator,
                attempt=attempt,
                retries_left=max_retries - attempt,
                error_type=type(e).__name__,
                error_message=str(e),
            )
            await asyncio.sleep(base_delay * attempt)


async def store_output(
    http_client: httpx.AsyncClient,
    uploader: CloudinaryUploader,
    source_url: str,
    genre: str,
) -> UploadResult:
    """Download provider output and re-upload it into the genre's folder."""
    data = await download_image(http_client, source_url)
    return await uploader.upload_image(data, genre)


def build_result(
    upload: UploadResult, *, model: str, prompt_text: str, genre: str, processing_time_ms: int
) -> GenerationResult:
    return GenerationResult(
        image_url=upload.url,
        thumbnail_url=upload.thumbnail_url,
        storage_key=upload.key,
        storage_folder=upload.folder,
        metadata={
            "model": model,
            "width": upload.width,
            "height": upload.height,
            "processing_time_ms": processing_time_ms,
            "prompt": prompt_text,
            "genre": genre,
        },
    )

"""OpenAI DALL-E 3 generator (synchronous, expensive, highest quality)."""

import time

import httpx
import structlog

from vibra.services.exceptions import ProviderPermanentError, ProviderTransientError
from vibra.services.image_generation.base import (
    GenerationResult,
    GeneratorTier,
    build_result,
    checked_prompt,
    classify_response,
    store_output,
    with_retries,
)
from vibra.services.storage.cloudinary_client import CloudinaryUploader

logger = structlog.get_logger(__name__)

MODELS_URL = "https://api.openai.com/v1/models"
AVAILABILITY_TIMEOUT_SECONDS = 5.0


class OpenAIImageGenerator:
    """DALL-E 3 images endpoint, one request per attempt.

    Transient failures (timeouts, 429, 5xx) are retried up to max_retries times
    with linear backoff. Permanent failures surface immediately.
    """

    tier = GeneratorTier.EXPENSIVE

    def __init__(
        self,
        api_key: str,
        uploader: CloudinaryUploader,
        http_client: httpx.AsyncClient,
        api_url: str = "https://api.openai.com/v1/images/generations",
        model: str = "dall-e-3",
        image_size: str = "1024x1024",
        image_quality: str = "standard",
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        self.api_key = api_key
        self.uploader = uploader
        self.http_client = http_client
        self.api_url = api_url
        self.model = model
        self.image_size = image_size
        self.image_quality = image_quality
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    def get_name(self) -> str:
        return "openai-dall-e-3"

    async def is_available(self) -> bool:
        """Key present and the models endpoint accepts it."""
        if not self.api_key:
            return False

        try:
            response = await self.http_client.get(
                MODELS_URL,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=AVAILABILITY_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            logger.warning("generator.unavailable", generator=self.get_name(), error=str(e))
            return False

        return response.status_code == 200

    async def generate_image(self, prompt_text: str, genre: str) -> GenerationResult:
        """Generate one image and store it under the genre's folder.

        Raises:
            ProviderTransientError: Retries exhausted on timeouts, 429 or 5xx
            ProviderPermanentError: Missing/invalid key, bad request, invalid prompt
            ContentPolicyError: Prompt rejected by the safety system
            StorageError: Download or upload failed
        """
        if not self.api_key:
            raise ProviderPermanentError("OPENAI_API_KEY not configured")

        prompt = checked_prompt(prompt_text)
        start_time = time.monotonic()

        source_url = await with_retries(
            lambda: self._request_image(prompt),
            max_retries=self.max_retries,
            base_delay=self.retry_base_delay,
            generator=self.get_name(),
        )
        upload = await store_output(self.http_client, self.uploader, source_url, genre)

        processing_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "generation.provider.succeeded",
            generator=self.get_name(),
            genre=genre,
            processing_time_ms=processing_time_ms,
        )
        return build_result(
            upload,
            model=self.model,
            prompt_text=prompt,
            genre=genre,
            processing_time_ms=processing_time_ms,
        )

    async def _request_image(self, prompt: str) -> str:
        try:
            response = await self.http_client.post(
                self.api_url,
                json={
                    "model": self.model,
                    "prompt": prompt,
                    "n": 1,
                    "size": self.image_size,
                    "quality": self.image_quality,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"OpenAI request timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"OpenAI network error: {e}")

        if response.status_code != 200:
            raise classify_response(response, "OpenAI")

        data = response.json().get("data") or []
        if not data or not data[0].get("url"):
            raise ProviderPermanentError("Invalid response from OpenAI images API")
        return data[0]["url"]

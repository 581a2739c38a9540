"""FAL flux-schnell generator (synchronous, fast, cheap)."""

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

MODEL_NAME = "flux-schnell"


class FalImageGenerator:
    """Low-latency FAL call tuned for few inference steps."""

    tier = GeneratorTier.FAST

    def __init__(
        self,
        api_key: str,
        uploader: CloudinaryUploader,
        http_client: httpx.AsyncClient,
        api_url: str = "https://fal.run/fal-ai/flux-schnell",
        num_inference_steps: int = 4,
        timeout: float = 60.0,
        max_retries: int = 1,
        retry_base_delay: float = 1.0,
    ):
        self.api_key = api_key
        self.uploader = uploader
        self.http_client = http_client
        self.api_url = api_url
        self.num_inference_steps = num_inference_steps
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay

    def get_name(self) -> str:
        return "fal-flux-schnell"

    async def is_available(self) -> bool:
        return bool(self.api_key)

    async def generate_image(self, prompt_text: str, genre: str) -> GenerationResult:
        if not self.api_key:
            raise ProviderPermanentError("FAL_API_KEY not configured")

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
            model=MODEL_NAME,
            prompt_text=prompt,
            genre=genre,
            processing_time_ms=processing_time_ms,
        )

    async def _request_image(self, prompt: str) -> str:
        try:
            response = await self.http_client.post(
                self.api_url,
                json={
                    "prompt": prompt,
                    "image_size": "square_hd",
                    "num_inference_steps": self.num_inference_steps,
                    "num_images": 1,
                },
                headers={"Authorization": f"Key {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderTransientError(f"FAL request timeout after {self.timeout}s: {e}")
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"FAL network error: {e}")

        if response.status_code != 200:
            raise classify_response(response, "FAL")

        images = response.json().get("images") or []
        if not images or not images[0].get("url"):
            raise ProviderPermanentError("No image URL returned from FAL")
        return images[0]["url"]

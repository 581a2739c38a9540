"""Replicate SDXL generator (asynchronous prediction plus polling, mid-cost)."""

import asyncio
import time
from typing import Any, Optional

import httpx
import replicate
import structlog
from replicate.exceptions import ReplicateError as ReplicateAPIError

from vibra.services.exceptions import (
    ContentPolicyError,
    GenerationTimeoutError,
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
)
from vibra.services.image_generation.base import (
    GenerationResult,
    GeneratorTier,
    build_result,
    checked_prompt,
    store_output,
)
from vibra.services.storage.cloudinary_client import CloudinaryUploader

logger = structlog.get_logger(__name__)

MODEL_NAME = "stability-ai/sdxl"
TERMINAL_FAILURE_STATES = ("failed", "canceled")


def classify_error(exception: Exception) -> ProviderError:
    """Classify exception into retry category.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ProviderError subclass instance

    Classification rules:
        - Timeout errors → ProviderTransientError
        - 429 (rate limit) → ProviderTransientError
        - 5xx (service unavailable) → ProviderTransientError
        - 401/403 (authentication) → ProviderPermanentError
        - Content policy violations → ContentPolicyError
        - Connection errors → ProviderTransientError
        - Anything else → ProviderPermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = getattr(exception, "status", None)

    # Check for timeout errors
    if isinstance(exception, (TimeoutError, httpx.TimeoutException)) or "timeout" in error_message_lower:
        return ProviderTransientError(f"Network timeout: {error_message}")

    # Check for rate limiting
    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return ProviderTransientError(f"Rate limit exceeded: {error_message}")

    # Check for service unavailability
    if (isinstance(status, int) and status >= 500) or "service unavailable" in error_message_lower:
        return ProviderTransientError(f"Service unavailable: {error_message}")

    # Check for authentication issues
    if (
        status in (401, 403)
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderPermanentError(f"Authentication failed: {error_message}")

    # Check for content policy violations
    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return ContentPolicyError(f"Content policy violation: {error_message}")

    # Check for connection errors (network layer)
    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return ProviderTransientError(f"Connection error: {error_message}")

    # Default: treat as permanent error
    return ProviderPermanentError(f"Permanent error: {error_message}")


class ReplicateImageGenerator:
    """SDXL via Replicate predictions.

    Creates a prediction, then polls its status every poll_interval seconds up to
    max_poll_attempts times. succeeded → first output URL; failed/canceled →
    ProviderPermanentError; other states keep polling. A network error during a
    poll is logged and polling continues. Exceeding the ceiling raises
    GenerationTimeoutError.

    The Replicate SDK is synchronous, so every call runs in a worker thread.
    """

    tier = GeneratorTier.MID

    def __init__(
        self,
        api_token: str,
        uploader: CloudinaryUploader,
        http_client: httpx.AsyncClient,
        model_version: str,
        image_size: int = 1024,
        num_inference_steps: int = 30,
        guidance_scale: float = 7.5,
        poll_interval: float = 2.0,
        max_poll_attempts: int = 30,
        client: Optional[Any] = None,
    ):
        self.api_token = api_token
        self.uploader = uploader
        self.http_client = http_client
        self.model_version = model_version
        self.image_size = image_size
        self.num_inference_steps = num_inference_steps
        self.guidance_scale = guidance_scale
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.client = client if client is not None else replicate.Client(api_token=api_token)

    def get_name(self) -> str:
        return "replicate-sdxl"

    async def is_available(self) -> bool:
        return bool(self.api_token)

    async def generate_image(self, prompt_text: str, genre: str) -> GenerationResult:
        if not self.api_token:
            raise ProviderPermanentError("REPLICATE_API_TOKEN not configured")

        prompt = checked_prompt(prompt_text)
        start_time = time.monotonic()

        prediction_id = await self._create_prediction(prompt)
        source_url = await self._poll_prediction(prediction_id)
        upload = await store_output(self.http_client, self.uploader, source_url, genre)

        processing_time_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "generation.provider.succeeded",
            generator=self.get_name(),
            genre=genre,
            prediction_id=prediction_id,
            processing_time_ms=processing_time_ms,
        )
        return build_result(
            upload,
            model=MODEL_NAME,
            prompt_text=prompt,
            genre=genre,
            processing_time_ms=processing_time_ms,
        )

    async def _create_prediction(self, prompt: str) -> str:
        model_input = {
            "prompt": prompt,
            "width": self.image_size,
            "height": self.image_size,
            "num_inference_steps": self.num_inference_steps,
            "guidance_scale": self.guidance_scale,
            "scheduler": "K_EULER",
            "num_outputs": 1,
        }

        try:
            prediction = await asyncio.to_thread(
                self.client.predictions.create, version=self.model_version, input=model_input
            )
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError) as e:
            raise classify_error(e) from e

        logger.debug("replicate.prediction.created", prediction_id=prediction.id)
        return prediction.id

    async def _poll_prediction(self, prediction_id: str) -> str:
        for attempt in range(1, self.max_poll_attempts + 1):
            try:
                prediction = await asyncio.to_thread(self.client.predictions.get, prediction_id)
            except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError) as e:
                classified = classify_error(e)
                if not classified.retryable:
                    raise classified from e
                # Network hiccup while polling - keep going
                logger.warning(
                    "replicate.poll.error",
                    prediction_id=prediction_id,
                    attempt=attempt,
                    error_message=str(e),
                )
            else:
                if prediction.status == "succeeded":
                    return self._extract_url(prediction.output)
                if prediction.status in TERMINAL_FAILURE_STATES:
                    raise ProviderPermanentError(
                        f"Prediction {prediction_id} {prediction.status}: "
                        f"{prediction.error or 'Unknown error'}"
                    )
                logger.debug(
                    "replicate.poll.pending",
                    prediction_id=prediction_id,
                    status=prediction.status,
                    attempt=attempt,
                )

            if attempt < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval)

        raise GenerationTimeoutError(
            f"Prediction {prediction_id} did not finish after "
            f"{self.max_poll_attempts} polls ({self.max_poll_attempts * self.poll_interval:.0f}s)"
        )

    @staticmethod
    def _extract_url(output: Any) -> str:
        # Extract URL from output (format varies by model)
        if isinstance(output, list) and len(output) > 0:
            return str(output[0])
        if isinstance(output, str) and output:
            return output
        raise ProviderPermanentError(f"Unexpected output format from Replicate: {type(output)}")

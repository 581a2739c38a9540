"""Construction of the service graph from settings.

Shared by the application lifespan and the CLI commands so both build the
uploader, generators, prompt selector, pipeline and orchestrator the same way.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from vibra.core.config import Settings
from vibra.services.image_generation.base import ImageGenerator
from vibra.services.image_generation.fal_generator import FalImageGenerator
from vibra.services.image_generation.openai_generator import OpenAIImageGenerator
from vibra.services.image_generation.pipeline import GenerationPipeline
from vibra.services.image_generation.replicate_generator import ReplicateImageGenerator
from vibra.services.image_service import ImageService
from vibra.services.playback import PlaybackOrchestrator
from vibra.services.prompt_selector import PromptSelector
from vibra.services.storage.cloudinary_client import CloudinaryUploader
from vibra.uow import UnitOfWorkFactory


@dataclass
class Services:
    uploader: CloudinaryUploader
    generators: dict[str, ImageGenerator]
    prompt_selector: PromptSelector
    pipeline: GenerationPipeline
    image_service: ImageService
    playback: PlaybackOrchestrator


def build_generators(
    settings: Settings,
    uploader: CloudinaryUploader,
    http_client: httpx.AsyncClient,
    replicate_client: Optional[Any] = None,
) -> dict[str, ImageGenerator]:
    """Create the three generators keyed by their ON_DEMAND_GENERATOR name."""
    return {
        "openai": OpenAIImageGenerator(
            api_key=settings.openai_api_key,
            uploader=uploader,
            http_client=http_client,
            api_url=settings.openai_api_url,
            model=settings.openai_model,
            image_size=settings.openai_image_size,
            image_quality=settings.openai_image_quality,
            timeout=settings.openai_timeout_seconds,
            max_retries=settings.openai_max_retries,
            retry_base_delay=settings.openai_retry_base_delay_seconds,
        ),
        "replicate": ReplicateImageGenerator(
            api_token=settings.replicate_api_token,
            uploader=uploader,
            http_client=http_client,
            model_version=settings.replicate_model_version,
            image_size=settings.replicate_image_size,
            num_inference_steps=settings.replicate_num_inference_steps,
            guidance_scale=settings.replicate_guidance_scale,
            poll_interval=settings.replicate_poll_interval_seconds,
            max_poll_attempts=settings.replicate_max_poll_attempts,
            client=replicate_client,
        ),
        "fal": FalImageGenerator(
            api_key=settings.fal_api_key,
            uploader=uploader,
            http_client=http_client,
            api_url=settings.fal_api_url,
            num_inference_steps=settings.fal_num_inference_steps,
            timeout=settings.fal_timeout_seconds,
            max_retries=settings.fal_max_retries,
        ),
    }


def build_services(
    settings: Settings,
    uow_factory: UnitOfWorkFactory,
    http_client: httpx.AsyncClient,
    replicate_client: Optional[Any] = None,
) -> Services:
    """Wire every service from settings.

    Args:
        settings: Application settings
        uow_factory: UnitOfWork factory bound to the database
        http_client: Shared HTTP client for storage, providers and downloads
        replicate_client: Optional replicate.Client override
    """
    uploader = CloudinaryUploader(
        cloud_name=settings.cloudinary_cloud_name,
        api_key=settings.cloudinary_api_key,
        api_secret=settings.cloudinary_api_secret,
        http_client=http_client,
        root_folder=settings.cloudinary_root_folder,
        timeout=settings.storage_timeout_seconds,
    )
    generators = build_generators(settings, uploader, http_client, replicate_client)
    prompt_selector = PromptSelector(uow_factory)
    pipeline = GenerationPipeline(uow_factory, prompt_selector, uploader)

    image_service = ImageService(
        uow_factory,
        pipeline,
        on_demand_generator=generators[settings.on_demand_generator],
        fallback_genre=settings.fallback_genre,
    )
    playback = PlaybackOrchestrator(
        uow_factory,
        pipeline,
        generators=list(generators.values()),
        seconds_per_image=settings.playback_seconds_per_image,
        duration_bucket_seconds=settings.playback_duration_bucket_seconds,
        job_ttl_seconds=settings.generation_job_ttl_seconds,
        max_concurrent_generations=settings.max_concurrent_generations,
        fallback_genre=settings.fallback_genre,
        max_duration_seconds=settings.max_playback_duration_seconds,
    )

    return Services(
        uploader=uploader,
        generators=generators,
        prompt_selector=prompt_selector,
        pipeline=pipeline,
        image_service=image_service,
        playback=playback,
    )

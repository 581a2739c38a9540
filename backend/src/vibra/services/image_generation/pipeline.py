"""One generation unit: prompt → generator → owned storage → persisted record.

Used both by the background fan-out and by explicit on-demand generation.
Each unit opens its own unit of work so one unit's failure never rolls back
another unit's record.
"""

from typing import Optional
from uuid import UUID

import structlog

from vibra.models.generated_image import GeneratedImage
from vibra.models.prompt import PromptCategory
from vibra.services.exceptions import UnownedImageUrlError
from vibra.services.image_generation.base import ImageGenerator
from vibra.services.prompt_selector import PromptSelector
from vibra.services.storage.cloudinary_client import CloudinaryUploader
from vibra.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)


class GenerationPipeline:
    """Runs single generation units against a chosen generator."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        prompt_selector: PromptSelector,
        uploader: CloudinaryUploader,
    ):
        self.uow_factory = uow_factory
        self.prompt_selector = prompt_selector
        self.uploader = uploader

    async def run(
        self,
        generator: ImageGenerator,
        genre: str,
        category: Optional[PromptCategory] = None,
        song_id: Optional[UUID] = None,
    ) -> GeneratedImage:
        """Generate, store and persist one image.

        Workflow:
        1. Select a random active prompt for genre (and category)
        2. Call the generator
        3. Verify the returned URLs point at owned storage
        4. Persist the GeneratedImage record
        5. Bump the prompt's usage counter and success rate

        On generator failure the prompt's success rate is updated with a failure
        and the error is re-raised.

        Raises:
            NoPromptAvailableError: No active prompt for genre/category
            ProviderError: Generator failed after its own retry budget
            StorageError: Download/upload failed or URL is not owned storage
        """
        prompt = await self.prompt_selector.get_random_prompt(genre, category)

        try:
            result = await generator.generate_image(prompt.prompt_text, genre)
            for url in (result.image_url, result.thumbnail_url):
                if not self.uploader.owns_url(url):
                    raise UnownedImageUrlError(
                        f"{generator.get_name()} returned a URL outside owned storage: {url}"
                    )
        except Exception:
            await self.prompt_selector.update_success_rate(prompt.id, False)
            raise

        image = GeneratedImage(
            song_id=song_id,
            genre=genre,
            image_url=result.image_url,
            thumbnail_url=result.thumbnail_url,
            storage_key=result.storage_key,
            storage_folder=result.storage_folder,
            prompt_text=prompt.prompt_text,
            prompt_id=prompt.id,
            prompt_category=prompt.category.value,
            generator_name=generator.get_name(),
            processing_time_ms=int(result.metadata.get("processing_time_ms", 0)),
            generation_metadata=dict(result.metadata),
        )

        async with await self.uow_factory() as uow:
            await uow.images.add(image)

        # success_rate folds over the pre-increment usage_count
        await self.prompt_selector.update_success_rate(prompt.id, True)
        await self.prompt_selector.increment_usage(prompt.id)

        logger.info(
            "generation.unit.succeeded",
            image_id=str(image.id),
            genre=genre,
            generator=generator.get_name(),
            prompt_id=str(prompt.id),
            processing_time_ms=image.processing_time_ms,
        )
        return image

"""Image service: on-demand generation, listings and statistics."""

import math
from typing import Any, Optional
from uuid import UUID

import structlog

from vibra.models.generated_image import GeneratedImage
from vibra.models.prompt import PromptCategory
from vibra.services.exceptions import ImageNotFoundError, SongNotFoundError
from vibra.services.image_generation.base import ImageGenerator
from vibra.services.image_generation.pipeline import GenerationPipeline
from vibra.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


class ImageService:
    """Synchronous image operations backing the HTTP API.

    Unlike playback, on-demand generation makes the caller wait, so generator
    and storage errors propagate instead of being contained.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        pipeline: GenerationPipeline,
        on_demand_generator: ImageGenerator,
        fallback_genre: str = "Pop",
    ):
        self.uow_factory = uow_factory
        self.pipeline = pipeline
        self.on_demand_generator = on_demand_generator
        self.fallback_genre = fallback_genre

    async def generate_image(
        self,
        song_id: Optional[UUID] = None,
        genre: Optional[str] = None,
        category: Optional[PromptCategory] = None,
    ) -> GeneratedImage:
        """Generate one image now.

        With song_id the song's genre is used (fallback genre when unset); an
        explicit genre overrides it. Without song_id, genre is required.

        Raises:
            ValueError: Neither song_id nor genre given
            SongNotFoundError: song_id does not resolve
            NoPromptAvailableError: No active prompt for genre/category
            ProviderError / StorageError: Generation failed after retries
        """
        if song_id is None and not genre:
            raise ValueError("Either song_id or genre is required")

        if song_id is not None:
            async with await self.uow_factory() as uow:
                song = await uow.songs.get_by_id(song_id)
            if song is None:
                raise SongNotFoundError(f"Song {song_id} not found")
            genre = genre or song.genre or self.fallback_genre

        logger.info(
            "image.generate.requested",
            song_id=str(song_id) if song_id else None,
            genre=genre,
            category=category.value if category else None,
            generator=self.on_demand_generator.get_name(),
        )
        return await self.pipeline.run(
            self.on_demand_generator, genre, category=category, song_id=song_id  # type: ignore[arg-type]
        )

    async def get_images_by_song(
        self, song_id: UUID, page: int = 1, limit: int = 10
    ) -> tuple[list[GeneratedImage], int]:
        """Active images for a song, newest first.

        Returns:
            Tuple of (images on page, total active images for the song)
        """
        async with await self.uow_factory() as uow:
            return await uow.images.list_by_song_paginated(
                song_id, offset=(page - 1) * limit, limit=limit
            )

    async def list_images(
        self, genre: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[GeneratedImage], int]:
        """Active images, optionally for one genre, newest first."""
        async with await self.uow_factory() as uow:
            return await uow.images.list_paginated(
                genre=genre, offset=(page - 1) * limit, limit=limit
            )

    async def get_image(self, image_id: UUID) -> GeneratedImage:
        """Fetch an active image.

        Raises:
            ImageNotFoundError: Unknown id or soft-deleted image
        """
        async with await self.uow_factory() as uow:
            image = await uow.images.get_by_id(image_id)

        if image is None or not image.is_active:
            raise ImageNotFoundError(f"Image {image_id} not found")
        return image

    async def deactivate_image(self, image_id: UUID) -> None:
        """Soft delete an image. Stored files are left in place.

        Raises:
            ImageNotFoundError: Unknown id or already soft-deleted
        """
        async with await self.uow_factory() as uow:
            image = await uow.images.get_by_id(image_id)
            if image is None or not image.is_active:
                raise ImageNotFoundError(f"Image {image_id} not found")
            await uow.images.deactivate(image_id)

        logger.info("image.deactivated", image_id=str(image_id))

    async def get_stats(self) -> dict[str, Any]:
        """Aggregate counts across active images."""
        async with await self.uow_factory() as uow:
            summary = await uow.images.get_summary()
            by_genre = await uow.images.count_by_genre()
            by_generator = await uow.images.count_by_generator()

        return {
            **summary,
            "by_genre": [{"genre": genre, "count": count} for genre, count in by_genre],
            "by_generator": [
                {"generator": generator, "count": count} for generator, count in by_generator
            ],
        }

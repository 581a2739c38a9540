"""GeneratedImage repository.

Provides data access methods for GeneratedImage entities. Every read filters on
is_active so soft-deleted images are never served.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vibra.models.columns import utcnow
from vibra.models.generated_image import GeneratedImage


class GeneratedImageRepository:
    """Repository for GeneratedImage entities.

    Methods:
    - add: Persist new image record
    - get_by_id: Retrieve image by UUID (active or not)
    - get_newest_by_genre: Newest active images for a genre
    - sample_random: Uniformly random active images
    - count_active: Count active images, optionally per genre
    - list_paginated / list_by_song_paginated: Paginated listings with totals
    - deactivate: Soft delete
    - count_by_genre / count_by_generator / get_summary: Aggregates for stats
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, image: GeneratedImage) -> GeneratedImage:
        """Persist new image record to database.

        Args:
            image: GeneratedImage entity to persist

        Returns:
            Persisted image with generated ID
        """
        self.session.add(image)
        await self.session.flush()
        return image

    async def get_by_id(self, image_id: UUID) -> GeneratedImage | None:
        """Retrieve image by UUID, including soft-deleted ones."""
        result = await self.session.execute(
            select(GeneratedImage).where(GeneratedImage.id == image_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_newest_by_genre(self, genre: str, limit: int) -> list[GeneratedImage]:
        """Retrieve up to `limit` active images tagged with genre, newest first.

        Args:
            genre: Genre key
            limit: Maximum number of images to return

        Returns:
            List of images ordered by creation time (newest first)
        """
        result = await self.session.execute(
            select(GeneratedImage)
            .where(
                GeneratedImage.genre == genre,  # type: ignore[arg-type]
                GeneratedImage.is_active.is_(True),  # type: ignore[attr-defined]
            )
            .order_by(GeneratedImage.created_at.desc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def sample_random(
        self,
        limit: int,
        exclude_genre: str | None = None,
        exclude_ids: Sequence[UUID] = (),
    ) -> list[GeneratedImage]:
        """Retrieve up to `limit` uniformly random active images from any genre.

        Args:
            limit: Maximum number of images to return
            exclude_genre: Skip images tagged with this genre
            exclude_ids: Skip these image ids

        Returns:
            Random selection of active images (order is random)
        """
        if limit <= 0:
            return []

        stmt = select(GeneratedImage).where(
            GeneratedImage.is_active.is_(True)  # type: ignore[attr-defined]
        )
        if exclude_genre is not None:
            stmt = stmt.where(GeneratedImage.genre != exclude_genre)  # type: ignore[arg-type]
        if exclude_ids:
            stmt = stmt.where(GeneratedImage.id.not_in(list(exclude_ids)))  # type: ignore[attr-defined]

        result = await self.session.execute(stmt.order_by(func.random()).limit(limit))
        return list(result.scalars().all())

    async def count_active(self, genre: str | None = None) -> int:
        """Count active images, optionally restricted to one genre."""
        stmt = select(func.count(GeneratedImage.id)).where(  # type: ignore[arg-type]
            GeneratedImage.is_active.is_(True)  # type: ignore[attr-defined]
        )
        if genre is not None:
            stmt = stmt.where(GeneratedImage.genre == genre)  # type: ignore[arg-type]
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def list_paginated(
        self, genre: str | None = None, offset: int = 0, limit: int = 10
    ) -> tuple[list[GeneratedImage], int]:
        """Retrieve active images with pagination and total count.

        Args:
            genre: Optional genre filter
            offset: Number of images to skip
            limit: Maximum images to return

        Returns:
            Tuple of (images newest first, total matching count)
        """
        conditions = [GeneratedImage.is_active.is_(True)]  # type: ignore[attr-defined]
        if genre:
            conditions.append(GeneratedImage.genre == genre)  # type: ignore[arg-type]
        return await self._paginate(conditions, offset, limit)

    async def list_by_song_paginated(
        self, song_id: UUID, offset: int = 0, limit: int = 10
    ) -> tuple[list[GeneratedImage], int]:
        """Retrieve active images generated for one song, with total count."""
        conditions = [
            GeneratedImage.is_active.is_(True),  # type: ignore[attr-defined]
            GeneratedImage.song_id == song_id,  # type: ignore[arg-type]
        ]
        return await self._paginate(conditions, offset, limit)

    async def _paginate(
        self, conditions: list, offset: int, limit: int
    ) -> tuple[list[GeneratedImage], int]:
        # Query 1: Get total count
        count_result = await self.session.execute(
            select(func.count(GeneratedImage.id)).where(*conditions)  # type: ignore[arg-type]
        )
        total = count_result.scalar() or 0

        # Query 2: Get page
        result = await self.session.execute(
            select(GeneratedImage)
            .where(*conditions)
            .order_by(GeneratedImage.created_at.desc())  # type: ignore[attr-defined]
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def deactivate(self, image_id: UUID) -> bool:
        """Soft delete an image.

        Returns:
            True if a row was updated, False if the id does not exist
        """
        result = await self.session.execute(
            update(GeneratedImage)
            .where(GeneratedImage.id == image_id)  # type: ignore[arg-type]
            .values(is_active=False, updated_at=utcnow())
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def count_by_genre(self) -> list[tuple[str, int]]:
        """Active image counts per genre, largest first."""
        count = func.count(GeneratedImage.id)  # type: ignore[arg-type]
        result = await self.session.execute(
            select(GeneratedImage.genre, count)  # type: ignore[call-overload]
            .where(GeneratedImage.is_active.is_(True))  # type: ignore[attr-defined]
            .group_by(GeneratedImage.genre)
            .order_by(count.desc(), GeneratedImage.genre.asc())  # type: ignore[attr-defined]
        )
        return [(row[0], row[1]) for row in result.all()]

    async def count_by_generator(self) -> list[tuple[str, int]]:
        """Active image counts per generator, largest first."""
        count = func.count(GeneratedImage.id)  # type: ignore[arg-type]
        result = await self.session.execute(
            select(GeneratedImage.generator_name, count)  # type: ignore[call-overload]
            .where(GeneratedImage.is_active.is_(True))  # type: ignore[attr-defined]
            .group_by(GeneratedImage.generator_name)
            .order_by(count.desc(), GeneratedImage.generator_name.asc())  # type: ignore[attr-defined]
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_summary(self) -> dict[str, float | int]:
        """Aggregate totals across all active images.

        Returns:
            Dict with total, avg_processing_time_ms, unique_songs, unique_genres
        """
        result = await self.session.execute(
            select(
                func.count(GeneratedImage.id),  # type: ignore[arg-type]
                func.avg(GeneratedImage.processing_time_ms),
                func.count(func.distinct(GeneratedImage.song_id)),
                func.count(func.distinct(GeneratedImage.genre)),
            ).where(GeneratedImage.is_active.is_(True))  # type: ignore[attr-defined]
        )
        total, avg_time, unique_songs, unique_genres = result.one()
        return {
            "total": total or 0,
            "avg_processing_time_ms": round(float(avg_time or 0)),
            "unique_songs": unique_songs or 0,
            "unique_genres": unique_genres or 0,
        }

"""Prompt repository.

Provides data access methods for Prompt entities. Counter updates are single
UPDATE statements computed by the database, so concurrent writers never lose
increments.
"""

from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from vibra.models.columns import utcnow
from vibra.models.prompt import Prompt, PromptCategory


class PromptRepository:
    """Repository for Prompt entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, prompt: Prompt) -> Prompt:
        """Persist new prompt to database."""
        self.session.add(prompt)
        await self.session.flush()
        return prompt

    async def get_by_id(self, prompt_id: UUID) -> Prompt | None:
        """Retrieve prompt by UUID."""
        result = await self.session.execute(
            select(Prompt).where(Prompt.id == prompt_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_random_active(
        self, genre: str, category: PromptCategory | None = None
    ) -> Prompt | None:
        """Pick one active prompt for genre (and category) uniformly at random.

        Args:
            genre: Genre key
            category: Optional category filter

        Returns:
            Random matching prompt, or None if nothing matches
        """
        stmt = select(Prompt).where(
            Prompt.genre == genre,  # type: ignore[arg-type]
            Prompt.is_active.is_(True),  # type: ignore[attr-defined]
        )
        if category is not None:
            stmt = stmt.where(Prompt.category == category)  # type: ignore[arg-type]

        result = await self.session.execute(stmt.order_by(func.random()).limit(1))
        return result.scalar_one_or_none()

    async def exists(self, genre: str, category: PromptCategory) -> bool:
        """Check whether any prompt (active or not) exists for genre and category."""
        result = await self.session.execute(
            select(func.count(Prompt.id)).where(  # type: ignore[arg-type]
                Prompt.genre == genre,  # type: ignore[arg-type]
                Prompt.category == category,  # type: ignore[arg-type]
            )
        )
        return (result.scalar() or 0) > 0

    async def list_active_by_genre(self, genre: str, limit: int = 10) -> list[Prompt]:
        """Retrieve active prompts for a genre."""
        result = await self.session.execute(
            select(Prompt)
            .where(
                Prompt.genre == genre,  # type: ignore[arg-type]
                Prompt.is_active.is_(True),  # type: ignore[attr-defined]
            )
            .order_by(Prompt.category.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return list(result.scalars().all())

    async def increment_usage(self, prompt_id: UUID) -> bool:
        """Atomically increment usage_count and stamp last_used_at.

        Returns:
            True if the prompt exists and was updated
        """
        now = utcnow()
        result = await self.session.execute(
            update(Prompt)
            .where(Prompt.id == prompt_id)  # type: ignore[arg-type]
            .values(usage_count=Prompt.usage_count + 1, last_used_at=now, updated_at=now)
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def record_outcome(self, prompt_id: UUID, success: bool) -> bool:
        """Fold one generation outcome into the running success_rate.

        new_rate = (rate * usage_count + outcome) / (usage_count + 1), clamped to [0, 1].

        Returns:
            True if the prompt exists and was updated
        """
        outcome = 1.0 if success else 0.0
        new_rate = (Prompt.success_rate * Prompt.usage_count + outcome) / (
            Prompt.usage_count + 1.0
        )
        clamped = case((new_rate > 1.0, 1.0), (new_rate < 0.0, 0.0), else_=new_rate)
        result = await self.session.execute(
            update(Prompt)
            .where(Prompt.id == prompt_id)  # type: ignore[arg-type]
            .values(success_rate=clamped, updated_at=utcnow())
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def list_genres(self) -> list[str]:
        """Distinct genres that have at least one prompt, sorted."""
        result = await self.session.execute(
            select(Prompt.genre).distinct().order_by(Prompt.genre.asc())  # type: ignore[attr-defined]
        )
        return [row[0] for row in result.all()]

    async def count(self, active_only: bool = False) -> int:
        """Count prompts."""
        stmt = select(func.count(Prompt.id))  # type: ignore[arg-type]
        if active_only:
            stmt = stmt.where(Prompt.is_active.is_(True))  # type: ignore[attr-defined]
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_by_category(self) -> dict[str, int]:
        """Prompt counts per category."""
        result = await self.session.execute(
            select(Prompt.category, func.count(Prompt.id)).group_by(  # type: ignore[call-overload]
                Prompt.category
            )
        )
        counts = {}
        for category, total in result.all():
            key = category.value if isinstance(category, PromptCategory) else str(category)
            counts[key] = total
        return counts

    async def get_most_used(self, limit: int = 10) -> list[Prompt]:
        """Prompts ordered by usage_count, highest first."""
        result = await self.session.execute(
            select(Prompt).order_by(Prompt.usage_count.desc()).limit(limit)  # type: ignore[attr-defined]
        )
        return list(result.scalars().all())

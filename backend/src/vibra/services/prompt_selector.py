"""Prompt selection and usage statistics.

Picks a random active prompt for a genre and maintains the per-prompt
usage_count/success_rate counters. Counter updates are best effort: they run
in their own transaction and a failure is logged, never raised, because the
counters are statistics and must not fail a generation.
"""

from typing import Any
from uuid import UUID

import structlog

from vibra.models.prompt import Prompt, PromptCategory
from vibra.services.exceptions import NoPromptAvailableError, PromptNotFoundError
from vibra.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)

TOP_PROMPTS_LIMIT = 10


class PromptSelector:
    """Random prompt selection plus usage bookkeeping."""

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self.uow_factory = uow_factory

    async def get_random_prompt(
        self, genre: str, category: PromptCategory | None = None
    ) -> Prompt:
        """Pick one active prompt for genre (and category) uniformly at random.

        Args:
            genre: Genre key
            category: Optional category filter

        Returns:
            Randomly selected prompt

        Raises:
            NoPromptAvailableError: If no active prompt matches
        """
        async with await self.uow_factory() as uow:
            prompt = await uow.prompts.get_random_active(genre, category)

        if prompt is None:
            suffix = f" and category '{category.value}'" if category else ""
            raise NoPromptAvailableError(f"No active prompt for genre '{genre}'{suffix}")

        return prompt

    async def get_prompt(self, prompt_id: UUID) -> Prompt:
        """Fetch a prompt by id.

        Raises:
            PromptNotFoundError: If the id does not exist
        """
        async with await self.uow_factory() as uow:
            prompt = await uow.prompts.get_by_id(prompt_id)

        if prompt is None:
            raise PromptNotFoundError(f"Prompt {prompt_id} not found")
        return prompt

    async def find_prompts_by_genre(self, genre: str, limit: int = 10) -> list[Prompt]:
        async with await self.uow_factory() as uow:
            return await uow.prompts.list_active_by_genre(genre, limit=limit)

    async def increment_usage(self, prompt_id: UUID) -> None:
        """Add one to usage_count and stamp last_used_at. Never raises."""
        try:
            async with await self.uow_factory() as uow:
                updated = await uow.prompts.increment_usage(prompt_id)
            if not updated:
                logger.warning("prompt.usage.missing", prompt_id=str(prompt_id))
        except Exception as e:
            logger.warning(
                "prompt.usage.update_failed",
                prompt_id=str(prompt_id),
                error_type=type(e).__name__,
                error_message=str(e),
            )

    async def update_success_rate(self, prompt_id: UUID, success: bool) -> None:
        """Fold one outcome into success_rate. Never raises."""
        try:
            async with await self.uow_factory() as uow:
                updated = await uow.prompts.record_outcome(prompt_id, success)
            if not updated:
                logger.warning("prompt.success_rate.missing", prompt_id=str(prompt_id))
        except Exception as e:
            logger.warning(
                "prompt.success_rate.update_failed",
                prompt_id=str(prompt_id),
                success=success,
                error_type=type(e).__name__,
                error_message=str(e),
            )

    async def list_genres(self) -> list[str]:
        async with await self.uow_factory() as uow:
            return await uow.prompts.list_genres()

    async def get_prompt_stats(self) -> dict[str, Any]:
        """Aggregate prompt statistics.

        Returns:
            Dict with total, active, genres, by_category and most_used (top 10)
        """
        async with await self.uow_factory() as uow:
            total = await uow.prompts.count()
            active = await uow.prompts.count(active_only=True)
            genres = await uow.prompts.list_genres()
            by_category = await uow.prompts.count_by_category()
            most_used = await uow.prompts.get_most_used(limit=TOP_PROMPTS_LIMIT)

        return {
            "total": total,
            "active": active,
            "genres": genres,
            "by_category": by_category,
            "most_used": most_used,
        }

"""Prompt catalog API endpoints.

- GET /prompts/genres - Genres that have prompts
- GET /prompts/stats - Prompt counts and most used prompts
"""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from vibra.api.dependencies import get_prompt_selector
from vibra.api.errors import to_http_error
from vibra.services.prompt_selector import PromptSelector

logger = structlog.get_logger()
router = APIRouter(prefix="/prompts", tags=["prompts"])


class GenresResponse(BaseModel):
    genres: list[str]


class PromptUsageDTO(BaseModel):
    id: UUID
    genre: str
    category: str
    usage_count: int
    success_rate: float = Field(..., ge=0.0, le=1.0)
    is_active: bool


class PromptStatsResponse(BaseModel):
    """Response model for prompt statistics."""

    total: int
    active: int
    genres: list[str]
    by_category: dict[str, int]
    most_used: list[PromptUsageDTO] = Field(..., description="Top 10 prompts by usage_count")


@router.get("/genres", response_model=GenresResponse)
async def list_genres(
    prompt_selector: PromptSelector = Depends(get_prompt_selector),
) -> GenresResponse:
    try:
        genres = await prompt_selector.list_genres()
    except Exception as e:
        raise to_http_error(e, "prompts.genres.failed")
    return GenresResponse(genres=genres)


@router.get("/stats", response_model=PromptStatsResponse)
async def get_prompt_stats(
    prompt_selector: PromptSelector = Depends(get_prompt_selector),
) -> PromptStatsResponse:
    """Prompt totals, per-category counts and the most used prompts."""
    try:
        stats = await prompt_selector.get_prompt_stats()
    except Exception as e:
        raise to_http_error(e, "prompts.stats.failed")

    most_used = [
        PromptUsageDTO(
            id=prompt.id,
            genre=prompt.genre,
            category=_category_value(prompt.category),
            usage_count=prompt.usage_count,
            success_rate=prompt.success_rate,
            is_active=prompt.is_active,
        )
        for prompt in stats["most_used"]
    ]
    return PromptStatsResponse(
        total=stats["total"],
        active=stats["active"],
        genres=stats["genres"],
        by_category=stats["by_category"],
        most_used=most_used,
    )


def _category_value(category: Optional[object]) -> str:
    return getattr(category, "value", str(category))

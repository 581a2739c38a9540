"""Prompt entity - Genre-keyed text-to-image prompt with usage statistics."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from vibra.models.columns import timestamp_column, utcnow

MAX_PROMPT_LENGTH = 3000


class PromptCategory(str, Enum):
    """Fixed set of prompt categories."""

    BASE = "base"
    VARIATION = "variation"
    MOOD = "mood"
    STYLE = "style"


class Prompt(SQLModel, table=True):
    """Prompt is one candidate generation input for a genre.

    usage_count and success_rate are statistics maintained by the prompt selector.
    success_rate is a running average kept within [0, 1].
    """

    __tablename__ = "prompts"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    genre: str = Field(max_length=100, index=True)
    category: PromptCategory = Field(index=True)
    prompt_text: str = Field(max_length=MAX_PROMPT_LENGTH)
    is_active: bool = Field(default=True, index=True)
    language: str = Field(default="en", max_length=10)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    usage_count: int = Field(default=0)
    success_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    last_used_at: Optional[datetime] = Field(
        default=None, sa_column=timestamp_column(nullable=True)
    )
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())

    @field_validator("prompt_text")
    @classmethod
    def validate_prompt_text(cls, v: str) -> str:
        """Validate prompt text is non-blank and within the length limit."""
        if not v or not v.strip():
            raise ValueError("Prompt text cannot be empty")
        if len(v) > MAX_PROMPT_LENGTH:
            raise ValueError(f"Prompt text must be at most {MAX_PROMPT_LENGTH} characters")
        return v

"""GeneratedImage entity - Durable record of every generated artwork."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from vibra.models.columns import timestamp_column, utcnow


class GeneratedImage(SQLModel, table=True):
    """GeneratedImage stores an image produced by one of the generators.

    Records are append-only: image_url and storage_key never change after creation.
    Only is_active (soft delete) and user_favorites mutate afterwards.
    """

    __tablename__ = "generated_images"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    song_id: Optional[UUID] = Field(default=None, index=True)  # None for genre-scoped images
    genre: str = Field(max_length=100, index=True)
    image_url: str = Field(max_length=1000)
    thumbnail_url: str = Field(max_length=1000)
    storage_key: str = Field(max_length=500)
    storage_folder: str = Field(max_length=500)
    prompt_text: str  # TEXT field
    prompt_id: Optional[UUID] = Field(default=None)
    prompt_category: Optional[str] = Field(default=None, max_length=50)
    generator_name: str = Field(max_length=100, index=True)
    processing_time_ms: int = Field(default=0)
    # "metadata" is reserved on declarative classes, so the attribute is renamed
    generation_metadata: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))
    is_active: bool = Field(default=True, index=True)
    user_favorites: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column(index=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())

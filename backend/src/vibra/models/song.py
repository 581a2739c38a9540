"""Song entity - Catalog track consumed for genre and duration lookups."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from vibra.models.columns import timestamp_column, utcnow


class Song(SQLModel, table=True):
    """Song is owned by the catalog; this service only reads it."""

    __tablename__ = "songs"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    title: str = Field(max_length=500)
    artist: str = Field(max_length=300)
    duration_seconds: int = Field(default=0)
    genre: Optional[str] = Field(default=None, max_length=100, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=timestamp_column())

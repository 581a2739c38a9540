"""Song repository.

Read access to the catalog's songs table.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vibra.models.song import Song


class SongRepository:
    """Repository for Song entities."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def add(self, song: Song) -> Song:
        """Persist new song (used by seeding and tests)."""
        self.session.add(song)
        await self.session.flush()
        return song

    async def get_by_id(self, song_id: UUID) -> Song | None:
        """Retrieve song by UUID.

        Args:
            song_id: Song's unique identifier

        Returns:
            Song if found, None otherwise
        """
        result = await self.session.execute(
            select(Song).where(Song.id == song_id)  # type: ignore[arg-type]
        )
        return result.scalar_one_or_none()

    async def get_playback_info(self, song_id: UUID) -> tuple[str | None, int] | None:
        """Return (genre, duration_seconds) for a song, or None if it does not exist."""
        result = await self.session.execute(
            select(Song.genre, Song.duration_seconds).where(  # type: ignore[call-overload]
                Song.id == song_id  # type: ignore[arg-type]
            )
        )
        row = result.one_or_none()
        if row is None:
            return None
        return row[0], row[1]

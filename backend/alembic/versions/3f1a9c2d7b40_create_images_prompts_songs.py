"""create_generated_images_prompts_and_songs

Revision ID: 3f1a9c2d7b40
Revises:
Create Date: 2025-11-03 10:12:41.208913

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2d7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

prompt_category = sa.Enum("BASE", "VARIATION", "MOOD", "STYLE", name="promptcategory")


def upgrade() -> None:
    """Create songs, prompts and generated_images tables."""
    # Catalog songs (read-only for this service)
    op.create_table(
        "songs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("artist", sa.String(length=300), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("genre", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_songs_genre", "songs", ["genre"])

    op.create_table(
        "prompts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("genre", sa.String(length=100), nullable=False),
        sa.Column("category", prompt_category, nullable=False),
        sa.Column("prompt_text", sa.String(length=3000), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("language", sa.String(length=10), nullable=False, server_default="en"),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "success_rate >= 0 AND success_rate <= 1", name="ck_prompts_success_rate_range"
        ),
    )
    op.create_index("ix_prompts_genre", "prompts", ["genre"])
    op.create_index("ix_prompts_category", "prompts", ["category"])
    op.create_index("ix_prompts_is_active", "prompts", ["is_active"])
    # Random selection filters on (genre, is_active)
    op.create_index("ix_prompts_genre_is_active", "prompts", ["genre", "is_active"])

    op.create_table(
        "generated_images",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("song_id", sa.Uuid(), nullable=True),
        sa.Column("genre", sa.String(length=100), nullable=False),
        sa.Column("image_url", sa.String(length=1000), nullable=False),
        sa.Column("thumbnail_url", sa.String(length=1000), nullable=False),
        sa.Column("storage_key", sa.String(length=500), nullable=False),
        sa.Column("storage_folder", sa.String(length=500), nullable=False),
        sa.Column("prompt_text", sa.Text(), nullable=False),
        sa.Column("prompt_id", sa.Uuid(), nullable=True),
        sa.Column("prompt_category", sa.String(length=50), nullable=True),
        sa.Column("generator_name", sa.String(length=100), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("user_favorites", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_generated_images_song_id", "generated_images", ["song_id"])
    op.create_index("ix_generated_images_genre", "generated_images", ["genre"])
    op.create_index("ix_generated_images_generator_name", "generated_images", ["generator_name"])
    op.create_index("ix_generated_images_is_active", "generated_images", ["is_active"])
    op.create_index("ix_generated_images_created_at", "generated_images", ["created_at"])
    # Playback query: active images of a genre, newest first
    op.create_index(
        "ix_generated_images_genre_active_created",
        "generated_images",
        ["genre", "is_active", sa.text("created_at DESC")],
    )


def downgrade() -> None:
    """Drop generated_images, prompts and songs tables."""
    op.drop_table("generated_images")
    op.drop_table("prompts")
    prompt_category.drop(op.get_bind(), checkfirst=True)
    op.drop_table("songs")

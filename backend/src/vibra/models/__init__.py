"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from vibra.models.generated_image import GeneratedImage
from vibra.models.prompt import Prompt, PromptCategory
from vibra.models.song import Song

__all__ = [
    "GeneratedImage",
    "Prompt",
    "PromptCategory",
    "Song",
]

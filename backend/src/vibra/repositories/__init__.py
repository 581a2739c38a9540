"""Repository layer.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from vibra.repositories.generated_image import GeneratedImageRepository
from vibra.repositories.prompt import PromptRepository
from vibra.repositories.song import SongRepository

__all__ = [
    "GeneratedImageRepository",
    "PromptRepository",
    "SongRepository",
]

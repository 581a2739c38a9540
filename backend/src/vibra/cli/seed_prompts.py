"""CLI command for seeding the prompt catalog.

Creates one prompt per category (base, variation, mood, style) for every
genre given. Existing (genre, category) pairs are left untouched, so the
command is safe to re-run.

Usage:
    python -m vibra.cli.seed_prompts [GENRE ...] [OPTIONS]

Examples:
    # Seed the default genre list
    python -m vibra.cli.seed_prompts

    # Seed specific genres
    python -m vibra.cli.seed_prompts Rock Jazz "Hip Hop"

    # Show what would be created
    python -m vibra.cli.seed_prompts --dry-run
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
from typing import Callable, Sequence

import structlog

from vibra.core.config import Settings, configure_logging
from vibra.core.database import get_engine, setup_db_session
from vibra.models.prompt import Prompt, PromptCategory
from vibra.uow import UnitOfWorkFactory, create_uow_factory

logger = structlog.get_logger()

DEFAULT_GENRES = (
    "Pop",
    "Rock",
    "Hip Hop",
    "Electronic",
    "Jazz",
    "Classical",
    "Reggaeton",
    "Latin",
    "R&B",
    "Metal",
    "Indie",
    "Country",
)

PROMPT_TEMPLATES: dict[PromptCategory, Callable[[str], str]] = {
    PromptCategory.BASE: lambda genre: (
        f"Abstract artistic visualization representing {genre} music. Vibrant colors, "
        "dynamic composition, and modern aesthetics that capture the essence and energy "
        "of the genre."
    ),
    PromptCategory.VARIATION: lambda genre: (
        f"Alternative perspective of {genre} music: surreal dreamlike atmosphere with "
        "flowing abstract forms, color gradients, and artistic interpretation of sound "
        "waves and musical emotions."
    ),
    PromptCategory.MOOD: lambda genre: (
        f"Emotional essence of {genre}: atmospheric depth, layered textures, mood-driven "
        "color palette that evokes the feelings and spirit of the music genre."
    ),
    PromptCategory.STYLE: lambda genre: (
        f"Stylized artistic representation of {genre} with modern art influences, bold "
        "visual language, contemporary design elements, and creative interpretation of "
        "musical identity."
    ),
}


@dataclass
class SeedResult:
    created: list[tuple[str, str]] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)


async def seed_prompts(
    uow_factory: UnitOfWorkFactory, genres: Sequence[str], dry_run: bool = False
) -> SeedResult:
    """Create missing (genre, category) prompts.

    Args:
        uow_factory: UnitOfWork factory
        genres: Genres to seed
        dry_run: Report what would be created without writing

    Returns:
        SeedResult listing created and skipped (genre, category) pairs
    """
    result = SeedResult()

    async with await uow_factory() as uow:
        for genre in genres:
            for category, template in PROMPT_TEMPLATES.items():
                pair = (genre, category.value)
                if await uow.prompts.exists(genre, category):
                    result.skipped.append(pair)
                    continue

                result.created.append(pair)
                if not dry_run:
                    await uow.prompts.add(
                        Prompt(
                            genre=genre,
                            category=category,
                            prompt_text=template(genre),
                            tags=[genre.lower(), category.value],
                        )
                    )

    logger.info(
        "prompts.seeded",
        genres=len(genres),
        created=len(result.created),
        skipped=len(result.skipped),
        dry_run=dry_run,
    )
    return result


def parse_args(argv: Sequence[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Seed base/variation/mood/style prompts for each genre",
        epilog="Existing (genre, category) prompts are never modified",
    )

    parser.add_argument(
        "genres",
        nargs="*",
        help=f"Genres to seed (default: {', '.join(DEFAULT_GENRES)})",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be created without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    genres = args.genres or list(DEFAULT_GENRES)
    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        result = await seed_prompts(uow_factory, genres, dry_run=args.dry_run)
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSeeding interrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1
    finally:
        await get_engine(session_factory).dispose()

    print("\n" + "=" * 60)
    print("Prompt Seeding Summary")
    print("=" * 60)
    print(f"Genres processed: {len(genres)}")
    print(f"Prompts created: {len(result.created)}")
    print(f"Prompts already present: {len(result.skipped)}")
    if args.dry_run:
        print("\n[DRY RUN] No changes were persisted to database")
    print("=" * 60 + "\n")
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

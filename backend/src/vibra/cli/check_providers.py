"""CLI command for checking image generator availability.

Runs the same diagnostics as application startup and prints one line per
generator.

Usage:
    python -m vibra.cli.check_providers

Exit code is 1 when no generator is available.
"""

import asyncio
import sys

import httpx
import structlog

from vibra.core.config import Settings, configure_logging
from vibra.core.database import get_engine, setup_db_session
from vibra.uow import create_uow_factory
from vibra.wiring import build_services

logger = structlog.get_logger()


async def async_main() -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (at least one generator available), 1 (none available)
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    async with httpx.AsyncClient(timeout=settings.download_timeout_seconds) as http_client:
        services = build_services(settings, uow_factory, http_client)
        availability = await services.playback.check_generators()

    await get_engine(session_factory).dispose()

    print("\n" + "=" * 60)
    print("Image Generator Availability")
    print("=" * 60)
    for name, generator in services.generators.items():
        available = availability.get(generator.get_name(), False)
        marker = "available" if available else "UNAVAILABLE"
        on_demand = " (on-demand)" if name == settings.on_demand_generator else ""
        print(f"{generator.tier.value:<10} {generator.get_name():<20} {marker}{on_demand}")
    print("=" * 60 + "\n")

    if not any(availability.values()):
        logger.error("cli.no_generators_available")
        return 1
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()

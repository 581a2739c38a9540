"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from vibra.api.routes import images, prompts
from vibra.core.config import Settings, configure_logging
from vibra.core.database import get_engine, setup_db_session
from vibra.uow import create_uow_factory
from vibra.wiring import build_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, initialize database session factory, build
      storage/generator/orchestration services, run generator diagnostics
    - Shutdown: Cancel pending background generation, close HTTP client and
      database connections
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    # Shared HTTP client for storage, providers and downloads
    http_client = httpx.AsyncClient(timeout=settings.download_timeout_seconds)

    services = build_services(settings, uow_factory, http_client)

    # Route dependencies read these from app.state
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.http_client = http_client
    app.state.prompt_selector = services.prompt_selector
    app.state.image_service = services.image_service
    app.state.playback = services.playback

    # Startup diagnostics: never blocks startup, only reports
    try:
        availability = await services.playback.check_generators()
        if not any(availability.values()):
            logger.warning("startup.no_generators_available", generators=availability)
    except Exception as e:
        logger.error(
            "startup.generator_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        on_demand_generator=settings.on_demand_generator,
    )

    yield

    # Shutdown: stop background generation and release connections
    logger.info("application.shutdown")
    await services.playback.shutdown()
    await http_client.aclose()
    await get_engine(session_factory).dispose()


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Vibra Visuals API",
        description="Music-synchronized artwork generation and playback",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(images.router)
    app.include_router(prompts.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Database round trip plus the number of live generation jobs.

        Returns:
            200: {"status": "healthy", "generation_jobs": n}
            503: {"status": "unhealthy", "error": {"type": ..., "message": ...}}
        """
        try:
            async with app.state.session_factory() as session:
                await session.scalar(text("SELECT 1"))
        except Exception as e:
            logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "error": {"type": type(e).__name__, "message": str(e)}}

        playback = getattr(app.state, "playback", None)
        jobs = len(playback.active_jobs()) if playback is not None else 0
        return {"status": "healthy", "generation_jobs": jobs}

    return app


app = create_app()

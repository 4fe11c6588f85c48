"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from restora.api.errors import register_exception_handlers
from restora.api.routes import restoration, sessions, video
from restora.core.config import Settings, configure_logging
from restora.core.dependencies import build_services

logger = structlog.get_logger()

HOUSEKEEPING_INTERVAL_SECONDS = 3600


async def run_housekeeping(app: FastAPI, shutdown_event: asyncio.Event) -> None:
    """Purge idle sessions and stale rate-limit entries once per interval."""
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=HOUSEKEEPING_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass
        if shutdown_event.is_set():
            return

        services = app.state.services
        sessions_purged = services.sessions.purge()
        entries_purged = services.rate_limiter.purge() if services.rate_limiter else 0
        logger.info(
            "housekeeping.completed",
            sessions_purged=sessions_purged,
            rate_limit_entries_purged=entries_purged,
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, build providers and stores, start housekeeping
    - Shutdown: Cancel in-flight video requests and sessions, stop housekeeping
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    services = build_services(settings)
    app.state.services = services

    shutdown_event = asyncio.Event()
    housekeeping_task = asyncio.create_task(run_housekeeping(app, shutdown_event))

    logger.info(
        "application.startup",
        app_env=settings.app_env,
        providers=services.provider_status(),
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()
    housekeeping_task.cancel()

    await services.video_requests.shutdown()
    services.sessions.shutdown()

    await asyncio.gather(housekeeping_task, return_exceptions=True)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Restora Backend API",
        description="Photo restoration and animation with multi-provider orchestration",
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

    register_exception_handlers(app)

    app.include_router(restoration.router)
    app.include_router(video.router)
    app.include_router(sessions.router)

    @app.get("/health")
    async def health_check(request: Request):
        """Health check reporting which providers are configured.

        Returns:
            200: {"status": "healthy", "providers": {...}}
        """
        services = request.app.state.services
        providers = services.provider_status()
        logger.debug("health_check.success")
        return {
            "status": "healthy",
            "providers": providers,
            "activeSessions": len(services.sessions),
            "videoRequests": len(services.video_requests),
        }

    return app


# Create app instance for uvicorn
app = create_app()

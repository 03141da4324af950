"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from portal.config import get_settings
from portal.database import close_db, init_db
from portal.gamification.challenge_router import router as challenge_router
from portal.gamification.comment_router import router as comment_router
from portal.gamification.router import router as gamification_router
from portal.gamification.storage import get_storage, reset_storage
from portal.health.router import router as health_router
from portal.middleware import setup_middleware
from portal.redis_client import close_redis, init_redis
from portal.users.router import router as users_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    # Fail fast on a misconfigured storage provider
    storage = get_storage()
    logger.info(
        "startup_complete",
        environment=settings.environment,
        storage_provider=type(storage).__name__,
        redis_enabled=bool(settings.redis_url),
    )

    yield

    reset_storage()
    await close_db()
    await close_redis()
    logger.info("shutdown_complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Portal Gamification API",
        description="Points ledger, rankings, challenges and submissions for the institutional portal",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(gamification_router)
    app.include_router(challenge_router)
    app.include_router(comment_router)

    return app


app = create_app()

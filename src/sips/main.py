"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sips.cache import create_cache
from sips.config import get_settings
from sips.database import close_db, init_db, session_scope
from sips.errors import StoreError
from sips.gamification.router import router as gamification_router
from sips.gamification.seed import seed_reference_data
from sips.health.router import router as health_router
from sips.middleware import setup_middleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the store and cache, seed reference data, close both on shutdown."""
    settings = get_settings()
    await init_db(settings)
    app.state.cache = create_cache(settings)

    # Idempotent; a missing schema only means migrations have not run yet
    try:
        async with session_scope() as db:
            await seed_reference_data(db)
    except StoreError:
        logger.warning("Reference data seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await app.state.cache.close()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Syntax & Sips Gamification API",
        description="Points, levels, badges, challenges and leaderboards for Syntax & Sips",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(gamification_router)

    return app


app = create_app()

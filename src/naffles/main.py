"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from naffles.config import get_settings
from naffles.database import close_db, get_session_factory, init_db
from naffles.health.router import router as health_router
from naffles.middleware import setup_middleware
from naffles.points.seed import seed_default_achievements, seed_default_partner_tokens
from naffles.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


async def seed_reference_data() -> None:
    """Insert the default achievement catalogue and launch partner tokens."""
    async with get_session_factory()() as db:
        await seed_default_achievements(db)
        await seed_default_partner_tokens(db)
        await db.commit()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    try:
        await seed_reference_data()
    except Exception:
        logger.warning("Reference data seeding failed (tables may not exist yet)", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Naffles Points",
        description="Points ledger for the Naffles raffle and gaming platform",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    return app


app = create_app()

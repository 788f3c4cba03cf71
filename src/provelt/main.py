"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from provelt.chain.dispatch import dispatcher
from provelt.config import get_settings
from provelt.database import close_db, init_db
from provelt.health.router import router as health_router
from provelt.middleware import setup_middleware
from provelt.redis_client import close_redis, init_redis
from provelt.review.router import router as review_router
from provelt.staking.router import router as staking_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)
    if not settings.chain_config().minting_configured:
        logger.warning("NFT minting not configured; approvals will issue placeholder badges")

    yield

    dispatcher.shutdown()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="PROVELT API",
        description="Challenge review, badge issuance and staking for PROVELT",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(review_router)
    app.include_router(staking_router)

    return app


app = create_app()

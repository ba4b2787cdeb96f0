"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cart_recovery_service.api.v1.router import api_router
from cart_recovery_service.config import get_settings
from cart_recovery_service.infrastructure.database.connection import (
    dispose_engine,
    ensure_schema,
    get_engine,
)
from cart_recovery_service.infrastructure.redis import close_redis
from cart_recovery_service.log_config import configure_logging

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting Cart Recovery Service",
        app_env=settings.app_env,
        debug=settings.debug,
    )

    await ensure_schema(get_engine())

    yield

    await close_redis()
    await dispose_engine()
    logger.info("Shutting down Cart Recovery Service")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Cart Recovery API",
        description="Abandoned cart tracking, lifecycle scheduling and recovery emails",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "cart_recovery_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()

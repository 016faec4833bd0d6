"""FastAPI application entry point for the transaction workflow engine.

Lifecycle:
    1. Startup: Initialize logging and the database, create tables (dev mode).
    2. Running: Serve the REST API.
    3. Shutdown: Let in-flight side effects finish, close the database.

Run with:
    uvicorn transaction_engine.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from transaction_engine.config import get_settings
from transaction_engine.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info("app.starting", env=settings.app_env, debug=settings.app_debug)

    # 2. Initialize database
    from transaction_engine.infrastructure.database.engine import close_db, init_db

    await init_db()
    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    from transaction_engine.services.side_effects import get_side_effect_dispatcher

    logger.info("app.shutting_down")
    await get_side_effect_dispatcher().drain()
    await close_db()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Transaction Workflow Engine",
        description=(
            "Workflow steps, gating conditions and compliance automation "
            "for real-estate transactions."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from transaction_engine.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from transaction_engine.api.routes.condition_templates import router as templates_router
    from transaction_engine.api.routes.conditions import router as conditions_router
    from transaction_engine.api.routes.health import router as health_router
    from transaction_engine.api.routes.transactions import router as transactions_router

    app.include_router(health_router)
    app.include_router(transactions_router)
    app.include_router(conditions_router)
    app.include_router(templates_router)

    return app


# The app instance used by Uvicorn
app = create_app()

"""FastAPI application factory for the tally REST API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tally.config.schema import TallyConfig


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared services on startup, drain and dispose on shutdown."""
    from tally.services import build_services

    services = await build_services(app.state.config)

    app.state.services = services
    app.state.db_factory = services.db_factory
    app.state.engine = services.engine
    app.state.provider_manager = services.provider_manager

    yield

    await services.close()


def create_app(config: TallyConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    from tally import __version__
    from tally.config.loader import load_config
    from tally.core.logging import configure_logging

    if config is None:
        config = load_config()
    configure_logging(config.logging)

    app = FastAPI(
        title="tally",
        description="Conversational personal-finance assistant API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config

    from fastapi.middleware.cors import CORSMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from tally.api.errors import install_error_handlers

    install_error_handlers(app)

    # Routes
    from tally.api.auth import router as auth_router
    from tally.api.health import router as health_router
    from tally.api.routes.chat import router as chat_router
    from tally.api.routes.ledger import router as ledger_router
    from tally.api.routes.receipts import router as receipts_router

    app.include_router(auth_router)
    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(ledger_router)
    app.include_router(receipts_router)

    return app

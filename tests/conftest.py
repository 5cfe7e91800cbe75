"""Shared test fixtures for tally."""

from __future__ import annotations

import logging
from types import SimpleNamespace
from typing import TYPE_CHECKING, Any

import pytest

from tally.config.schema import AssistantConfig, DatabaseConfig, TallyConfig
from tally.ledger.db import create_db
from tally.ledger.repository import LedgerRepository
from tally.providers.manager import ProviderManager
from tally.services import wire_services

if TYPE_CHECKING:
    from pathlib import Path

    from fastapi.testclient import TestClient
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from tally.services import Services
    from tests.fixtures.providers import MockProvider


@pytest.fixture
async def database(
    tmp_path: Path,
) -> tuple[async_sessionmaker[AsyncSession], AsyncEngine]:  # type: ignore[misc]
    """File-backed SQLite so concurrent sessions get their own connection."""
    factory, engine = await create_db(
        DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'tally.db'}")
    )
    yield factory, engine
    await engine.dispose()


@pytest.fixture
def db_factory(
    database: tuple[async_sessionmaker[AsyncSession], AsyncEngine],
) -> async_sessionmaker[AsyncSession]:
    return database[0]


async def create_user(
    factory: async_sessionmaker[AsyncSession],
    email: str = "alice@example.com",
    display_name: str = "Alice",
) -> str:
    async with factory() as session, session.begin():
        user = await LedgerRepository(session).create_user(
            email, "not-a-real-hash", display_name
        )
        return user.id


@pytest.fixture
async def user_id(db_factory: async_sessionmaker[AsyncSession]) -> str:
    return await create_user(db_factory)


@pytest.fixture
async def other_user_id(db_factory: async_sessionmaker[AsyncSession]) -> str:
    return await create_user(db_factory, "bob@example.com", "Bob")


@pytest.fixture
def make_services(
    database: tuple[async_sessionmaker[AsyncSession], AsyncEngine],
) -> Any:
    """Factory: wire the full service graph around a mock provider."""

    async def _make(provider: MockProvider, **assistant: Any) -> Services:
        factory, engine = database
        pm = ProviderManager()
        await pm.register(provider)
        settings: dict[str, Any] = {
            "model": f"{provider.provider_id}:test-model",
            "max_retries": 0,
            "engine_timeout": 5.0,
            "stream_idle_timeout": 5.0,
        }
        settings.update(assistant)
        config = TallyConfig(assistant=AssistantConfig(**settings))
        return wire_services(config, engine, factory, pm)

    return _make


@pytest.fixture(autouse=True)
def _reset_tally_logger() -> Any:
    """Undo handlers installed by configure_logging so caplog keeps working."""
    yield
    logger = logging.getLogger("tally")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def make_client(make_services: Any) -> Any:
    """Factory: a TestClient over the API routers, without the lifespan."""

    async def _make(
        provider: MockProvider | None = None,
        *,
        jwt_secret: str = "test-secret-key",
        registration_enabled: bool = True,
        **assistant: Any,
    ) -> TestClient:
        from fastapi import FastAPI
        from fastapi.testclient import TestClient

        from tally.api.auth import router as auth_router
        from tally.api.errors import install_error_handlers
        from tally.api.health import router as health_router
        from tally.api.routes.chat import router as chat_router
        from tally.api.routes.ledger import router as ledger_router
        from tally.api.routes.receipts import router as receipts_router
        from tests.fixtures.providers import MockProvider

        services = await make_services(provider or MockProvider(), **assistant)
        app = FastAPI(title="test-tally")
        app.state.config = SimpleNamespace(
            auth=SimpleNamespace(
                jwt_secret=jwt_secret,
                registration_enabled=registration_enabled,
                token_expiry_hours=24,
            ),
        )
        app.state.services = services
        app.state.db_factory = services.db_factory
        app.state.provider_manager = services.provider_manager
        install_error_handlers(app)
        for router in (
            auth_router,
            health_router,
            chat_router,
            ledger_router,
            receipts_router,
        ):
            app.include_router(router)
        return TestClient(app, raise_server_exceptions=False)

    return _make


"""Process-wide collaborators, built once at startup and shared by every turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tally.assistant.context import ContextAssembler
from tally.assistant.orchestrator import ConversationOrchestrator
from tally.core.retry import RetryPolicy
from tally.ledger.db import create_db
from tally.providers.manager import build_provider_manager
from tally.receipts.ingest import ReceiptIngestor
from tally.receipts.parser import ReceiptParser
from tally.tools.executor import ToolExecutor

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from tally.config.schema import TallyConfig
    from tally.providers.manager import ProviderManager

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    config: TallyConfig
    engine: AsyncEngine
    db_factory: async_sessionmaker[AsyncSession]
    provider_manager: ProviderManager
    executor: ToolExecutor
    assembler: ContextAssembler
    orchestrator: ConversationOrchestrator
    ingestor: ReceiptIngestor

    async def close(self) -> None:
        """Let in-flight mutations finish, then release the connection pool."""
        await self.executor.drain()
        await self.engine.dispose()


def wire_services(
    config: TallyConfig,
    engine: AsyncEngine,
    db_factory: async_sessionmaker[AsyncSession],
    provider_manager: ProviderManager,
) -> Services:
    """Assemble the stateless collaborators around an existing DB and providers."""
    acfg = config.assistant
    executor = ToolExecutor(db_factory, parallel_reads=acfg.parallel_reads)
    assembler = ContextAssembler(db_factory)
    orchestrator = ConversationOrchestrator(
        provider_manager=provider_manager,
        executor=executor,
        assembler=assembler,
        db_factory=db_factory,
        config=acfg,
    )
    parser = ReceiptParser(
        provider_manager,
        config.receipts.model or acfg.model,
        retry=RetryPolicy(timeout=acfg.engine_timeout, max_retries=acfg.max_retries),
        categorize_items=config.receipts.categorize_items,
        max_concurrency=config.receipts.max_concurrency,
    )
    return Services(
        config=config,
        engine=engine,
        db_factory=db_factory,
        provider_manager=provider_manager,
        executor=executor,
        assembler=assembler,
        orchestrator=orchestrator,
        ingestor=ReceiptIngestor(parser, db_factory),
    )


async def build_services(config: TallyConfig) -> Services:
    """Open the database and register providers, then wire everything up."""
    factory, engine = await create_db(config.database)
    pm = await build_provider_manager(config)
    if not pm.provider_ids:
        logger.warning("No reasoning engine configured; chat and receipts will fail")
    return wire_services(config, engine, factory, pm)

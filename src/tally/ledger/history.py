"""Chat history store: append-only conversation turns per user."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select

from tally.ledger.models import ChatMessage

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True, slots=True)
class HistoryPage:
    """One page of turns, newest first."""

    items: list[ChatMessage]
    total: int
    page: int
    total_pages: int


class ChatHistoryRepository:
    """Async repository for completed turns.

    Like the ledger repository, it flushes but never commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self, user_id: str, user_message: str, assistant_response: str
    ) -> ChatMessage:
        entry = ChatMessage(
            user_id=user_id,
            user_message=user_message,
            assistant_response=assistant_response,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list(
        self, user_id: str, page: int = 1, page_size: int = 20
    ) -> HistoryPage:
        page = max(page, 1)
        page_size = max(page_size, 1)
        total = (
            await self._session.scalar(
                select(func.count(ChatMessage.id)).where(ChatMessage.user_id == user_id)
            )
            or 0
        )
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        items = list((await self._session.execute(stmt)).scalars().all())
        return HistoryPage(
            items=items,
            total=total,
            page=page,
            total_pages=math.ceil(total / page_size),
        )

    async def recent(self, user_id: str, limit: int = 5) -> list[ChatMessage]:
        """The last ``limit`` turns, oldest first, for prompt assembly."""
        if limit <= 0:
            return []
        stmt = (
            select(ChatMessage)
            .where(ChatMessage.user_id == user_id)
            .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
            .limit(limit)
        )
        items = list((await self._session.execute(stmt)).scalars().all())
        items.reverse()
        return items

    async def clear(self, user_id: str) -> int:
        """Delete every turn for the user and return how many were removed."""
        result = await self._session.execute(
            delete(ChatMessage).where(ChatMessage.user_id == user_id)
        )
        return result.rowcount or 0

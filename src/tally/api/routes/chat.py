"""Chat endpoints: single-shot and streamed turns, history, tool catalog."""

from __future__ import annotations

import contextlib
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from tally.api.auth import get_current_user
from tally.assistant.events import encode
from tally.ledger.history import ChatHistoryRepository
from tally.ledger.models import User
from tally.tools.catalog import CATALOG_VERSION, list_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

router = APIRouter(prefix="/api/chat", tags=["chat"])

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ToolResultOut(BaseModel):
    success: bool
    message: str


class ChatResponse(BaseModel):
    response: str
    tool_results: list[ToolResultOut]
    rounds: int


@router.post("", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> ChatResponse:
    """Run one turn and return the whole answer."""
    reply = await request.app.state.services.orchestrator.respond(body.message, user.id)
    return ChatResponse(
        response=reply.content,
        tool_results=[
            ToolResultOut(success=r.success, message=r.message)
            for r in reply.tool_results
        ],
        rounds=reply.rounds,
    )


@router.post("/stream")
async def chat_stream(
    body: ChatRequest,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> StreamingResponse:
    """Stream the turn as newline-delimited JSON events."""
    orchestrator = request.app.state.services.orchestrator
    user_id = user.id

    async def lines() -> AsyncIterator[str]:
        async with contextlib.aclosing(
            orchestrator.stream(
                body.message, user_id, is_disconnected=request.is_disconnected
            )
        ) as events:
            async for event in events:
                if await request.is_disconnected():
                    logger.info("Stream client for user %s disconnected", user_id)
                    break
                yield encode(event)

    return StreamingResponse(
        lines(),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/history")
async def history(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: User = Depends(get_current_user),  # noqa: B008
) -> dict[str, Any]:
    """Past turns, newest first."""
    async with request.app.state.db_factory() as session:
        result = await ChatHistoryRepository(session).list(user.id, page, limit)
    return {
        "items": [
            {
                "id": m.id,
                "userMessage": m.user_message,
                "assistantResponse": m.assistant_response,
                "createdAt": m.created_at.isoformat(),
            }
            for m in result.items
        ],
        "total": result.total,
        "page": result.page,
        "totalPages": result.total_pages,
    }


@router.delete("/history")
async def clear_history(
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> dict[str, int]:
    async with request.app.state.db_factory() as session, session.begin():
        deleted = await ChatHistoryRepository(session).clear(user.id)
    return {"deleted": deleted}


@router.get("/tools")
async def tools() -> dict[str, Any]:
    """The tool catalog as offered to the reasoning engine."""
    return {
        "version": CATALOG_VERSION,
        "tools": [
            {**t.to_provider_tool(), "mutating": t.mutating} for t in list_tools()
        ],
    }

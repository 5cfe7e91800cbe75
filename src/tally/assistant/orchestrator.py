"""Conversation orchestrator: one turn between user, engine and ledger.

A turn assembles the financial snapshot and recent history, then loops
engine call -> tool round -> engine call until the engine answers or the
round limit is hit.  The exchange is written to chat history once, after
the answer is complete.  No session or transaction is open while the
engine is working; every tool call brings its own.

Two modes share that protocol:

* :meth:`ConversationOrchestrator.respond` returns the whole answer.
* :meth:`ConversationOrchestrator.stream` yields transport events as the
  engine produces text.  Closing the iterator early abandons the turn and
  nothing is persisted.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from tally.assistant.engine import Answer, decode_reply, decode_tool_calls
from tally.assistant.events import (
    ChunkEvent,
    CompleteEvent,
    ConnectedEvent,
    ErrorEvent,
)
from tally.assistant.prompts import (
    CLARIFICATION_PROMPT,
    TOOL_CALLS_PLACEHOLDER,
    build_system_prompt,
    format_round_limit_fallback,
    format_tool_results,
)
from tally.core.errors import (
    ProviderTimeoutError,
    StorageError,
    TallyError,
    ValidationError,
)
from tally.core.retry import RetryPolicy, retry_with_backoff
from tally.ledger.history import ChatHistoryRepository
from tally.providers.base import PromptMessage
from tally.tools.catalog import list_tools

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tally.assistant.context import ContextAssembler
    from tally.assistant.events import StreamEvent
    from tally.config.schema import AssistantConfig
    from tally.providers.base import ModelProvider, StreamChunk
    from tally.providers.manager import ProviderManager
    from tally.tools.base import ToolCall, ToolResult
    from tally.tools.executor import ToolExecutor

logger = logging.getLogger(__name__)

ROUND_SEPARATOR = "\n\n"
GENERIC_FAILURE = "Something went wrong while answering. Please try again."


@dataclass(frozen=True, slots=True)
class AssistantReply:
    """Outcome of a single-shot turn."""

    content: str
    tool_results: tuple[ToolResult, ...] = ()
    rounds: int = 0  # tool rounds executed


class ConversationOrchestrator:
    """Drives turns for any number of users concurrently.

    Collaborators are created once at process start and shared; the
    orchestrator itself keeps no per-turn state on ``self``.
    """

    def __init__(
        self,
        *,
        provider_manager: ProviderManager,
        executor: ToolExecutor,
        assembler: ContextAssembler,
        db_factory: async_sessionmaker[AsyncSession],
        config: AssistantConfig,
    ) -> None:
        self._pm = provider_manager
        self._executor = executor
        self._assembler = assembler
        self._factory = db_factory
        self._config = config
        self._tools = [t.to_provider_tool() for t in list_tools()]
        self._retry = RetryPolicy(
            timeout=config.engine_timeout, max_retries=config.max_retries
        )

    # ── Single-shot ──────────────────────────────────────────────

    async def respond(self, message: str, user_id: str) -> AssistantReply:
        """Answer one message, running tool rounds as the engine asks.

        Raises:
            ValidationError: Empty or oversized message.
            ContextAssemblyError: The snapshot could not be built.
            UpstreamError: The engine or the history store failed.
        """
        text = self._validate(message)
        messages = await self._prepare(text, user_id)
        provider, model_id = self._pm.get_provider(self._config.model)

        all_results: list[ToolResult] = []
        last_calls: Sequence[ToolCall] = ()
        last_results: list[ToolResult] = []
        rounds = 0
        while True:
            response = await retry_with_backoff(
                functools.partial(
                    provider.send,
                    list(messages),
                    model_id,
                    max_tokens=self._config.max_tokens,
                    temperature=self._config.temperature,
                    tools=self._tools,
                ),
                self._retry,
                provider_id=provider.provider_id,
            )
            self._pm.record_usage(response.model_info, response.usage)
            reply = decode_reply(response)

            if isinstance(reply, Answer):
                content = reply.text.strip() or CLARIFICATION_PROMPT
                break
            if rounds >= self._config.max_tool_rounds:
                logger.warning(
                    "Round limit (%d) reached for user %s", rounds, user_id
                )
                content = format_round_limit_fallback(last_calls, last_results)
                break

            last_calls = reply.calls
            last_results = await self._executor.execute_round(reply.calls, user_id)
            all_results.extend(last_results)
            rounds += 1
            self._append_round(messages, reply.preamble, reply.calls, last_results)

        await self._persist(user_id, text, content)
        return AssistantReply(
            content=content, tool_results=tuple(all_results), rounds=rounds
        )

    # ── Streaming ────────────────────────────────────────────────

    async def stream(
        self,
        message: str,
        user_id: str,
        *,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield ``connected``, the answer as ``chunk`` events, then ``complete``.

        Any failure ends the stream with a single ``error`` event.  The
        concatenation of every chunk equals the ``complete`` payload.

        ``is_disconnected`` is polled once the answer is complete; if the
        client has gone the turn is dropped without writing history.
        """
        yield ConnectedEvent()
        try:
            text = self._validate(message)
            messages = await self._prepare(text, user_id)
            provider, model_id = self._pm.get_provider(self._config.model)
            model_info = self._pm.get_model_info(self._config.model)

            parts: list[str] = []
            last_calls: Sequence[ToolCall] = ()
            last_results: list[ToolResult] = []
            rounds = 0
            while True:
                round_text: list[str] = []
                final: StreamChunk | None = None
                deadline = (
                    asyncio.get_running_loop().time() + self._config.engine_timeout
                )
                async with contextlib.aclosing(
                    provider.stream(
                        list(messages),
                        model_id,
                        max_tokens=self._config.max_tokens,
                        temperature=self._config.temperature,
                        tools=self._tools,
                    )
                ) as fragments:
                    while (
                        chunk := await self._next_chunk(fragments, provider, deadline)
                    ) is not None:
                        if chunk.is_final:
                            final = chunk
                        if not chunk.text:
                            continue
                        if not round_text and parts:
                            parts.append(ROUND_SEPARATOR)
                            yield ChunkEvent(ROUND_SEPARATOR)
                        round_text.append(chunk.text)
                        parts.append(chunk.text)
                        yield ChunkEvent(chunk.text)

                if final is not None and final.usage is not None:
                    self._pm.record_usage(model_info, final.usage)
                raw_calls = final.tool_calls if final is not None else ()
                if not raw_calls:
                    break

                calls = decode_tool_calls(raw_calls)
                if rounds >= self._config.max_tool_rounds:
                    logger.warning(
                        "Round limit (%d) reached for user %s", rounds, user_id
                    )
                    fallback = format_round_limit_fallback(last_calls, last_results)
                    if parts:
                        parts.append(ROUND_SEPARATOR)
                        yield ChunkEvent(ROUND_SEPARATOR)
                    parts.append(fallback)
                    yield ChunkEvent(fallback)
                    break

                last_calls = calls
                last_results = await self._executor.execute_round(calls, user_id)
                rounds += 1
                self._append_round(messages, "".join(round_text), calls, last_results)

            if not "".join(parts).strip():
                parts.append(CLARIFICATION_PROMPT)
                yield ChunkEvent(CLARIFICATION_PROMPT)
            full = "".join(parts)
            if is_disconnected is not None and await is_disconnected():
                logger.info("Client left before turn completed for user %s", user_id)
                return
            await self._persist(user_id, text, full)
        except TallyError as e:
            logger.warning("Streaming turn failed for user %s: %s", user_id, e)
            yield ErrorEvent(e.public_message)
            return
        except Exception:
            logger.exception("Unexpected error in streaming turn for user %s", user_id)
            yield ErrorEvent(GENERIC_FAILURE)
            return

        yield CompleteEvent(full)

    async def respond_stream(
        self,
        message: str,
        user_id: str,
        on_event: Callable[[StreamEvent], Awaitable[None] | None],
    ) -> str | None:
        """Push every stream event to ``on_event``.

        Returns the full answer, or ``None`` if the turn ended in an error.
        """
        full: str | None = None
        async for event in self.stream(message, user_id):
            outcome = on_event(event)
            if inspect.isawaitable(outcome):
                await outcome
            if isinstance(event, CompleteEvent):
                full = event.full_response
        return full

    # ── Helpers ──────────────────────────────────────────────────

    def _validate(self, message: str) -> str:
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message cannot be empty.")
        limit = self._config.max_message_length
        if len(text) > limit:
            msg = f"Message must not exceed {limit} characters."
            raise ValidationError(msg)
        return text

    async def _prepare(self, text: str, user_id: str) -> list[PromptMessage]:
        """System prompt with snapshot, recent turns oldest first, then ``text``."""
        ctx = await self._assembler.build(user_id)
        try:
            async with self._factory() as session:
                turns = await ChatHistoryRepository(session).recent(
                    user_id, self._config.history_turns
                )
        except SQLAlchemyError as e:
            msg = f"Could not load chat history: {e}"
            raise StorageError(msg) from e

        messages = [PromptMessage(role="system", content=build_system_prompt(ctx))]
        for turn in turns:
            messages.append(PromptMessage(role="user", content=turn.user_message))
            messages.append(
                PromptMessage(role="assistant", content=turn.assistant_response)
            )
        messages.append(PromptMessage(role="user", content=text))
        return messages

    @staticmethod
    def _append_round(
        messages: list[PromptMessage],
        preamble: str,
        calls: Sequence[ToolCall],
        results: Sequence[ToolResult],
    ) -> None:
        messages.append(
            PromptMessage(role="assistant", content=preamble or TOOL_CALLS_PLACEHOLDER)
        )
        messages.append(
            PromptMessage(role="user", content=format_tool_results(calls, results))
        )

    async def _next_chunk(
        self,
        fragments: AsyncIterator[StreamChunk],
        provider: ModelProvider,
        deadline: float,
    ) -> StreamChunk | None:
        """Next fragment, or ``None`` at the end.

        Bounded by the idle timeout and by ``deadline``, the loop time at
        which the whole round exceeds the engine timeout.
        """
        idle = self._config.stream_idle_timeout
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            msg = f"Response exceeded {self._config.engine_timeout:g}s"
            raise ProviderTimeoutError(provider.provider_id, msg)
        try:
            async with asyncio.timeout(min(idle, remaining)):
                return await anext(fragments, None)
        except TimeoutError as e:
            if idle < remaining:
                msg = f"No output for {idle:g}s"
            else:
                msg = f"Response exceeded {self._config.engine_timeout:g}s"
            raise ProviderTimeoutError(provider.provider_id, msg) from e

    async def _persist(self, user_id: str, user_message: str, answer: str) -> None:
        try:
            async with self._factory() as session, session.begin():
                await ChatHistoryRepository(session).append(
                    user_id, user_message, answer
                )
        except SQLAlchemyError as e:
            msg = f"Could not save chat history: {e}"
            raise StorageError(msg) from e

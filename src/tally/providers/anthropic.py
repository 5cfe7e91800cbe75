"""Anthropic (Claude) provider adapter."""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any

import anthropic

from tally.core.errors import (
    ModelNotFoundError,
    ProviderAuthError,
    ProviderError,
    ProviderOverloadedError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)
from tally.providers.base import (
    ModelInfo,
    ModelResponse,
    ModelTable,
    StreamChunk,
    TokenUsage,
    ToolCallData,
    lookup_model,
    parse_retry_after,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from tally.providers.base import PromptMessage

PROVIDER_ID = "anthropic"
_PING_MODEL = "claude-haiku-4-5-20251001"

_MODELS: ModelTable = {
    "claude-sonnet-4-5-20250929": ("Claude Sonnet 4.5", 200_000, 64_000, 3.0, 15.0),
    "claude-haiku-4-5-20251001": ("Claude Haiku 4.5", 200_000, 64_000, 1.0, 5.0),
}

_ERRORS: tuple[tuple[type[anthropic.APIError], type[ProviderError]], ...] = (
    (anthropic.AuthenticationError, ProviderAuthError),
    (anthropic.APITimeoutError, ProviderTimeoutError),
    (anthropic.NotFoundError, ModelNotFoundError),
)


def _map_error(e: anthropic.APIError) -> ProviderError:
    """Translate an SDK exception into the matching ProviderError."""
    if isinstance(e, anthropic.RateLimitError):
        return ProviderRateLimitError(PROVIDER_ID, retry_after=parse_retry_after(e))
    for sdk_type, error_type in _ERRORS:
        if isinstance(e, sdk_type):
            return error_type(PROVIDER_ID, str(e))
    return ProviderOverloadedError(PROVIDER_ID, str(e))


def _build_messages(
    messages: list[PromptMessage],
) -> tuple[str | anthropic.NotGiven, list[dict[str, str]]]:
    """Claude takes one top-level system string; merge every system turn."""
    system = "\n\n".join(m.content for m in messages if m.role == "system")
    turns = [
        {"role": m.role, "content": m.content}
        for m in messages
        if m.role != "system"
    ]
    return (system or anthropic.NOT_GIVEN), turns


def _build_tools(tools: list[dict[str, object]]) -> list[dict[str, object]]:
    return [
        {
            "name": t["name"],
            "description": t["description"],
            "input_schema": t["parameters"],
        }
        for t in tools
    ]


def _extract_tool_calls(content: list[Any]) -> list[ToolCallData]:
    return [
        ToolCallData(id=block.id, name=block.name, arguments=json.dumps(block.input))
        for block in content
        if getattr(block, "type", None) == "tool_use"
    ]


class AnthropicProvider:
    """Provider adapter for Anthropic's Claude models."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    @property
    def provider_id(self) -> str:
        return PROVIDER_ID

    async def list_models(self) -> list[ModelInfo]:
        return [self._model_info(model_id) for model_id in _MODELS]

    def _model_info(self, model_id: str) -> ModelInfo:
        return lookup_model(
            PROVIDER_ID,
            model_id,
            _MODELS,
            fallback_name=f"Claude ({model_id})",
            fallback_context=200_000,
        )

    def _request(
        self,
        messages: list[PromptMessage],
        model_id: str,
        max_tokens: int,
        temperature: float,
        tools: list[dict[str, object]] | None,
    ) -> dict[str, Any]:
        system, turns = _build_messages(messages)
        request: dict[str, Any] = {
            "model": model_id,
            "system": system,
            "messages": turns,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            request["tools"] = _build_tools(tools)
        return request

    async def send(
        self,
        messages: list[PromptMessage],
        model_id: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        response_format: str | None = None,
        tools: list[dict[str, object]] | None = None,
    ) -> ModelResponse:
        request = self._request(messages, model_id, max_tokens, temperature, tools)
        began = time.monotonic()
        try:
            message = await self._client.messages.create(**request)
        except anthropic.APIError as e:
            raise _map_error(e) from e
        elapsed_ms = (time.monotonic() - began) * 1000

        calls = _extract_tool_calls(message.content)
        return ModelResponse(
            content="".join(
                block.text for block in message.content if hasattr(block, "text")
            ),
            model_info=self._model_info(model_id),
            usage=_usage(message),
            finish_reason=message.stop_reason or "stop",
            latency_ms=elapsed_ms,
            raw_response=message,
            tool_calls=calls or None,
        )

    async def stream(
        self,
        messages: list[PromptMessage],
        model_id: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, object]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        request = self._request(messages, model_id, max_tokens, temperature, tools)
        try:
            async with self._client.messages.stream(**request) as events:
                async for event in events:
                    if getattr(event, "type", None) != "content_block_delta":
                        continue
                    fragment = getattr(event.delta, "text", "")
                    if fragment:
                        yield StreamChunk(text=fragment)

                # tool_use inputs are only complete once the message is
                final = await events.get_final_message()
        except anthropic.APIError as e:
            raise _map_error(e) from e

        yield StreamChunk(
            text="",
            is_final=True,
            usage=_usage(final),
            tool_calls=tuple(_extract_tool_calls(final.content)),
        )

    async def health_check(self) -> bool:
        try:
            await self._client.messages.create(
                model=_PING_MODEL,
                max_tokens=1,
                messages=[{"role": "user", "content": "ping"}],
            )
        except Exception:
            return False
        return True


def _usage(message: Any) -> TokenUsage:
    return TokenUsage(
        input_tokens=message.usage.input_tokens,
        output_tokens=message.usage.output_tokens,
    )

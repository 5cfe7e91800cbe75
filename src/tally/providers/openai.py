"""OpenAI-compatible provider adapter.

Works against OpenAI itself and against compatible APIs such as DeepSeek
(``base_url="https://api.deepseek.com/v1"``). The provider id is
configurable so several compatible backends can be registered side by side.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

import openai

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

DEFAULT_PROVIDER_ID = "openai"

_MODELS: ModelTable = {
    "deepseek-chat": ("DeepSeek Chat", 64_000, 8_192, 0.27, 1.10),
    "gpt-4o": ("GPT-4o", 128_000, 16_384, 2.5, 10.0),
    "gpt-4o-mini": ("GPT-4o mini", 128_000, 16_384, 0.15, 0.6),
}

_ERRORS: tuple[tuple[type[openai.APIError], type[ProviderError]], ...] = (
    (openai.AuthenticationError, ProviderAuthError),
    (openai.APITimeoutError, ProviderTimeoutError),
    (openai.NotFoundError, ModelNotFoundError),
)


def _map_error(provider_id: str, e: openai.APIError) -> ProviderError:
    """Translate an SDK exception into the matching ProviderError."""
    if isinstance(e, openai.RateLimitError):
        return ProviderRateLimitError(provider_id, retry_after=parse_retry_after(e))
    for sdk_type, error_type in _ERRORS:
        if isinstance(e, sdk_type):
            return error_type(provider_id, str(e))
    return ProviderOverloadedError(provider_id, str(e))


def _build_messages(messages: list[PromptMessage]) -> list[dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


def _build_tools(tools: list[dict[str, object]]) -> list[dict[str, object]]:
    """Wrap neutral tool definitions in OpenAI's function-tool envelope."""
    return [
        {
            "type": "function",
            "function": {
                "name": t["name"],
                "description": t["description"],
                "parameters": t["parameters"],
            },
        }
        for t in tools
    ]


class _ToolCallAccumulator:
    """Reassembles tool calls streamed as per-index deltas."""

    def __init__(self) -> None:
        self._parts: dict[int, dict[str, str]] = {}

    def add(self, delta: Any) -> None:
        slot = self._parts.setdefault(
            delta.index, {"id": "", "name": "", "arguments": ""}
        )
        if delta.id:
            slot["id"] = delta.id
        fn = delta.function
        if fn is not None:
            if fn.name:
                slot["name"] += fn.name
            if fn.arguments:
                slot["arguments"] += fn.arguments

    def result(self) -> tuple[ToolCallData, ...]:
        return tuple(
            ToolCallData(id=p["id"], name=p["name"], arguments=p["arguments"])
            for _, p in sorted(self._parts.items())
        )


def _usage(raw: Any) -> TokenUsage:
    if raw is None:
        return TokenUsage(input_tokens=0, output_tokens=0)
    return TokenUsage(
        input_tokens=raw.prompt_tokens, output_tokens=raw.completion_tokens
    )


class OpenAIProvider:
    """Provider adapter for OpenAI-compatible chat completion APIs."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        provider_id: str = DEFAULT_PROVIDER_ID,
        models: list[str] | None = None,
        client: openai.AsyncOpenAI | None = None,
    ) -> None:
        self._provider_id = provider_id
        self._models = models
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key, base_url=base_url
        )

    @property
    def provider_id(self) -> str:
        return self._provider_id

    async def list_models(self) -> list[ModelInfo]:
        return [self._model_info(model_id) for model_id in self._models or _MODELS]

    def _model_info(self, model_id: str) -> ModelInfo:
        return lookup_model(
            self._provider_id,
            model_id,
            _MODELS,
            fallback_name=f"{self._provider_id} ({model_id})",
            fallback_context=64_000,
        )

    def _request(
        self,
        messages: list[PromptMessage],
        model_id: str,
        max_tokens: int,
        temperature: float,
        tools: list[dict[str, object]] | None,
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "model": model_id,
            "messages": _build_messages(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            request["tools"] = _build_tools(tools)
            request["tool_choice"] = "auto"
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
        if response_format == "json":
            request["response_format"] = {"type": "json_object"}

        began = time.monotonic()
        try:
            completion = await self._client.chat.completions.create(**request)
        except openai.APIError as e:
            raise _map_error(self._provider_id, e) from e
        elapsed_ms = (time.monotonic() - began) * 1000

        text, finish, calls = "", "stop", None
        if completion.choices:
            choice = completion.choices[0]
            text = choice.message.content or ""
            finish = choice.finish_reason or "stop"
            calls = [
                ToolCallData(
                    id=tc.id, name=tc.function.name, arguments=tc.function.arguments
                )
                for tc in choice.message.tool_calls or ()
            ] or None

        return ModelResponse(
            content=text,
            model_info=self._model_info(model_id),
            usage=_usage(completion.usage),
            finish_reason=finish,
            latency_ms=elapsed_ms,
            raw_response=completion,
            tool_calls=calls,
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
        request["stream_options"] = {"include_usage": True}

        calls = _ToolCallAccumulator()
        usage: TokenUsage | None = None
        try:
            chunks = await self._client.chat.completions.create(
                stream=True, **request
            )
            async for chunk in chunks:
                # the usage-only chunk comes last and has no choices
                if chunk.usage is not None:
                    usage = _usage(chunk.usage)
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                for fragment in delta.tool_calls or ():
                    calls.add(fragment)
                if delta.content:
                    yield StreamChunk(text=delta.content)
        except openai.APIError as e:
            raise _map_error(self._provider_id, e) from e

        yield StreamChunk(
            text="", is_final=True, usage=usage, tool_calls=calls.result()
        )

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
        except Exception:
            return False
        return True

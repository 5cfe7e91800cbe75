"""Provider adapter interface and data classes.

All reasoning-engine adapters implement the ``ModelProvider`` protocol.
Data classes are immutable where possible (frozen dataclasses with slots).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@dataclass(frozen=True, slots=True)
class ModelInfo:
    """Static metadata about a model available through a provider."""

    provider_id: str  # e.g. "deepseek", "anthropic"
    model_id: str  # e.g. "deepseek-chat"
    display_name: str
    context_window: int
    max_output_tokens: int
    input_cost_per_mtok: float  # USD per million input tokens
    output_cost_per_mtok: float  # USD per million output tokens
    supports_tools: bool = True

    @property
    def model_ref(self) -> str:
        """Canonical reference: ``provider_id:model_id``."""
        return f"{self.provider_id}:{self.model_id}"


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts from a single model call."""

    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True, slots=True)
class ToolCallData:
    """A raw tool call from a model response, not yet validated."""

    id: str
    name: str
    arguments: str  # JSON string of arguments


@dataclass(slots=True)
class ModelResponse:
    """Complete response from a model call."""

    content: str
    model_info: ModelInfo
    usage: TokenUsage
    finish_reason: str  # "stop", "max_tokens", "tool_use"
    latency_ms: float
    raw_response: object = field(default=None, repr=False)
    tool_calls: list[ToolCallData] | None = None


@dataclass(frozen=True, slots=True)
class StreamChunk:
    """A single fragment from a streaming response.

    Tool calls only become known once the provider has finished the
    response, so they are attached to the final chunk only.
    """

    text: str
    is_final: bool = False
    usage: TokenUsage | None = None
    tool_calls: tuple[ToolCallData, ...] = ()


@dataclass(frozen=True, slots=True)
class PromptMessage:
    """A single message in a prompt sequence."""

    role: str  # "system", "user", "assistant"
    content: str


@runtime_checkable
class ModelProvider(Protocol):
    """Protocol that all provider adapters must satisfy.

    Implementations hold connection config but no conversation state; the
    orchestrator owns every turn's messages.
    """

    @property
    def provider_id(self) -> str: ...

    async def list_models(self) -> list[ModelInfo]:
        """Return metadata for all models available through this provider."""
        ...

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
        """Send a prompt and wait for the complete response.

        ``tools`` are neutral definitions (``name``, ``description``,
        ``parameters`` JSON schema); adapters convert them to their wire
        format. Raises ProviderError on failure.
        """
        ...

    def stream(
        self,
        messages: list[PromptMessage],
        model_id: str,
        *,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, object]] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield response fragments as they arrive.

        The last chunk has ``is_final=True`` and carries usage and any
        requested tool calls. Raises ProviderError on failure.
        """
        ...

    async def health_check(self) -> bool:
        """Verify the provider is reachable. Must not raise."""
        ...


# model_id -> (display name, context window, max output, $/Mtok in, $/Mtok out)
ModelTable = dict[str, tuple[str, int, int, float, float]]


def lookup_model(
    provider_id: str,
    model_id: str,
    table: ModelTable,
    *,
    fallback_name: str,
    fallback_context: int,
) -> ModelInfo:
    """Build ModelInfo from a pricing table; unknown models cost nothing."""
    row = table.get(model_id)
    if row is None:
        return ModelInfo(
            provider_id, model_id, fallback_name, fallback_context, 4096, 0.0, 0.0
        )
    name, context, max_output, cost_in, cost_out = row
    return ModelInfo(
        provider_id, model_id, name, context, max_output, cost_in, cost_out
    )


def parse_retry_after(error: object) -> float | None:
    """Seconds from the ``Retry-After`` header of an SDK error, if usable."""
    response = getattr(error, "response", None)
    if response is None:
        return None
    raw = response.headers.get("retry-after")
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None

"""Reasoning-engine provider adapters."""

from tally.providers.base import (
    ModelInfo,
    ModelProvider,
    ModelResponse,
    PromptMessage,
    StreamChunk,
    TokenUsage,
    ToolCallData,
)
from tally.providers.manager import ProviderManager, build_provider_manager

__all__ = [
    "ModelInfo",
    "ModelProvider",
    "ModelResponse",
    "PromptMessage",
    "ProviderManager",
    "StreamChunk",
    "TokenUsage",
    "ToolCallData",
    "build_provider_manager",
]

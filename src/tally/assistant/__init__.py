"""The conversational financial assistant."""

from tally.assistant.context import ContextAssembler, FinancialContext
from tally.assistant.events import (
    ChunkEvent,
    CompleteEvent,
    ConnectedEvent,
    ErrorEvent,
    StreamEvent,
    encode,
)
from tally.assistant.orchestrator import AssistantReply, ConversationOrchestrator

__all__ = [
    "AssistantReply",
    "ChunkEvent",
    "CompleteEvent",
    "ConnectedEvent",
    "ContextAssembler",
    "ConversationOrchestrator",
    "ErrorEvent",
    "FinancialContext",
    "StreamEvent",
    "encode",
]

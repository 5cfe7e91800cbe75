"""Streaming transport records.

Each event serialises to one JSON object per line (NDJSON).  A stream is
``connected``, any number of ``chunk`` events, then exactly one of
``complete`` or ``error``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class ConnectedEvent:
    type = "connected"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type}


@dataclass(frozen=True, slots=True)
class ChunkEvent:
    content: str
    type = "chunk"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "content": self.content}


@dataclass(frozen=True, slots=True)
class CompleteEvent:
    full_response: str
    timestamp: datetime = field(default_factory=_now)
    type = "complete"

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "fullResponse": self.full_response,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    message: str
    type = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message}


StreamEvent = ConnectedEvent | ChunkEvent | CompleteEvent | ErrorEvent


def encode(event: StreamEvent) -> str:
    """One NDJSON line, newline included."""
    return json.dumps(event.to_dict()) + "\n"

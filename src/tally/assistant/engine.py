"""Decoding of reasoning-engine replies.

A reply is either an :class:`Answer` or a :class:`ToolCalls` request.
Anything that cannot be read as one of the two raises
:class:`MalformedResponseError` instead of reaching the executor.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from tally.core.errors import MalformedResponseError
from tally.tools.base import ToolCall

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tally.providers.base import ModelResponse, ToolCallData


@dataclass(frozen=True, slots=True)
class Answer:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCalls:
    calls: tuple[ToolCall, ...]
    preamble: str = ""  # text the engine produced alongside the calls


EngineReply = Answer | ToolCalls


def decode_tool_calls(raw: Sequence[ToolCallData]) -> tuple[ToolCall, ...]:
    calls = []
    for item in raw:
        name = (item.name or "").strip()
        if not name:
            raise MalformedResponseError("Engine requested a tool call without a name")
        text = (item.arguments or "").strip()
        if not text:
            arguments: object = {}
        else:
            try:
                arguments = json.loads(text)
            except json.JSONDecodeError as e:
                msg = f"Arguments for {name} are not valid JSON: {e}"
                raise MalformedResponseError(msg) from e
        if not isinstance(arguments, dict):
            msg = f"Arguments for {name} must be a JSON object"
            raise MalformedResponseError(msg)
        call_id = item.id or f"call_{uuid.uuid4().hex[:12]}"
        calls.append(ToolCall(id=call_id, name=name, arguments=arguments))
    return tuple(calls)


def decode_reply(response: ModelResponse) -> EngineReply:
    """Classify a complete engine response."""
    if response.tool_calls:
        return ToolCalls(
            calls=decode_tool_calls(response.tool_calls),
            preamble=response.content or "",
        )
    return Answer(text=response.content or "")

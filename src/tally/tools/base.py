"""Tool data types.

Definitions describe what the reasoning engine may call, calls carry
what it asked for (untrusted), results carry what happened.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ParamType(enum.StrEnum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUM = "enum"  # string restricted to ``ParameterSpec.enum``
    OBJECT = "object"
    ARRAY = "array"


@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """Schema for one tool parameter."""

    type: ParamType
    description: str
    required: bool = False
    enum: tuple[str, ...] = ()
    items: dict[str, Any] | None = None  # JSON schema of array elements

    def to_json_schema(self) -> dict[str, Any]:
        if self.type is ParamType.ENUM:
            schema: dict[str, Any] = {"type": "string", "enum": list(self.enum)}
        else:
            schema = {"type": str(self.type)}
        if self.items is not None:
            schema["items"] = self.items
        schema["description"] = self.description
        return schema


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A named operation the reasoning engine may request."""

    name: str
    description: str
    parameters: dict[str, ParameterSpec] = field(default_factory=dict)
    mutating: bool = False

    @property
    def required(self) -> list[str]:
        return [name for name, spec in self.parameters.items() if spec.required]

    def to_json_schema(self) -> dict[str, Any]:
        """JSON schema object describing the tool's arguments."""
        return {
            "type": "object",
            "properties": {
                name: spec.to_json_schema() for name, spec in self.parameters.items()
            },
            "required": self.required,
        }

    def to_provider_tool(self) -> dict[str, object]:
        """Neutral ``name``/``description``/``parameters`` form for providers."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.to_json_schema(),
        }


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the reasoning engine."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Uniform outcome of one tool call. A failure is data, not an exception."""

    success: bool
    message: str
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            out["data"] = self.data
        return out

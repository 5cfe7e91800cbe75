"""Ledger tools callable by the reasoning engine."""

from tally.tools.base import (
    ParameterSpec,
    ParamType,
    ToolCall,
    ToolDefinition,
    ToolResult,
)
from tally.tools.catalog import get_tool, list_tools
from tally.tools.executor import ToolExecutor

__all__ = [
    "ParamType",
    "ParameterSpec",
    "ToolCall",
    "ToolDefinition",
    "ToolExecutor",
    "ToolResult",
    "get_tool",
    "list_tools",
]

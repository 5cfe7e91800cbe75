"""Prompt text for the financial assistant."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from tally.assistant.context import render_context

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tally.assistant.context import FinancialContext
    from tally.tools.base import ToolCall, ToolResult

CLARIFICATION_PROMPT = (
    "I'm not sure how to help with that. Could you rephrase your question?"
)
TOOL_CALLS_PLACEHOLDER = "(tool calls made)"

SYSTEM_TEMPLATE = """\
You are a personal finance assistant. You help the user understand and \
manage their money using their own data, shown below.

You can:
- add, update and delete transactions
- create, update and delete budgets, and create categories
- list transactions, analyse spending and report budget status
- show and correct the items of scanned receipts

Rules:
- Amounts are always positive; use transaction_type for income or expense.
- Only use categories that exist. If the category the user names does not \
exist, ask whether to create it or use one of the existing ones.
- To change or remove a budget you may refer to it by budget_name or \
category_name instead of its ID.
- Use create_budget_with_category when the user wants a budget for a \
category that may not exist yet.
- When a tool fails, explain the failure and offer the alternatives it lists.
- For questions about what was on a receipt, find the transaction first, \
then call get_receipt_items.
- Be concise and use the user's currency.

Current financial data:
{context}
"""


def build_system_prompt(ctx: FinancialContext) -> str:
    return SYSTEM_TEMPLATE.format(context=render_context(ctx))


def format_tool_results(
    calls: Sequence[ToolCall], results: Sequence[ToolResult]
) -> str:
    """The message that feeds one round's results back to the engine."""
    lines = ["Tool execution results:"]
    for call, result in zip(calls, results, strict=True):
        status = "Success" if result.success else "Failed"
        lines.append(f"- {call.name}: {status} - {result.message}")
        if result.data is not None:
            lines.append(f"  Data: {json.dumps(result.data, default=str)}")
    lines.append("")
    lines.append("Please provide a final response based on these results.")
    return "\n".join(lines)


def format_round_limit_fallback(
    calls: Sequence[ToolCall], results: Sequence[ToolResult]
) -> str:
    """Answer used when the engine still wants tools after the last round."""
    lines = ["Here is what I did for you:"]
    for call, result in zip(calls, results, strict=True):
        mark = "done" if result.success else "failed"
        lines.append(f"- {call.name} ({mark}): {result.message}")
    return "\n".join(lines)

"""The fixed catalog of ledger tools offered to the reasoning engine.

The catalog is what the engine sees; the executor enforces it.  Both read
the same definitions, so ``required`` flags cannot drift apart.
"""

from __future__ import annotations

from tally.tools.base import ParameterSpec, ParamType, ToolDefinition

CATALOG_VERSION = "2"

_S = ParamType.STRING
_N = ParamType.NUMBER
_E = ParamType.ENUM

_TXN_TYPES = ("income", "expense")
_PERIODS = ("weekly", "monthly", "yearly")

_RECEIPT_ITEM_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string", "description": "Item name"},
        "amount": {"type": "number", "description": "Item price"},
        "quantity": {"type": "number", "description": "Quantity, defaults to 1"},
        "category": {"type": "string", "description": "Item category"},
    },
    "required": ["name", "amount"],
}


def _p(
    type_: ParamType,
    description: str,
    *,
    required: bool = False,
    enum: tuple[str, ...] = (),
) -> ParameterSpec:
    return ParameterSpec(
        type=type_, description=description, required=required, enum=enum
    )


_CATALOG: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="add_transaction",
        description=(
            "Add a new income or expense transaction. Give either category_id "
            "or category_name; the category must already exist."
        ),
        parameters={
            "amount": _p(_N, "Transaction amount, always positive", required=True),
            "description": _p(_S, "What the transaction was for", required=True),
            "transaction_type": _p(
                _E, "Direction of the money", required=True, enum=_TXN_TYPES
            ),
            "category_id": _p(_S, "Category ID"),
            "category_name": _p(_S, "Category name (alternative to category_id)"),
            "transaction_date": _p(_S, "Date in YYYY-MM-DD format, defaults to today"),
            "merchant_name": _p(_S, "Merchant or vendor name"),
            "currency": _p(_S, "Currency code, defaults to USD"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="update_transaction",
        description="Update fields of an existing transaction.",
        parameters={
            "transaction_id": _p(_S, "ID of the transaction to update", required=True),
            "amount": _p(_N, "New amount"),
            "description": _p(_S, "New description"),
            "category_id": _p(_S, "New category ID"),
            "category_name": _p(_S, "New category name (alternative to category_id)"),
            "transaction_type": _p(_E, "New transaction type", enum=_TXN_TYPES),
            "transaction_date": _p(_S, "New date in YYYY-MM-DD format"),
            "merchant_name": _p(_S, "New merchant name"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="delete_transaction",
        description="Delete a transaction.",
        parameters={
            "transaction_id": _p(_S, "ID of the transaction to delete", required=True),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="create_budget",
        description="Create a new budget for an existing category.",
        parameters={
            "category_id": _p(_S, "Category ID for the budget", required=True),
            "name": _p(_S, "Budget name", required=True),
            "amount": _p(_N, "Budget limit", required=True),
            "period_type": _p(_E, "Budget period", required=True, enum=_PERIODS),
            "currency": _p(_S, "Currency code, defaults to USD"),
            "start_date": _p(_S, "Start date in YYYY-MM-DD format, defaults to today"),
            "alert_threshold": _p(_N, "Alert threshold percentage, default 80"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="update_budget",
        description=(
            "Update an existing budget. Identify it by budget_id, budget_name "
            "or category_name. At least one of name, amount, currency or "
            "alert_threshold must be given."
        ),
        parameters={
            "budget_id": _p(_S, "ID of the budget, if known"),
            "budget_name": _p(_S, "Name of the budget to update"),
            "category_name": _p(_S, "Category of the budget to update"),
            "name": _p(_S, "New budget name"),
            "amount": _p(_N, "New budget limit"),
            "currency": _p(_S, "New currency code"),
            "alert_threshold": _p(_N, "New alert threshold percentage"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="delete_budget",
        description=(
            "Delete a budget, identified by budget_id, budget_name or category_name."
        ),
        parameters={
            "budget_id": _p(_S, "ID of the budget, if known"),
            "budget_name": _p(_S, "Name of the budget to delete"),
            "category_name": _p(_S, "Category of the budget to delete"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="create_category",
        description="Create a new spending category.",
        parameters={
            "name": _p(_S, "Category name", required=True),
            "color": _p(_S, "Hex color code"),
            "icon": _p(_S, "Icon name"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="get_transactions",
        description=(
            "List transactions with optional filters. For questions about "
            "receipt contents, find the transaction here and then call "
            "get_receipt_items with its ID."
        ),
        parameters={
            "category": _p(_S, "Category name or part of it"),
            "start_date": _p(_S, "Start date in YYYY-MM-DD format"),
            "end_date": _p(_S, "End date in YYYY-MM-DD format"),
            "transaction_type": _p(_E, "Filter by type", enum=_TXN_TYPES),
            "limit": _p(_N, "How many to return, default 10, at most 100"),
        },
    ),
    ToolDefinition(
        name="get_spending_analysis",
        description=(
            "Income, expenses, per-category totals and budget status for a period."
        ),
        parameters={
            "period": _p(
                _E, "Analysis period, default month", enum=("week", "month", "year")
            ),
        },
    ),
    ToolDefinition(
        name="get_budgets",
        description="List active budgets with their current spending status.",
        parameters={
            "category_name": _p(_S, "Category name or part of it"),
        },
    ),
    ToolDefinition(
        name="create_budget_with_category",
        description=(
            "Create a budget, reusing the category with this name if it "
            "exists and creating it otherwise."
        ),
        parameters={
            "category_name": _p(_S, "Category name", required=True),
            "budget_name": _p(_S, "Budget name", required=True),
            "amount": _p(_N, "Budget limit", required=True),
            "period_type": _p(_E, "Budget period", required=True, enum=_PERIODS),
            "currency": _p(_S, "Currency code, defaults to USD"),
            "start_date": _p(_S, "Start date in YYYY-MM-DD format, defaults to today"),
            "end_date": _p(_S, "End date in YYYY-MM-DD format"),
            "alert_threshold": _p(_N, "Alert threshold percentage, default 80"),
            "category_color": _p(_S, "Hex color for a new category"),
            "category_icon": _p(_S, "Icon for a new category"),
        },
        mutating=True,
    ),
    ToolDefinition(
        name="get_receipt_items",
        description=(
            "Show the individual items of a scanned receipt. Use whenever the "
            "user asks what they bought or wants an itemised breakdown. Only "
            "transactions created from receipts have item data."
        ),
        parameters={
            "receipt_id": _p(_S, "Receipt ID"),
            "transaction_id": _p(_S, "Transaction ID linked to the receipt"),
        },
    ),
    ToolDefinition(
        name="update_receipt_items",
        description="Correct the items or header fields of a processed receipt.",
        parameters={
            "receipt_id": _p(_S, "Receipt ID"),
            "transaction_id": _p(_S, "Transaction ID linked to the receipt"),
            "items": ParameterSpec(
                type=ParamType.ARRAY,
                description="The corrected list of items",
                required=True,
                items=_RECEIPT_ITEM_SCHEMA,
            ),
            "merchant_name": _p(_S, "Corrected merchant name"),
            "total_amount": _p(_N, "Corrected total"),
            "currency": _p(_S, "Corrected currency"),
            "date": _p(_S, "Corrected date in YYYY-MM-DD format"),
        },
        mutating=True,
    ),
)

_BY_NAME: dict[str, ToolDefinition] = {t.name: t for t in _CATALOG}


def list_tools() -> tuple[ToolDefinition, ...]:
    """Every tool, in a stable order."""
    return _CATALOG


def get_tool(name: str) -> ToolDefinition | None:
    return _BY_NAME.get(name)


def tool_names() -> frozenset[str]:
    return frozenset(_BY_NAME)

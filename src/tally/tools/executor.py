"""Tool executor: validates a tool call and runs it against the ledger.

``execute`` never raises for a failed call.  Unknown tools, bad
arguments, unresolvable names and store errors all come back as
``ToolResult(success=False)`` so the engine can talk about them.

Each call runs in its own session and transaction.  A multi-step tool
(create a category, then a budget on it) commits or rolls back as one
unit, and nothing stays open while the engine is thinking.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import math
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from tally.core.errors import (
    ConfigError,
    StorageError,
    TallyError,
    ToolExecutionFailure,
    ValidationError,
)
from tally.ledger.repository import LedgerRepository, period_start
from tally.ledger.views import BudgetView, CategoryView, ReceiptView, TransactionView
from tally.tools.base import ParamType, ToolCall, ToolResult
from tally.tools.catalog import get_tool, list_tools, tool_names
from tally.tools.resolution import resolve_budget, resolve_category, resolve_receipt

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tally.tools.base import ParameterSpec, ToolDefinition

    Handler = Callable[[LedgerRepository, str, dict[str, Any]], Awaitable[ToolResult]]

logger = logging.getLogger(__name__)

_HANDLERS: dict[str, Handler] = {}

MAX_TRANSACTION_LIMIT = 100


def _handler(name: str) -> Callable[[Handler], Handler]:
    def register(fn: Handler) -> Handler:
        _HANDLERS[name] = fn
        return fn

    return register


# ── Argument validation ──────────────────────────────────────────


def _coerce(name: str, spec: ParameterSpec, value: Any) -> Any:
    kind = spec.type
    if kind is ParamType.NUMBER:
        number = None
        if isinstance(value, int | float) and not isinstance(value, bool):
            number = value
        if isinstance(value, str):
            with contextlib.suppress(ValueError):
                number = float(value.replace(",", "").lstrip("$"))
        if number is None or not math.isfinite(number):
            msg = f"{name} must be a finite number."
            raise ValidationError(msg)
        return number
    if kind is ParamType.BOOLEAN:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        msg = f"{name} must be true or false."
        raise ValidationError(msg)
    if kind is ParamType.ENUM:
        text = str(value).strip().lower()
        if text not in spec.enum:
            msg = f"{name} must be one of: {', '.join(spec.enum)}."
            raise ValidationError(msg)
        return text
    if kind is ParamType.OBJECT:
        if not isinstance(value, dict):
            msg = f"{name} must be an object."
            raise ValidationError(msg)
        return value
    if kind is ParamType.ARRAY:
        if not isinstance(value, list):
            msg = f"{name} must be a list."
            raise ValidationError(msg)
        return value

    # STRING: engines sometimes send ids as bare numbers
    if isinstance(value, bool) or not isinstance(value, str | int | float):
        msg = f"{name} must be a string."
        raise ValidationError(msg)
    text = str(value).strip()
    if name == "date" or name.endswith("_date"):
        try:
            return date.fromisoformat(text)
        except ValueError as e:
            msg = f"{name} must be a date in YYYY-MM-DD format (got {text!r})."
            raise ValidationError(msg) from e
    return text


def validate_arguments(
    definition: ToolDefinition, arguments: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Check ``arguments`` against the definition and return clean values.

    Missing optional parameters, nulls and empty strings are left out;
    parameters the definition does not declare are dropped.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ValidationError("Tool arguments must be an object.")

    extra = set(arguments) - set(definition.parameters)
    if extra:
        logger.debug(
            "Dropping undeclared arguments for %s: %s", definition.name, sorted(extra)
        )

    clean: dict[str, Any] = {}
    for name, spec in definition.parameters.items():
        value = arguments.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if spec.required:
                msg = f"Missing required argument: {name}."
                raise ValidationError(msg)
            continue
        clean[name] = _coerce(name, spec, value)

    for name, value in clean.items():
        if definition.parameters[name].type is ParamType.NUMBER and value < 0:
            msg = f"{name} must not be negative."
            raise ValidationError(msg)
    return clean


def _money(amount: float, currency: str = "USD") -> str:
    return f"{currency} {amount:,.2f}"


def _check_threshold(value: float | None) -> None:
    if value is not None and not 0 < value <= 100:
        raise ValidationError("alert_threshold must be a percentage between 0 and 100.")


# ── Transactions ─────────────────────────────────────────────────


@_handler("add_transaction")
async def _add_transaction(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    category = await resolve_category(
        repo,
        user_id,
        category_id=args.get("category_id"),
        category_name=args.get("category_name"),
    )
    currency = args.get("currency", "USD").upper()
    txn = await repo.create_transaction(
        user_id,
        amount=args["amount"],
        description=args["description"],
        category_id=category.id,
        transaction_type=args["transaction_type"],
        transaction_date=args.get("transaction_date"),
        merchant_name=args.get("merchant_name"),
        currency=currency,
    )
    return ToolResult(
        success=True,
        message=(
            f"Added {txn.transaction_type} transaction: {_money(txn.amount, currency)} "
            f'for {txn.description} in "{category.name}"'
        ),
        data=TransactionView.of(txn).model_dump(mode="json"),
    )


@_handler("update_transaction")
async def _update_transaction(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    category_id = None
    if "category_id" in args or "category_name" in args:
        category = await resolve_category(
            repo,
            user_id,
            category_id=args.get("category_id"),
            category_name=args.get("category_name"),
        )
        category_id = category.id
    txn = await repo.update_transaction(
        user_id,
        args["transaction_id"],
        amount=args.get("amount"),
        description=args.get("description"),
        category_id=category_id,
        transaction_type=args.get("transaction_type"),
        transaction_date=args.get("transaction_date"),
        merchant_name=args.get("merchant_name"),
    )
    return ToolResult(
        success=True,
        message=f'Updated transaction "{txn.description}"',
        data=TransactionView.of(txn).model_dump(mode="json"),
    )


@_handler("delete_transaction")
async def _delete_transaction(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    txn = await repo.get_transaction(user_id, args["transaction_id"])
    label = (
        f'"{txn.description}" ({_money(txn.amount, txn.currency)})' if txn else ""
    )
    await repo.delete_transaction(user_id, args["transaction_id"])
    return ToolResult(success=True, message=f"Deleted transaction {label}".rstrip())


# ── Budgets & categories ─────────────────────────────────────────


@_handler("create_budget")
async def _create_budget(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    _check_threshold(args.get("alert_threshold"))
    category = await resolve_category(repo, user_id, category_id=args["category_id"])
    currency = args.get("currency", "USD").upper()
    budget = await repo.create_budget(
        user_id,
        category_id=category.id,
        name=args["name"],
        amount=args["amount"],
        period_type=args["period_type"],
        currency=currency,
        start_date=args.get("start_date"),
        alert_threshold=args.get("alert_threshold", 80.0),
    )
    return ToolResult(
        success=True,
        message=(
            f'Created {budget.period_type} budget "{budget.name}" with '
            f"{_money(budget.amount, currency)} limit"
        ),
        data=BudgetView.of(budget).model_dump(mode="json"),
    )


_BUDGET_UPDATE_FIELDS = ("name", "amount", "currency", "alert_threshold")


@_handler("update_budget")
async def _update_budget(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    changes = {k: args[k] for k in _BUDGET_UPDATE_FIELDS if k in args}
    if not changes:
        msg = (
            "No update fields provided. You can update: "
            f"{', '.join(_BUDGET_UPDATE_FIELDS)}."
        )
        raise ValidationError(msg)
    _check_threshold(changes.get("alert_threshold"))
    if "currency" in changes:
        changes["currency"] = changes["currency"].upper()

    budget = await resolve_budget(
        repo,
        user_id,
        budget_id=args.get("budget_id"),
        budget_name=args.get("budget_name"),
        category_name=args.get("category_name"),
    )
    budget = await repo.update_budget(user_id, budget.id, **changes)
    return ToolResult(
        success=True,
        message=f'Updated budget "{budget.name}" successfully',
        data=BudgetView.of(budget).model_dump(mode="json"),
    )


@_handler("delete_budget")
async def _delete_budget(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    budget = await resolve_budget(
        repo,
        user_id,
        budget_id=args.get("budget_id"),
        budget_name=args.get("budget_name"),
        category_name=args.get("category_name"),
    )
    name = budget.name
    await repo.delete_budget(user_id, budget.id)
    return ToolResult(success=True, message=f'Deleted budget "{name}"')


@_handler("create_category")
async def _create_category(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    category = await repo.create_category(
        user_id,
        args["name"],
        color=args.get("color", "#3B82F6"),
        icon=args.get("icon", "tag"),
    )
    return ToolResult(
        success=True,
        message=f'Created category "{category.name}"',
        data=CategoryView.of(category).model_dump(mode="json"),
    )


@_handler("create_budget_with_category")
async def _create_budget_with_category(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    _check_threshold(args.get("alert_threshold"))
    category = await repo.find_category_by_name(user_id, args["category_name"])
    created = category is None
    if category is None:
        category = await repo.create_category(
            user_id,
            args["category_name"],
            color=args.get("category_color", "#10B981"),
            icon=args.get("category_icon", "map"),
        )
    currency = args.get("currency", "USD").upper()
    budget = await repo.create_budget(
        user_id,
        category_id=category.id,
        name=args["budget_name"],
        amount=args["amount"],
        period_type=args["period_type"],
        currency=currency,
        start_date=args.get("start_date"),
        end_date=args.get("end_date"),
        alert_threshold=args.get("alert_threshold", 80.0),
    )
    verb = "Created category" if created else "Using existing category"
    return ToolResult(
        success=True,
        message=(
            f'{verb} "{category.name}" and created budget "{budget.name}" with '
            f"{_money(budget.amount, currency)} limit"
        ),
        data={
            "category": CategoryView.of(category).model_dump(mode="json"),
            "budget": BudgetView.of(budget).model_dump(mode="json"),
            "category_created": created,
        },
    )


# ── Read tools ───────────────────────────────────────────────────


@_handler("get_transactions")
async def _get_transactions(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    limit = max(1, min(int(args.get("limit", 10)), MAX_TRANSACTION_LIMIT))
    items, total = await repo.list_transactions(
        user_id,
        category=args.get("category"),
        start_date=args.get("start_date"),
        end_date=args.get("end_date"),
        transaction_type=args.get("transaction_type"),
        limit=limit,
    )
    return ToolResult(
        success=True,
        message=f"Found {len(items)} of {total} matching transactions",
        data={
            "transactions": [
                TransactionView.of(t).model_dump(mode="json") for t in items
            ],
            "total": total,
        },
    )


async def _budgets_with_status(
    repo: LedgerRepository, user_id: str, today: date
) -> list[BudgetView]:
    budgets = await repo.list_budgets(user_id, active_only=True)
    return [BudgetView.of(b, await repo.budget_status(b, today)) for b in budgets]


@_handler("get_spending_analysis")
async def _get_spending_analysis(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    period = args.get("period", "month")
    today = date.today()
    since = period_start(period, today)
    summary = await repo.spending_summary(user_id, since)
    categories = await repo.category_summary(user_id, since)
    budgets = await _budgets_with_status(repo, user_id, today)
    return ToolResult(
        success=True,
        message=f"Generated spending analysis for the {period}",
        data={
            "period": period,
            "spending": summary,
            "categories": categories,
            "budgets": [b.model_dump(mode="json") for b in budgets],
        },
    )


@_handler("get_budgets")
async def _get_budgets(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    budgets = await _budgets_with_status(repo, user_id, date.today())
    needle = args.get("category_name", "").lower()
    if needle:
        budgets = [b for b in budgets if needle in (b.category_name or "").lower()]
    return ToolResult(
        success=True,
        message=f"Found {len(budgets)} budget(s)",
        data=[b.model_dump(mode="json") for b in budgets],
    )


# ── Receipts ─────────────────────────────────────────────────────


@_handler("get_receipt_items")
async def _get_receipt_items(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    receipt = await resolve_receipt(
        repo,
        user_id,
        receipt_id=args.get("receipt_id"),
        transaction_id=args.get("transaction_id"),
    )
    if not receipt.parsed_data:
        msg = f"Receipt {receipt.id} exists but holds no parsed data."
        raise ValidationError(msg)
    view = ReceiptView.of(receipt)
    if not view.items:
        message = (
            f"Receipt from {view.merchant_name} found, but no individual items "
            "were detected. Only the total is available."
        )
    else:
        message = (
            f"Found {len(view.items)} items on the receipt from {view.merchant_name}"
        )
    return ToolResult(success=True, message=message, data=view.model_dump(mode="json"))


def _is_positive_number(value: Any) -> bool:
    return (
        not isinstance(value, bool)
        and isinstance(value, int | float)
        and math.isfinite(value)
        and value > 0
    )


def _clean_items(raw: list[Any]) -> list[dict[str, Any]]:
    if not raw:
        raise ValidationError("items must contain at least one item.")
    items = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("Each item must be an object.")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Each item must have a valid name.")
        amount = item.get("amount")
        if not _is_positive_number(amount):
            raise ValidationError("Each item must have a positive amount.")
        quantity = item.get("quantity", 1)
        if not _is_positive_number(quantity):
            msg = "Item quantity must be a positive number if provided."
            raise ValidationError(msg)
        items.append(
            {
                "name": name.strip(),
                "amount": amount,
                "quantity": quantity,
                "category": item.get("category") or "other",
            }
        )
    return items


@_handler("update_receipt_items")
async def _update_receipt_items(
    repo: LedgerRepository, user_id: str, args: dict[str, Any]
) -> ToolResult:
    items = _clean_items(args["items"])
    receipt = await resolve_receipt(
        repo,
        user_id,
        receipt_id=args.get("receipt_id"),
        transaction_id=args.get("transaction_id"),
    )
    data = dict(receipt.parsed_data or {})
    data["items"] = items
    if "merchant_name" in args:
        data["merchantName"] = args["merchant_name"]
    if "total_amount" in args:
        data["totalAmount"] = args["total_amount"]
    if "currency" in args:
        data["currency"] = args["currency"].upper()
    if "date" in args:
        data["date"] = args["date"].isoformat()
    receipt = await repo.replace_receipt_data(user_id, receipt.id, data)
    return ToolResult(
        success=True,
        message=f"Updated receipt with {len(items)} items",
        data=ReceiptView.of(receipt).model_dump(mode="json"),
    )


# ── Executor ─────────────────────────────────────────────────────


class ToolExecutor:
    """Runs catalog tools for one user at a time against fresh state.

    Holds no per-user state and caches nothing, so a single instance
    serves every concurrent turn.
    """

    def __init__(
        self,
        db_factory: async_sessionmaker[AsyncSession],
        *,
        parallel_reads: bool = True,
        handlers: Mapping[str, Handler] | None = None,
    ) -> None:
        registry = dict(_HANDLERS if handlers is None else handlers)
        missing = tool_names() - set(registry)
        unknown = set(registry) - tool_names()
        if missing or unknown:
            msg = (
                "Tool handlers do not match the catalog "
                f"(missing: {sorted(missing)}, unknown: {sorted(unknown)})"
            )
            raise ConfigError(msg)
        self._handlers = registry
        self._factory = db_factory
        self._parallel_reads = parallel_reads
        self._inflight: set[asyncio.Task[ToolResult]] = set()

    async def execute(
        self,
        call: ToolCall | str,
        arguments: Mapping[str, Any] | str | None = None,
        user_id: str | None = None,
    ) -> ToolResult:
        """Run one tool and return its result. Never raises for a failed call.

        Called either as ``execute(name, arguments, user_id)`` or with a
        decoded call as ``execute(call, user_id)``.
        """
        if isinstance(call, ToolCall):
            owner = arguments if user_id is None else user_id
            if not isinstance(owner, str):
                msg = "execute(call, user_id) requires a user id"
                raise TypeError(msg)
            return await self.execute(call.name, call.arguments, owner)
        if user_id is None or isinstance(arguments, str):
            msg = "execute(name, arguments, user_id) requires a user id"
            raise TypeError(msg)
        tool_name = call
        definition = get_tool(tool_name)
        if definition is None:
            available = ", ".join(t.name for t in list_tools())
            return ToolResult(
                success=False,
                message=f"Unknown tool: {tool_name}. Available tools: {available}.",
            )

        try:
            args = validate_arguments(definition, arguments)
            async with self._factory() as session, session.begin():
                result = await self._handlers[tool_name](
                    LedgerRepository(session), user_id, args
                )
        except TallyError as e:
            logger.info("Tool %s failed for user %s: %s", tool_name, user_id, e)
            return ToolExecutionFailure(tool_name, e).to_result()
        except SQLAlchemyError as e:
            logger.exception("Storage error in tool %s", tool_name)
            return ToolExecutionFailure(tool_name, StorageError(str(e))).to_result()
        except Exception as e:
            logger.exception("Unexpected error in tool %s", tool_name)
            return ToolExecutionFailure(tool_name, e).to_result()

        logger.info("Tool %s succeeded for user %s", tool_name, user_id)
        return result

    async def execute_call(self, call: ToolCall, user_id: str) -> ToolResult:
        return await self.execute(call.name, call.arguments, user_id)

    async def execute_round(
        self, calls: Sequence[ToolCall], user_id: str
    ) -> list[ToolResult]:
        """Run one round's calls and return results in request order.

        Consecutive read-only calls may run concurrently.  Mutating calls
        run one at a time, in order, and are shielded: if the turn is
        cancelled, a mutation already started still finishes.
        """
        results: list[ToolResult] = []
        i = 0
        while i < len(calls):
            call = calls[i]
            if self._is_mutating(call.name) or not self._parallel_reads:
                results.append(await self._shielded(call, user_id))
                i += 1
                continue
            j = i
            while j < len(calls) and not self._is_mutating(calls[j].name):
                j += 1
            batch = calls[i:j]
            results.extend(
                await asyncio.gather(*(self.execute_call(c, user_id) for c in batch))
            )
            i = j
        return results

    async def drain(self) -> None:
        """Wait for shielded mutations that outlived their turn."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    @staticmethod
    def _is_mutating(name: str) -> bool:
        definition = get_tool(name)
        # Unknown names are rejected without side effects, so they are safe to batch
        return definition is not None and definition.mutating

    async def _shielded(self, call: ToolCall, user_id: str) -> ToolResult:
        task = asyncio.ensure_future(self.execute_call(call, user_id))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

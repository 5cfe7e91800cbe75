"""Name-to-id resolution for tool arguments.

A human reference resolves only when it is unambiguous: an exact
case-insensitive name wins, otherwise exactly one case-insensitive
substring match is required.  Failures carry the names the engine can
offer the user instead.
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING, TypeVar

from tally.core.errors import NotFoundError, ResolutionAmbiguityError, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from tally.ledger.models import Budget, Category, Receipt
    from tally.ledger.repository import LedgerRepository

T = TypeVar("T")


def closest_names(query: str, names: Sequence[str], limit: int = 3) -> list[str]:
    lowered = {n.lower(): n for n in names}
    hits = difflib.get_close_matches(query.lower(), list(lowered), n=limit, cutoff=0.5)
    return [lowered[h] for h in hits]


def match_by_name(
    query: str,
    candidates: Sequence[T],
    name_of: Callable[[T], str],
    *,
    kind: str,
    describe: Callable[[T], str] | None = None,
) -> T:
    """Pick the single candidate ``query`` refers to.

    Raises:
        NotFoundError: Nothing matches; lists what exists.
        ResolutionAmbiguityError: Several candidates match.
    """
    describe = describe or name_of
    plural = f"{kind[:-1]}ies" if kind.endswith("y") else f"{kind}s"
    needle = query.strip().lower()
    if not needle:
        msg = f"An empty {kind} name cannot be resolved."
        raise ValidationError(msg)

    matches = [c for c in candidates if needle in name_of(c).lower()]
    exact = [c for c in matches if name_of(c).lower() == needle]
    if len(exact) == 1:
        return exact[0]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        msg = f'"{query}" matches several {plural}; say which one.'
        raise ResolutionAmbiguityError(msg, [describe(c) for c in matches])

    existing = [describe(c) for c in candidates]
    listing = ", ".join(existing) if existing else "none yet"
    msg = f'No {kind} matches "{query}". Existing {plural}: {listing}.'
    raise NotFoundError(
        msg, suggestions=closest_names(query, [name_of(c) for c in candidates])
    )


def _describe_budget(budget: Budget) -> str:
    category = budget.category.name if budget.category else "no category"
    return f"{budget.name} ({category})"


async def resolve_category(
    repo: LedgerRepository,
    user_id: str,
    *,
    category_id: str | None = None,
    category_name: str | None = None,
) -> Category:
    if category_id:
        category = await repo.get_category(user_id, category_id)
        if category is None:
            names = [c.name for c in await repo.list_categories(user_id)]
            existing = ", ".join(names) or "none yet"
            msg = f"Category {category_id} not found. Existing categories: {existing}."
            raise NotFoundError(msg)
        return category
    if category_name:
        categories = await repo.list_categories(user_id)
        return match_by_name(
            category_name, categories, lambda c: c.name, kind="category"
        )
    raise ValidationError("Provide category_id or category_name.")


async def resolve_budget(
    repo: LedgerRepository,
    user_id: str,
    *,
    budget_id: str | None = None,
    budget_name: str | None = None,
    category_name: str | None = None,
) -> Budget:
    """Find a budget by id, by its name, or by its category's name."""
    if budget_id:
        budget = await repo.get_budget(user_id, budget_id)
        if budget is None:
            msg = f"Budget {budget_id} not found."
            raise NotFoundError(msg)
        return budget

    budgets = await repo.list_budgets(user_id)
    if budget_name:
        return match_by_name(
            budget_name,
            budgets,
            lambda b: b.name,
            kind="budget",
            describe=_describe_budget,
        )
    if category_name:
        return match_by_name(
            category_name,
            budgets,
            lambda b: b.category.name if b.category else "",
            kind="budget",
            describe=_describe_budget,
        )
    raise ValidationError("Provide budget_id, budget_name or category_name.")


async def resolve_receipt(
    repo: LedgerRepository,
    user_id: str,
    *,
    receipt_id: str | None = None,
    transaction_id: str | None = None,
) -> Receipt:
    if receipt_id:
        receipt = await repo.get_receipt(user_id, receipt_id)
        if receipt is None:
            msg = f"Receipt {receipt_id} not found."
            raise NotFoundError(msg)
        return receipt
    if transaction_id:
        receipt = await repo.find_receipt_by_transaction(user_id, transaction_id)
        if receipt is None:
            msg = (
                f"No receipt data for transaction {transaction_id}. It was "
                "probably not created from a scanned receipt."
            )
            raise NotFoundError(msg)
        return receipt
    raise ValidationError("Provide receipt_id or transaction_id.")

"""Financial snapshot that grounds each turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from tally.core.errors import ContextAssemblyError, TallyError
from tally.ledger.repository import LedgerRepository
from tally.ledger.views import BudgetView, CategoryView, TransactionView

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS = 10


@dataclass(frozen=True, slots=True)
class FinancialContext:
    """A user's financial state at the start of one turn. Never persisted."""

    user_id: str
    as_of: date
    total_spending_this_month: float
    recent_transactions: list[TransactionView] = field(default_factory=list)
    active_budgets: list[BudgetView] = field(default_factory=list)
    categories: list[CategoryView] = field(default_factory=list)


class ContextAssembler:
    """Builds a :class:`FinancialContext` from four reads in one session."""

    def __init__(self, db_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = db_factory

    async def build(self, user_id: str, today: date | None = None) -> FinancialContext:
        """Read spend, recent transactions, active budgets and categories.

        Raises:
            ContextAssemblyError: If any of the reads fails. A partial
                snapshot is never returned.
        """
        today = today or date.today()
        try:
            async with self._factory() as session:
                repo = LedgerRepository(session)
                spend = await repo.month_to_date_spend(user_id, today)
                recent = await repo.recent_transactions(user_id, RECENT_TRANSACTIONS)
                budgets = await repo.list_budgets(user_id, active_only=True)
                budget_views = [
                    BudgetView.of(b, await repo.budget_status(b, today))
                    for b in budgets
                ]
                categories = await repo.list_categories(user_id)
        except (SQLAlchemyError, TallyError) as e:
            logger.exception("Context assembly failed for user %s", user_id)
            msg = "Could not load your financial data for this conversation."
            raise ContextAssemblyError(msg) from e

        return FinancialContext(
            user_id=user_id,
            as_of=today,
            total_spending_this_month=spend,
            recent_transactions=[TransactionView.of(t) for t in recent],
            active_budgets=budget_views,
            categories=[CategoryView.of(c) for c in categories],
        )


def render_context(ctx: FinancialContext) -> str:
    """Plain-text rendering of the snapshot for the system prompt."""
    lines = [
        f"Today: {ctx.as_of.isoformat()}",
        f"Total spending this month: ${ctx.total_spending_this_month:,.2f}",
        "",
        "Recent transactions:",
    ]
    if ctx.recent_transactions:
        for t in ctx.recent_transactions:
            lines.append(
                f"- [{t.id}] {t.transaction_date.isoformat()} {t.transaction_type} "
                f"{t.currency} {t.amount:,.2f} {t.description} "
                f"({t.category_name or 'Uncategorized'})"
            )
    else:
        lines.append("- none")

    lines += ["", "Active budgets:"]
    if ctx.active_budgets:
        for b in ctx.active_budgets:
            status = b.status
            spent = f", spent {status.spent:,.2f} ({status.status})" if status else ""
            lines.append(
                f"- [{b.id}] {b.name}: {b.currency} {b.amount:,.2f} {b.period_type} "
                f"for {b.category_name}{spent}"
            )
    else:
        lines.append("- none")

    lines += ["", "Categories:"]
    if ctx.categories:
        lines.extend(f"- [{c.id}] {c.name}" for c in ctx.categories)
    else:
        lines.append("- none")
    return "\n".join(lines)

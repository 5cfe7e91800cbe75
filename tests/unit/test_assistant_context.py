"""Tests for the per-turn financial snapshot and its prompt rendering."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from tally.assistant.context import ContextAssembler, FinancialContext, render_context
from tally.assistant.prompts import build_system_prompt
from tally.core.errors import ContextAssemblyError
from tally.ledger.repository import LedgerRepository


async def _seed(factory, user_id):
    async with factory() as session, session.begin():
        repo = LedgerRepository(session)
        groceries = await repo.find_category_by_name(user_id, "Groceries")
        await repo.create_transaction(
            user_id,
            amount=42.0,
            description="Farmers market",
            category_id=groceries.id,
            transaction_date=date(2026, 10, 4),
        )
        await repo.create_budget(
            user_id,
            category_id=groceries.id,
            name="Food",
            amount=400.0,
            period_type="monthly",
            start_date=date(2026, 10, 1),
        )


class TestContextAssembler:
    async def test_snapshot_contents(self, db_factory, user_id):
        await _seed(db_factory, user_id)
        ctx = await ContextAssembler(db_factory).build(user_id, date(2026, 10, 19))
        assert ctx.total_spending_this_month == 42.0
        assert [t.description for t in ctx.recent_transactions] == ["Farmers market"]
        [budget] = ctx.active_budgets
        assert budget.status is not None
        assert budget.status.spent == 42.0
        assert len(ctx.categories) == 10

    async def test_snapshot_is_tenant_scoped(self, db_factory, user_id, other_user_id):
        await _seed(db_factory, user_id)
        ctx = await ContextAssembler(db_factory).build(
            other_user_id, date(2026, 10, 19)
        )
        assert ctx.total_spending_this_month == 0
        assert ctx.recent_transactions == []
        assert ctx.active_budgets == []
        own = await ContextAssembler(db_factory).build(user_id)
        assert {c.id for c in ctx.categories}.isdisjoint(c.id for c in own.categories)

    async def test_store_failure_raises_context_error(
        self, db_factory, user_id, monkeypatch
    ):
        async def broken(self, *args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(LedgerRepository, "month_to_date_spend", broken)
        with pytest.raises(ContextAssemblyError):
            await ContextAssembler(db_factory).build(user_id)


class TestRendering:
    def test_empty_snapshot(self):
        ctx = FinancialContext(
            user_id="u", as_of=date(2026, 10, 19), total_spending_this_month=0.0
        )
        text = render_context(ctx)
        assert "Today: 2026-10-19" in text
        assert "Total spending this month: $0.00" in text
        assert text.count("- none") == 3

    async def test_system_prompt_embeds_ids(self, db_factory, user_id):
        await _seed(db_factory, user_id)
        ctx = await ContextAssembler(db_factory).build(user_id, date(2026, 10, 19))
        prompt = build_system_prompt(ctx)
        assert "personal finance assistant" in prompt
        assert f"[{ctx.active_budgets[0].id}] Food" in prompt
        assert "spent 42.00 (on_track)" in prompt
        assert f"[{ctx.recent_transactions[0].id}]" in prompt

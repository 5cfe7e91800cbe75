"""Tests for the ledger repository: tenant scoping, validation, budget status."""

from __future__ import annotations

from datetime import date

import pytest

from tally.core.errors import NotFoundError, ValidationError
from tally.ledger.repository import (
    DEFAULT_CATEGORIES,
    LedgerRepository,
    add_months,
    period_end,
    period_start,
)


async def _category_id(factory, user_id: str, name: str) -> str:
    async with factory() as session:
        category = await LedgerRepository(session).find_category_by_name(user_id, name)
        assert category is not None
        return category.id


class TestDateHelpers:
    def test_add_months_clamps_day(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2026, 11, 15), 2) == date(2027, 1, 15)

    def test_period_end(self):
        start = date(2026, 3, 1)
        assert period_end(start, "weekly") == date(2026, 3, 8)
        assert period_end(start, "monthly") == date(2026, 4, 1)
        assert period_end(start, "yearly") == date(2027, 3, 1)

    def test_period_start(self):
        today = date(2026, 10, 19)
        assert period_start("month", today) == date(2026, 10, 1)
        assert period_start("year", today) == date(2026, 1, 1)
        assert period_start("week", today) <= today


class TestUsers:
    async def test_create_user_seeds_default_categories(self, db_factory, user_id):
        async with db_factory() as session:
            categories = await LedgerRepository(session).list_categories(user_id)
        expected = {name for name, _, _ in DEFAULT_CATEGORIES}
        assert {c.name for c in categories} == expected
        assert all(c.is_default for c in categories)

    async def test_duplicate_email_rejected(self, db_factory, user_id):
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError, match="already registered"):
                await LedgerRepository(session).create_user(
                    "ALICE@example.com", "x", "Other Alice"
                )


class TestCategories:
    async def test_names_unique_ignoring_case(self, db_factory, user_id):
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError, match="already exists"):
                await LedgerRepository(session).create_category(user_id, "groceries")

    async def test_same_name_allowed_for_another_user(
        self, db_factory, user_id, other_user_id
    ):
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            await repo.create_category(user_id, "Pets")
            await repo.create_category(other_user_id, "Pets")

    async def test_delete_refuses_category_in_use(self, db_factory, user_id):
        dining = await _category_id(db_factory, user_id, "Dining")
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            await repo.create_transaction(
                user_id, amount=12.0, description="Lunch", category_id=dining
            )
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError, match="still used"):
                await LedgerRepository(session).delete_category(user_id, dining)


class TestTransactions:
    async def test_create_and_list_newest_first(self, db_factory, user_id):
        groceries = await _category_id(db_factory, user_id, "Groceries")
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            await repo.create_transaction(
                user_id,
                amount=40.0,
                description="Market",
                category_id=groceries,
                transaction_date=date(2026, 10, 1),
            )
            await repo.create_transaction(
                user_id,
                amount=3000.0,
                description="Salary",
                category_id=None,
                transaction_type="income",
                transaction_date=date(2026, 10, 5),
            )
        async with db_factory() as session:
            items, total = await LedgerRepository(session).list_transactions(user_id)
        assert total == 2
        assert [t.description for t in items] == ["Salary", "Market"]
        assert items[1].category.name == "Groceries"

    async def test_filters(self, db_factory, user_id):
        groceries = await _category_id(db_factory, user_id, "Groceries")
        dining = await _category_id(db_factory, user_id, "Dining")
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            for amount, cat, day in (
                (10, groceries, 1), (20, dining, 10), (30, dining, 20)
            ):
                await repo.create_transaction(
                    user_id,
                    amount=amount,
                    description=f"t{amount}",
                    category_id=cat,
                    transaction_date=date(2026, 9, day),
                )
        async with db_factory() as session:
            repo = LedgerRepository(session)
            items, total = await repo.list_transactions(user_id, category="din")
            assert total == 2
            items, total = await repo.list_transactions(
                user_id, start_date=date(2026, 9, 5), end_date=date(2026, 9, 15)
            )
            assert [t.amount for t in items] == [20]
            items, total = await repo.list_transactions(user_id, limit=1)
            assert len(items) == 1
            assert total == 3

    async def test_negative_amount_rejected(self, db_factory, user_id):
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError):
                await LedgerRepository(session).create_transaction(
                    user_id, amount=-5.0, description="Refund?", category_id=None
                )

    @pytest.mark.parametrize("amount", [float("inf"), float("-inf"), float("nan")])
    async def test_non_finite_amount_rejected(self, db_factory, user_id, amount):
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError, match="finite"):
                await LedgerRepository(session).create_transaction(
                    user_id, amount=amount, description="x", category_id=None
                )

    async def test_other_users_category_is_not_found(
        self, db_factory, user_id, other_user_id
    ):
        foreign = await _category_id(db_factory, other_user_id, "Dining")
        async with db_factory() as session, session.begin():
            with pytest.raises(NotFoundError):
                await LedgerRepository(session).create_transaction(
                    user_id, amount=5.0, description="Coffee", category_id=foreign
                )

    async def test_update_ignores_none_and_rejects_unknown(self, db_factory, user_id):
        async with db_factory() as session, session.begin():
            txn = await LedgerRepository(session).create_transaction(
                user_id, amount=5.0, description="Coffee", category_id=None
            )
            txn_id = txn.id
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            updated = await repo.update_transaction(
                user_id, txn_id, amount=6.5, description=None
            )
            assert updated.amount == 6.5
            assert updated.description == "Coffee"
            with pytest.raises(ValidationError, match="Cannot update"):
                await repo.update_transaction(user_id, txn_id, owner="someone")
            with pytest.raises(ValidationError, match="No data"):
                await repo.update_transaction(user_id, txn_id, amount=None)

    async def test_other_user_cannot_delete(self, db_factory, user_id, other_user_id):
        async with db_factory() as session, session.begin():
            txn = await LedgerRepository(session).create_transaction(
                user_id, amount=5.0, description="Coffee", category_id=None
            )
            txn_id = txn.id
        async with db_factory() as session, session.begin():
            with pytest.raises(NotFoundError):
                await LedgerRepository(session).delete_transaction(
                    other_user_id, txn_id
                )
        async with db_factory() as session:
            assert await LedgerRepository(session).get_transaction(user_id, txn_id)

    async def test_month_to_date_counts_past_expenses_only(self, db_factory, user_id):
        today = date(2026, 10, 19)
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            await repo.create_transaction(
                user_id, amount=50.0, description="a", category_id=None,
                transaction_date=date(2026, 10, 2),
            )
            await repo.create_transaction(
                user_id, amount=1000.0, description="pay", category_id=None,
                transaction_type="income", transaction_date=date(2026, 10, 3),
            )
            await repo.create_transaction(
                user_id, amount=70.0, description="old", category_id=None,
                transaction_date=date(2026, 9, 30),
            )
            await repo.create_transaction(
                user_id, amount=40.0, description="planned", category_id=None,
                transaction_date=date(2026, 10, 25),
            )
        async with db_factory() as session:
            spend = await LedgerRepository(session).month_to_date_spend(user_id, today)
        assert spend == 50.0


class TestBudgets:
    async def _budget(self, factory, user_id, *, amount=100.0, threshold=80.0):
        groceries = await _category_id(factory, user_id, "Groceries")
        async with factory() as session, session.begin():
            budget = await LedgerRepository(session).create_budget(
                user_id,
                category_id=groceries,
                name="Food",
                amount=amount,
                period_type="monthly",
                start_date=date(2026, 10, 1),
                alert_threshold=threshold,
            )
            return budget.id, groceries

    async def _spend(self, factory, user_id, category_id, amount):
        async with factory() as session, session.begin():
            await LedgerRepository(session).create_transaction(
                user_id,
                amount=amount,
                description="spend",
                category_id=category_id,
                transaction_date=date(2026, 10, 10),
            )

    async def _status(self, factory, user_id, budget_id):
        async with factory() as session:
            repo = LedgerRepository(session)
            budget = await repo.get_budget(user_id, budget_id)
            return await repo.budget_status(budget, date(2026, 10, 19))

    async def test_end_date_defaults_to_one_period(self, db_factory, user_id):
        budget_id, _ = await self._budget(db_factory, user_id)
        async with db_factory() as session:
            budget = await LedgerRepository(session).get_budget(user_id, budget_id)
        assert budget.end_date == date(2026, 11, 1)

    async def test_status_bands(self, db_factory, user_id):
        budget_id, cat = await self._budget(db_factory, user_id)
        status = await self._status(db_factory, user_id, budget_id)
        assert status.status == "on_track"
        assert status.days_remaining == 13

        await self._spend(db_factory, user_id, cat, 85.0)
        status = await self._status(db_factory, user_id, budget_id)
        assert status.status == "warning"
        assert status.alert_triggered

        await self._spend(db_factory, user_id, cat, 20.0)
        status = await self._status(db_factory, user_id, budget_id)
        assert status.status == "over_budget"
        assert status.remaining == pytest.approx(-5.0)
        assert status.percentage_used == pytest.approx(105.0)

    async def test_unknown_period_rejected(self, db_factory, user_id):
        groceries = await _category_id(db_factory, user_id, "Groceries")
        async with db_factory() as session, session.begin():
            with pytest.raises(ValidationError, match="period"):
                await LedgerRepository(session).create_budget(
                    user_id,
                    category_id=groceries,
                    name="Food",
                    amount=10.0,
                    period_type="daily",
                )

    async def test_update_and_delete(self, db_factory, user_id):
        budget_id, _ = await self._budget(db_factory, user_id)
        async with db_factory() as session, session.begin():
            repo = LedgerRepository(session)
            budget = await repo.update_budget(user_id, budget_id, amount=250.0)
            assert budget.amount == 250.0
            with pytest.raises(ValidationError, match="Cannot update"):
                await repo.update_budget(user_id, budget_id, period_type="weekly")
        async with db_factory() as session, session.begin():
            deleted = await LedgerRepository(session).delete_budget(user_id, budget_id)
            assert deleted.name == "Food"
        async with db_factory() as session:
            repo = LedgerRepository(session)
            assert await repo.get_budget(user_id, budget_id) is None

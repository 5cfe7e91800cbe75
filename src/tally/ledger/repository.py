"""Ledger repository: users, categories, transactions, budgets, receipts.

Every method takes ``user_id`` and every query filters on it; there is no
ambient tenant state and all values reach the database as bound
parameters.  Mutating methods add objects to the session and flush, but
do NOT commit.  The caller controls transaction boundaries.
"""

from __future__ import annotations

import calendar
import math
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, select

from tally.core.errors import NotFoundError, ValidationError
from tally.ledger.models import Budget, Category, Receipt, Transaction, User
from tally.ledger.views import BudgetStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

TRANSACTION_TYPES = ("income", "expense")
PERIOD_TYPES = ("weekly", "monthly", "yearly")
ANALYSIS_PERIODS = ("week", "month", "year")

DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("Groceries", "#22C55E", "shopping-cart"),
    ("Dining", "#F97316", "utensils"),
    ("Transportation", "#3B82F6", "car"),
    ("Entertainment", "#A855F7", "film"),
    ("Shopping", "#EC4899", "shopping-bag"),
    ("Healthcare", "#EF4444", "heart"),
    ("Utilities", "#EAB308", "zap"),
    ("Travel", "#10B981", "map"),
    ("Education", "#6366F1", "book"),
    ("Other", "#6B7280", "tag"),
]

_TRANSACTION_FIELDS = frozenset(
    {
        "amount",
        "description",
        "category_id",
        "transaction_type",
        "transaction_date",
        "merchant_name",
        "currency",
    }
)
_BUDGET_FIELDS = frozenset(
    {
        "name",
        "amount",
        "currency",
        "alert_threshold",
        "is_active",
        "start_date",
        "end_date",
    }
)


def add_months(d: date, months: int) -> date:
    """Shift a date by whole months, clamping to the last day of the month."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def period_end(start: date, period_type: str) -> date:
    """Default end date for a budget period starting on ``start``."""
    if period_type == "weekly":
        return start + timedelta(days=7)
    if period_type == "yearly":
        return add_months(start, 12)
    return add_months(start, 1)


def period_start(period: str, today: date) -> date:
    """First day of the current week (Monday), month or year."""
    if period == "week":
        return today - timedelta(days=today.weekday())
    if period == "year":
        return today.replace(month=1, day=1)
    return today.replace(day=1)


def _check_amount(amount: float, label: str = "Amount") -> None:
    if not math.isfinite(amount):
        msg = f"{label} must be a finite number (got {amount})."
        raise ValidationError(msg)
    if amount < 0:
        msg = f"{label} must not be negative (got {amount})."
        raise ValidationError(msg)


class LedgerRepository:
    """Async repository for one tenant-scoped view of the ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Users ────────────────────────────────────────────────────

    async def get_user(self, user_id: str) -> User | None:
        return await self._session.get(User, user_id)

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).where(func.lower(User.email) == email.lower())
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create_user(
        self, email: str, password_hash: str, display_name: str
    ) -> User:
        """Create a user and seed the default categories."""
        if await self.get_user_by_email(email) is not None:
            msg = f"Email already registered: {email}"
            raise ValidationError(msg)
        user = User(email=email, password_hash=password_hash, display_name=display_name)
        self._session.add(user)
        await self._session.flush()
        await self.seed_default_categories(user.id)
        return user

    # ── Categories ───────────────────────────────────────────────

    async def list_categories(self, user_id: str) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == user_id)
            .order_by(Category.name)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_category(self, user_id: str, category_id: str) -> Category | None:
        stmt = select(Category).where(
            Category.id == category_id, Category.user_id == user_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_category_by_name(self, user_id: str, name: str) -> Category | None:
        """Exact, case-insensitive name lookup."""
        stmt = select(Category).where(
            Category.user_id == user_id,
            func.lower(Category.name) == name.strip().lower(),
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def create_category(
        self,
        user_id: str,
        name: str,
        *,
        color: str = "#3B82F6",
        icon: str = "tag",
        is_default: bool = False,
    ) -> Category:
        """Create a category. Names are unique per user, ignoring case."""
        name = name.strip()
        if not name:
            raise ValidationError("Category name must not be empty.")
        if await self.find_category_by_name(user_id, name) is not None:
            msg = f'Category "{name}" already exists.'
            raise ValidationError(msg)
        category = Category(
            user_id=user_id, name=name, color=color, icon=icon, is_default=is_default
        )
        self._session.add(category)
        await self._session.flush()
        return category

    async def update_category(
        self,
        user_id: str,
        category_id: str,
        *,
        name: str | None = None,
        color: str | None = None,
        icon: str | None = None,
    ) -> Category:
        category = await self._require_category(user_id, category_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Category name must not be empty.")
            clash = await self.find_category_by_name(user_id, name)
            if clash is not None and clash.id != category.id:
                msg = f'Category "{name}" already exists.'
                raise ValidationError(msg)
            category.name = name
        if color is not None:
            category.color = color
        if icon is not None:
            category.icon = icon
        await self._session.flush()
        return category

    async def seed_default_categories(self, user_id: str) -> list[Category]:
        created = []
        for name, color, icon in DEFAULT_CATEGORIES:
            category = Category(
                user_id=user_id, name=name, color=color, icon=icon, is_default=True
            )
            self._session.add(category)
            created.append(category)
        await self._session.flush()
        return created

    async def delete_category(self, user_id: str, category_id: str) -> None:
        """Delete a category that no transaction or budget references."""
        category = await self.get_category(user_id, category_id)
        if category is None:
            msg = f"Category {category_id} not found."
            raise NotFoundError(msg)
        in_use = await self._session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.user_id == user_id, Transaction.category_id == category_id
            )
        )
        in_use = (in_use or 0) + (
            await self._session.scalar(
                select(func.count(Budget.id)).where(
                    Budget.user_id == user_id, Budget.category_id == category_id
                )
            )
            or 0
        )
        if in_use:
            msg = f'Category "{category.name}" is still used and cannot be deleted.'
            raise ValidationError(msg)
        await self._session.delete(category)
        await self._session.flush()

    async def _require_category(self, user_id: str, category_id: str) -> Category:
        category = await self.get_category(user_id, category_id)
        if category is None:
            msg = f"Category {category_id} not found."
            raise NotFoundError(msg)
        return category

    # ── Transactions ─────────────────────────────────────────────

    async def list_transactions(
        self,
        user_id: str,
        *,
        category: str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        transaction_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        """Filtered transactions, newest first, plus the unpaged total.

        ``category`` matches as a case-insensitive substring of the
        category name.
        """
        conditions: list[Any] = [Transaction.user_id == user_id]
        if category:
            conditions.append(
                func.lower(Category.name).contains(category.lower(), autoescape=True)
            )
        if start_date is not None:
            conditions.append(Transaction.transaction_date >= start_date)
        if end_date is not None:
            conditions.append(Transaction.transaction_date <= end_date)
        if transaction_type is not None:
            conditions.append(Transaction.transaction_type == transaction_type)

        count_stmt = (
            select(func.count(Transaction.id))
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(*conditions)
        )
        total = await self._session.scalar(count_stmt) or 0

        stmt = (
            select(Transaction)
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(*conditions)
            .order_by(
                Transaction.transaction_date.desc(), Transaction.created_at.desc()
            )
            .limit(limit)
            .offset(offset)
        )
        items = list((await self._session.execute(stmt)).scalars().all())
        return items, total

    async def recent_transactions(
        self, user_id: str, limit: int = 10
    ) -> list[Transaction]:
        items, _ = await self.list_transactions(user_id, limit=limit)
        return items

    async def get_transaction(
        self, user_id: str, transaction_id: str
    ) -> Transaction | None:
        stmt = select(Transaction).where(
            Transaction.id == transaction_id, Transaction.user_id == user_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create_transaction(
        self,
        user_id: str,
        *,
        amount: float,
        description: str,
        category_id: str | None,
        transaction_type: str = "expense",
        transaction_date: date | None = None,
        merchant_name: str | None = None,
        currency: str = "USD",
    ) -> Transaction:
        """Create a transaction. The category must belong to the user."""
        _check_amount(amount)
        if transaction_type not in TRANSACTION_TYPES:
            msg = f"Unknown transaction type: {transaction_type!r}"
            raise ValidationError(msg)
        category = (
            await self._require_category(user_id, category_id) if category_id else None
        )
        txn = Transaction(
            user_id=user_id,
            amount=amount,
            description=description,
            transaction_type=transaction_type,
            transaction_date=transaction_date or date.today(),
            merchant_name=merchant_name,
            currency=currency,
            category=category,
        )
        self._session.add(txn)
        await self._session.flush()
        return txn

    async def update_transaction(
        self, user_id: str, transaction_id: str, **fields: Any
    ) -> Transaction:
        """Apply the given fields; ``None`` values are ignored."""
        changes = {k: v for k, v in fields.items() if v is not None}
        unknown = set(changes) - _TRANSACTION_FIELDS
        if unknown:
            msg = f"Cannot update transaction fields: {', '.join(sorted(unknown))}"
            raise ValidationError(msg)
        if not changes:
            raise ValidationError("No data provided for update.")

        txn = await self.get_transaction(user_id, transaction_id)
        if txn is None:
            msg = f"Transaction {transaction_id} not found."
            raise NotFoundError(msg)
        if "amount" in changes:
            _check_amount(changes["amount"])
        if changes.get("transaction_type", "expense") not in TRANSACTION_TYPES:
            msg = f"Unknown transaction type: {changes['transaction_type']!r}"
            raise ValidationError(msg)
        if "category_id" in changes:
            txn.category = await self._require_category(
                user_id, changes.pop("category_id")
            )
        for key, value in changes.items():
            setattr(txn, key, value)
        await self._session.flush()
        return txn

    async def delete_transaction(self, user_id: str, transaction_id: str) -> None:
        txn = await self.get_transaction(user_id, transaction_id)
        if txn is None:
            msg = f"Transaction {transaction_id} not found."
            raise NotFoundError(msg)
        await self._session.delete(txn)
        await self._session.flush()

    async def spending_summary(self, user_id: str, since: date) -> dict[str, Any]:
        """Income, expense and count totals for transactions on/after ``since``."""
        is_income = Transaction.transaction_type == "income"
        is_expense = Transaction.transaction_type == "expense"
        stmt = select(
            func.coalesce(func.sum(case((is_income, Transaction.amount), else_=0)), 0),
            func.coalesce(func.sum(case((is_expense, Transaction.amount), else_=0)), 0),
            func.count(Transaction.id),
            func.count(case((is_income, 1))),
            func.count(case((is_expense, 1))),
        ).where(Transaction.user_id == user_id, Transaction.transaction_date >= since)
        income, expenses, count, income_count, expense_count = (
            await self._session.execute(stmt)
        ).one()
        return {
            "since": since.isoformat(),
            "total_income": float(income),
            "total_expenses": float(expenses),
            "net": float(income) - float(expenses),
            "transaction_count": count,
            "income_count": income_count,
            "expense_count": expense_count,
        }

    async def category_summary(
        self, user_id: str, since: date
    ) -> list[dict[str, Any]]:
        """Expense totals per category since ``since``, largest first."""
        total = func.sum(Transaction.amount)
        stmt = (
            select(
                func.coalesce(Category.name, "Uncategorized"),
                total,
                func.count(Transaction.id),
            )
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == user_id,
                Transaction.transaction_type == "expense",
                Transaction.transaction_date >= since,
            )
            .group_by(Category.name)
            .order_by(total.desc())
        )
        rows = (await self._session.execute(stmt)).all()
        return [
            {"category_name": name, "total": float(amount), "count": count}
            for name, amount, count in rows
        ]

    async def month_to_date_spend(
        self, user_id: str, today: date | None = None
    ) -> float:
        """Sum of expenses dated from the first of the month through today."""
        today = today or date.today()
        since = period_start("month", today)
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == user_id,
            Transaction.transaction_type == "expense",
            Transaction.transaction_date >= since,
            Transaction.transaction_date <= today,
        )
        return float(await self._session.scalar(stmt) or 0)

    # ── Budgets ──────────────────────────────────────────────────

    async def list_budgets(
        self, user_id: str, *, active_only: bool = False
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == user_id)
            .order_by(Budget.created_at.desc())
        )
        if active_only:
            stmt = stmt.where(Budget.is_active == True)  # noqa: E712
        return list((await self._session.execute(stmt)).scalars().all())

    async def get_budget(self, user_id: str, budget_id: str) -> Budget | None:
        stmt = select(Budget).where(Budget.id == budget_id, Budget.user_id == user_id)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def create_budget(
        self,
        user_id: str,
        *,
        category_id: str,
        name: str,
        amount: float,
        period_type: str,
        currency: str = "USD",
        start_date: date | None = None,
        end_date: date | None = None,
        alert_threshold: float = 80.0,
    ) -> Budget:
        """Create a budget; ``end_date`` defaults to one period after the start."""
        _check_amount(amount)
        if period_type not in PERIOD_TYPES:
            msg = f"Unknown budget period: {period_type!r}"
            raise ValidationError(msg)
        if not name.strip():
            raise ValidationError("Budget name must not be empty.")
        category = await self._require_category(user_id, category_id)
        start = start_date or date.today()
        end = end_date or period_end(start, period_type)
        if end < start:
            raise ValidationError("Budget end date is before its start date.")
        budget = Budget(
            user_id=user_id,
            name=name.strip(),
            amount=amount,
            currency=currency,
            period_type=period_type,
            start_date=start,
            end_date=end,
            alert_threshold=alert_threshold,
            category=category,
        )
        self._session.add(budget)
        await self._session.flush()
        return budget

    async def update_budget(
        self, user_id: str, budget_id: str, **fields: Any
    ) -> Budget:
        """Apply the given fields; ``None`` values are ignored."""
        changes = {k: v for k, v in fields.items() if v is not None}
        unknown = set(changes) - _BUDGET_FIELDS
        if unknown:
            msg = f"Cannot update budget fields: {', '.join(sorted(unknown))}"
            raise ValidationError(msg)
        if not changes:
            raise ValidationError("No data provided for update.")
        if "amount" in changes:
            _check_amount(changes["amount"])

        budget = await self.get_budget(user_id, budget_id)
        if budget is None:
            msg = f"Budget {budget_id} not found."
            raise NotFoundError(msg)
        for key, value in changes.items():
            setattr(budget, key, value)
        await self._session.flush()
        return budget

    async def delete_budget(self, user_id: str, budget_id: str) -> Budget:
        """Delete a budget and return the detached instance."""
        budget = await self.get_budget(user_id, budget_id)
        if budget is None:
            msg = f"Budget {budget_id} not found."
            raise NotFoundError(msg)
        await self._session.delete(budget)
        await self._session.flush()
        return budget

    async def budget_status(
        self, budget: Budget, today: date | None = None
    ) -> BudgetStatus:
        """Expense spend in the budget's category over its period."""
        today = today or date.today()
        stmt = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
            Transaction.user_id == budget.user_id,
            Transaction.category_id == budget.category_id,
            Transaction.transaction_type == "expense",
            Transaction.transaction_date >= budget.start_date,
            Transaction.transaction_date <= budget.end_date,
        )
        spent = float(await self._session.scalar(stmt) or 0)
        pct = (spent / budget.amount) * 100 if budget.amount > 0 else 0.0

        if pct >= 100:
            status = "over_budget"
        elif pct >= budget.alert_threshold:
            status = "warning"
        else:
            status = "on_track"

        return BudgetStatus(
            spent=spent,
            remaining=budget.amount - spent,
            percentage_used=round(pct, 2),
            days_remaining=max(0, (budget.end_date - today).days),
            alert_triggered=status != "on_track",
            status=status,
        )

    # ── Receipts ─────────────────────────────────────────────────

    async def create_receipt(
        self,
        user_id: str,
        *,
        extracted_text: str,
        parsed_data: dict[str, Any],
        confidence: float = 0.0,
        file_name: str | None = None,
        transaction_id: str | None = None,
    ) -> Receipt:
        receipt = Receipt(
            user_id=user_id,
            extracted_text=extracted_text,
            parsed_data=parsed_data,
            confidence=confidence,
            file_name=file_name,
            transaction_id=transaction_id,
        )
        self._session.add(receipt)
        await self._session.flush()
        return receipt

    async def get_receipt(self, user_id: str, receipt_id: str) -> Receipt | None:
        stmt = select(Receipt).where(
            Receipt.id == receipt_id, Receipt.user_id == user_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_receipt_by_transaction(
        self, user_id: str, transaction_id: str
    ) -> Receipt | None:
        stmt = select(Receipt).where(
            Receipt.transaction_id == transaction_id, Receipt.user_id == user_id
        )
        return (await self._session.execute(stmt)).scalars().first()

    async def replace_receipt_data(
        self,
        user_id: str,
        receipt_id: str,
        parsed_data: dict[str, Any],
        *,
        transaction_id: str | None = None,
    ) -> Receipt:
        """Swap in new parsed data, linking ``transaction_id`` when given."""
        receipt = await self.get_receipt(user_id, receipt_id)
        if receipt is None:
            msg = f"Receipt {receipt_id} not found."
            raise NotFoundError(msg)
        # JSON columns only track reassignment, not in-place mutation
        receipt.parsed_data = dict(parsed_data)
        if transaction_id is not None:
            receipt.transaction_id = transaction_id
        await self._session.flush()
        return receipt

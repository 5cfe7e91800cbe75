"""Ledger CRUD endpoints: transactions, budgets, categories."""

from __future__ import annotations

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from tally.api.auth import get_current_user
from tally.core.errors import NotFoundError
from tally.ledger.models import Budget, User
from tally.ledger.repository import LedgerRepository, period_start
from tally.ledger.views import (
    BudgetStatus,
    BudgetView,
    CategoryView,
    TransactionView,
)

router = APIRouter(prefix="/api", tags=["ledger"])


# -- Transactions --------------------------------------------------------------


class TransactionCreate(BaseModel):
    amount: float = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    category_id: str | None = None
    transaction_type: Literal["income", "expense"] = "expense"
    transaction_date: date | None = None
    merchant_name: str | None = None
    currency: str = Field(default="USD", min_length=3, max_length=3)


class TransactionUpdate(BaseModel):
    amount: float | None = Field(default=None, gt=0)
    description: str | None = Field(default=None, min_length=1, max_length=500)
    category_id: str | None = None
    transaction_type: Literal["income", "expense"] | None = None
    transaction_date: date | None = None
    merchant_name: str | None = None
    currency: str | None = Field(default=None, min_length=3, max_length=3)


class TransactionPage(BaseModel):
    items: list[TransactionView]
    total: int
    limit: int
    offset: int


@router.get("/transactions", response_model=TransactionPage)
async def list_transactions(
    request: Request,
    category: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    transaction_type: Literal["income", "expense"] | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),  # noqa: B008
) -> TransactionPage:
    async with request.app.state.db_factory() as session:
        items, total = await LedgerRepository(session).list_transactions(
            user.id,
            category=category,
            start_date=start_date,
            end_date=end_date,
            transaction_type=transaction_type,
            limit=limit,
            offset=offset,
        )
        views = [TransactionView.of(t) for t in items]
    return TransactionPage(items=views, total=total, limit=limit, offset=offset)


@router.post("/transactions", response_model=TransactionView, status_code=201)
async def create_transaction(
    body: TransactionCreate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> TransactionView:
    async with request.app.state.db_factory() as session, session.begin():
        txn = await LedgerRepository(session).create_transaction(
            user.id, **body.model_dump()
        )
        return TransactionView.of(txn)


Period = Literal["week", "month", "year"]


class SpendingSummary(BaseModel):
    period: Period
    since: date
    total_income: float
    total_expenses: float
    net: float
    transaction_count: int
    income_count: int
    expense_count: int


class CategoryTotal(BaseModel):
    category_name: str
    total: float
    count: int


class CategorySummary(BaseModel):
    period: Period
    since: date
    categories: list[CategoryTotal]


@router.get("/transactions/summary/spending", response_model=SpendingSummary)
async def spending_summary(
    request: Request,
    period: Period = "month",
    user: User = Depends(get_current_user),  # noqa: B008
) -> SpendingSummary:
    """Income and expense totals since the start of the current period."""
    since = period_start(period, date.today())
    async with request.app.state.db_factory() as session:
        totals = await LedgerRepository(session).spending_summary(user.id, since)
    return SpendingSummary(period=period, **totals)


@router.get("/transactions/summary/categories", response_model=CategorySummary)
async def category_summary(
    request: Request,
    period: Period = "month",
    user: User = Depends(get_current_user),  # noqa: B008
) -> CategorySummary:
    since = period_start(period, date.today())
    async with request.app.state.db_factory() as session:
        rows = await LedgerRepository(session).category_summary(user.id, since)
    return CategorySummary(
        period=period,
        since=since,
        categories=[CategoryTotal(**row) for row in rows],
    )


@router.get("/transactions/{transaction_id}", response_model=TransactionView)
async def get_transaction(
    transaction_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> TransactionView:
    async with request.app.state.db_factory() as session:
        txn = await LedgerRepository(session).get_transaction(user.id, transaction_id)
        if txn is None:
            msg = f"Transaction {transaction_id} not found."
            raise NotFoundError(msg)
        return TransactionView.of(txn)


@router.patch("/transactions/{transaction_id}", response_model=TransactionView)
async def update_transaction(
    transaction_id: str,
    body: TransactionUpdate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> TransactionView:
    async with request.app.state.db_factory() as session, session.begin():
        txn = await LedgerRepository(session).update_transaction(
            user.id, transaction_id, **body.model_dump(exclude_unset=True)
        )
        return TransactionView.of(txn)


@router.delete("/transactions/{transaction_id}", status_code=204)
async def delete_transaction(
    transaction_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> None:
    async with request.app.state.db_factory() as session, session.begin():
        await LedgerRepository(session).delete_transaction(user.id, transaction_id)


# -- Budgets -------------------------------------------------------------------


class BudgetCreate(BaseModel):
    category_id: str
    name: str = Field(min_length=1, max_length=100)
    amount: float = Field(gt=0)
    period_type: Literal["weekly", "monthly", "yearly"] = "monthly"
    currency: str = Field(default="USD", min_length=3, max_length=3)
    start_date: date | None = None
    end_date: date | None = None
    alert_threshold: float = Field(default=80.0, ge=0, le=100)


class BudgetUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    amount: float | None = Field(default=None, gt=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    alert_threshold: float | None = Field(default=None, ge=0, le=100)
    is_active: bool | None = None
    start_date: date | None = None
    end_date: date | None = None


@router.get("/budgets", response_model=list[BudgetView])
async def list_budgets(
    request: Request,
    active_only: bool = False,
    user: User = Depends(get_current_user),  # noqa: B008
) -> list[BudgetView]:
    """Budgets with their current spend status."""
    async with request.app.state.db_factory() as session:
        repo = LedgerRepository(session)
        budgets = await repo.list_budgets(user.id, active_only=active_only)
        return [BudgetView.of(b, await repo.budget_status(b)) for b in budgets]


@router.post("/budgets", response_model=BudgetView, status_code=201)
async def create_budget(
    body: BudgetCreate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> BudgetView:
    async with request.app.state.db_factory() as session, session.begin():
        repo = LedgerRepository(session)
        budget = await repo.create_budget(user.id, **body.model_dump())
        return BudgetView.of(budget, await repo.budget_status(budget))


async def _require_budget(
    repo: LedgerRepository, user_id: str, budget_id: str
) -> Budget:
    budget = await repo.get_budget(user_id, budget_id)
    if budget is None:
        msg = f"Budget {budget_id} not found."
        raise NotFoundError(msg)
    return budget


@router.get("/budgets/{budget_id}", response_model=BudgetView)
async def get_budget(
    budget_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> BudgetView:
    async with request.app.state.db_factory() as session:
        repo = LedgerRepository(session)
        budget = await _require_budget(repo, user.id, budget_id)
        return BudgetView.of(budget, await repo.budget_status(budget))


@router.get("/budgets/{budget_id}/status", response_model=BudgetStatus)
async def get_budget_status(
    budget_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> BudgetStatus:
    async with request.app.state.db_factory() as session:
        repo = LedgerRepository(session)
        budget = await _require_budget(repo, user.id, budget_id)
        return await repo.budget_status(budget)


@router.patch("/budgets/{budget_id}", response_model=BudgetView)
async def update_budget(
    budget_id: str,
    body: BudgetUpdate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> BudgetView:
    async with request.app.state.db_factory() as session, session.begin():
        repo = LedgerRepository(session)
        budget = await repo.update_budget(
            user.id, budget_id, **body.model_dump(exclude_unset=True)
        )
        return BudgetView.of(budget, await repo.budget_status(budget))


@router.delete("/budgets/{budget_id}", status_code=204)
async def delete_budget(
    budget_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> None:
    async with request.app.state.db_factory() as session, session.begin():
        await LedgerRepository(session).delete_budget(user.id, budget_id)


# -- Categories ----------------------------------------------------------------


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str = "#3B82F6"
    icon: str = "tag"


class CategoryUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    color: str | None = None
    icon: str | None = None


@router.get("/categories", response_model=list[CategoryView])
async def list_categories(
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> list[CategoryView]:
    async with request.app.state.db_factory() as session:
        categories = await LedgerRepository(session).list_categories(user.id)
    return [CategoryView.of(c) for c in categories]


@router.post("/categories", response_model=CategoryView, status_code=201)
async def create_category(
    body: CategoryCreate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> CategoryView:
    async with request.app.state.db_factory() as session, session.begin():
        category = await LedgerRepository(session).create_category(
            user.id, body.name, color=body.color, icon=body.icon
        )
        return CategoryView.of(category)


@router.put("/categories/{category_id}", response_model=CategoryView)
async def update_category(
    category_id: str,
    body: CategoryUpdate,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> CategoryView:
    async with request.app.state.db_factory() as session, session.begin():
        category = await LedgerRepository(session).update_category(
            user.id, category_id, **body.model_dump(exclude_unset=True)
        )
        return CategoryView.of(category)


@router.delete("/categories/{category_id}", status_code=204)
async def delete_category(
    category_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> None:
    async with request.app.state.db_factory() as session, session.begin():
        await LedgerRepository(session).delete_category(user.id, category_id)

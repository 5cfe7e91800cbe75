"""JSON-ready read models shared by the tools and the REST routes."""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from tally.ledger.models import Budget, Category, Receipt, Transaction


class CategoryView(BaseModel):
    id: str
    name: str
    color: str
    icon: str
    is_default: bool = False

    @classmethod
    def of(cls, category: Category) -> CategoryView:
        return cls(
            id=category.id,
            name=category.name,
            color=category.color,
            icon=category.icon,
            is_default=category.is_default,
        )


class TransactionView(BaseModel):
    id: str
    amount: float
    description: str
    merchant_name: str | None = None
    currency: str
    transaction_type: Literal["income", "expense"]
    transaction_date: date
    category_id: str | None = None
    category_name: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def of(cls, txn: Transaction) -> TransactionView:
        return cls(
            id=txn.id,
            amount=txn.amount,
            description=txn.description,
            merchant_name=txn.merchant_name,
            currency=txn.currency,
            transaction_type=txn.transaction_type,  # type: ignore[arg-type]
            transaction_date=txn.transaction_date,
            category_id=txn.category_id,
            category_name=txn.category.name if txn.category else None,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class BudgetStatus(BaseModel):
    """Spend against a budget within its period, as of one day."""

    spent: float
    remaining: float
    percentage_used: float
    days_remaining: int
    alert_triggered: bool
    status: Literal["on_track", "warning", "over_budget"]


class BudgetView(BaseModel):
    id: str
    name: str
    amount: float
    currency: str
    period_type: str
    start_date: date
    end_date: date
    alert_threshold: float
    is_active: bool
    category_id: str
    category_name: str | None = None
    updated_at: datetime
    status: BudgetStatus | None = None

    @classmethod
    def of(cls, budget: Budget, status: BudgetStatus | None = None) -> BudgetView:
        return cls(
            id=budget.id,
            name=budget.name,
            amount=budget.amount,
            currency=budget.currency,
            period_type=budget.period_type,
            start_date=budget.start_date,
            end_date=budget.end_date,
            alert_threshold=budget.alert_threshold,
            is_active=budget.is_active,
            category_id=budget.category_id,
            category_name=budget.category.name if budget.category else None,
            updated_at=budget.updated_at,
            status=status,
        )


class ReceiptItem(BaseModel):
    name: str
    amount: float
    quantity: float = 1
    category: str = "other"


class ReceiptView(BaseModel):
    receipt_id: str
    transaction_id: str | None = None
    merchant_name: str = "Unknown"
    total_amount: float = 0.0
    currency: str = "USD"
    date: str | None = None
    items: list[ReceiptItem] = Field(default_factory=list)
    confidence: float = 0.0

    @classmethod
    def of(cls, receipt: Receipt) -> ReceiptView:
        data: dict[str, Any] = receipt.parsed_data or {}
        items = [
            ReceiptItem.model_validate(item)
            for item in data.get("items", [])
            if isinstance(item, dict) and item.get("name") and item.get("amount")
        ]
        return cls(
            receipt_id=receipt.id,
            transaction_id=receipt.transaction_id,
            merchant_name=data.get("merchantName") or "Unknown",
            total_amount=float(data.get("totalAmount") or 0.0),
            currency=data.get("currency") or "USD",
            date=data.get("date"),
            items=items,
            confidence=receipt.confidence,
        )

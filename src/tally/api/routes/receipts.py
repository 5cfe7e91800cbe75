"""Receipt endpoints: ingest extracted text, fetch and confirm stored receipts."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from tally.api.auth import get_current_user
from tally.core.errors import NotFoundError
from tally.ledger.models import User
from tally.ledger.repository import LedgerRepository
from tally.ledger.views import ReceiptView, TransactionView

router = APIRouter(prefix="/api/receipts", tags=["receipts"])


class ReceiptUpload(BaseModel):
    text: str = Field(min_length=1, max_length=20_000)
    file_name: str | None = None
    create_transaction: bool = True


class ReceiptUploadResponse(BaseModel):
    receipt: ReceiptView
    transaction: TransactionView | None = None


@router.post("", response_model=ReceiptUploadResponse, status_code=201)
async def upload_receipt(
    body: ReceiptUpload,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> ReceiptUploadResponse:
    """Structure the receipt text and store it, with its expense if asked."""
    result = await request.app.state.services.ingestor.ingest(
        user.id,
        body.text,
        file_name=body.file_name,
        create_transaction=body.create_transaction,
    )
    return ReceiptUploadResponse(receipt=result.receipt, transaction=result.transaction)


@router.get("/{receipt_id}", response_model=ReceiptView)
async def get_receipt(
    receipt_id: str,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> ReceiptView:
    async with request.app.state.db_factory() as session:
        receipt = await LedgerRepository(session).get_receipt(user.id, receipt_id)
    if receipt is None:
        msg = f"Receipt {receipt_id} not found."
        raise NotFoundError(msg)
    return ReceiptView.of(receipt)


class ReceiptConfirm(BaseModel):
    confirmed_data: dict[str, Any]


@router.put("/{receipt_id}/confirm", response_model=ReceiptUploadResponse)
async def confirm_receipt(
    receipt_id: str,
    body: ReceiptConfirm,
    request: Request,
    user: User = Depends(get_current_user),  # noqa: B008
) -> ReceiptUploadResponse:
    """Store the user's corrections and book the receipt as an expense."""
    result = await request.app.state.services.ingestor.confirm(
        user.id, receipt_id, body.confirmed_data
    )
    return ReceiptUploadResponse(receipt=result.receipt, transaction=result.transaction)

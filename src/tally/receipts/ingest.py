"""Store parsed receipts and turn them into ledger transactions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from tally.core.errors import NotFoundError, StorageError, ValidationError
from tally.ledger.repository import LedgerRepository
from tally.ledger.views import ReceiptView, TransactionView
from tally.receipts.parser import validate_parsed

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from tally.ledger.models import Transaction
    from tally.receipts.parser import ParsedReceipt, ReceiptParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class IngestResult:
    receipt: ReceiptView
    transaction: TransactionView | None = None


async def _create_expense(
    repo: LedgerRepository, user_id: str, parsed: ParsedReceipt
) -> Transaction:
    """Book the receipt total as an expense, recreating its category if gone."""
    category = await repo.find_category_by_name(user_id, parsed.category)
    if category is None:
        category = await repo.create_category(
            user_id,
            parsed.category.title(),
            color="#10B981",
            icon="folder",
        )
    return await repo.create_transaction(
        user_id,
        amount=parsed.total_amount,
        description=f"Receipt from {parsed.merchant_name}",
        category_id=category.id,
        transaction_type="expense",
        transaction_date=date.fromisoformat(parsed.date) if parsed.date else None,
        merchant_name=parsed.merchant_name,
        currency=parsed.currency,
    )


class ReceiptIngestor:
    """Parse receipt text, then save the receipt and its expense together."""

    def __init__(
        self,
        parser: ReceiptParser,
        db_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._parser = parser
        self._factory = db_factory

    async def ingest(
        self,
        user_id: str,
        text: str,
        *,
        file_name: str | None = None,
        create_transaction: bool = True,
    ) -> IngestResult:
        # Parse before opening a transaction; the engine call can be slow
        parsed = await self._parser.parse(text)
        try:
            async with self._factory() as session, session.begin():
                repo = LedgerRepository(session)
                txn = None
                if create_transaction and parsed.total_amount > 0:
                    txn = await _create_expense(repo, user_id, parsed)
                receipt = await repo.create_receipt(
                    user_id,
                    extracted_text=text,
                    parsed_data=parsed.to_data(),
                    confidence=parsed.confidence,
                    file_name=file_name,
                    transaction_id=txn.id if txn else None,
                )
                result = IngestResult(
                    receipt=ReceiptView.of(receipt),
                    transaction=TransactionView.of(txn) if txn else None,
                )
        except SQLAlchemyError as e:
            msg = f"Could not store receipt: {e}"
            raise StorageError(msg) from e

        logger.info(
            "Stored receipt %s for user %s (%d items)",
            result.receipt.receipt_id,
            user_id,
            len(result.receipt.items),
        )
        return result

    async def confirm(
        self, user_id: str, receipt_id: str, confirmed: dict[str, Any]
    ) -> IngestResult:
        """Replace a stored receipt's data with the user's corrections.

        The corrected total is booked as an expense and linked to the
        receipt.  A receipt that already has a transaction is rejected.
        """
        parsed = validate_parsed(confirmed)
        if parsed.total_amount <= 0:
            raise ValidationError("Confirmed receipt needs a positive total.")
        try:
            async with self._factory() as session, session.begin():
                repo = LedgerRepository(session)
                receipt = await repo.get_receipt(user_id, receipt_id)
                if receipt is None:
                    msg = f"Receipt {receipt_id} not found."
                    raise NotFoundError(msg)
                if receipt.transaction_id is not None:
                    msg = f"Receipt {receipt_id} already has a transaction."
                    raise ValidationError(msg)
                txn = await _create_expense(repo, user_id, parsed)
                receipt = await repo.replace_receipt_data(
                    user_id,
                    receipt_id,
                    parsed.to_data(),
                    transaction_id=txn.id,
                )
                result = IngestResult(
                    receipt=ReceiptView.of(receipt),
                    transaction=TransactionView.of(txn),
                )
        except SQLAlchemyError as e:
            msg = f"Could not confirm receipt: {e}"
            raise StorageError(msg) from e

        logger.info("Confirmed receipt %s for user %s", receipt_id, user_id)
        return result

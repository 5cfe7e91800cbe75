"""Ledger store and chat history persistence."""

from tally.ledger.db import create_db
from tally.ledger.history import ChatHistoryRepository, HistoryPage
from tally.ledger.models import (
    Base,
    Budget,
    Category,
    ChatMessage,
    Receipt,
    Transaction,
    User,
)
from tally.ledger.repository import LedgerRepository

__all__ = [
    "Base",
    "Budget",
    "Category",
    "ChatHistoryRepository",
    "ChatMessage",
    "HistoryPage",
    "LedgerRepository",
    "Receipt",
    "Transaction",
    "User",
    "create_db",
]

"""Receipt parsing and ingestion."""

from tally.receipts.ingest import IngestResult, ReceiptIngestor
from tally.receipts.parser import ParsedReceipt, ReceiptParser, validate_parsed

__all__ = [
    "IngestResult",
    "ParsedReceipt",
    "ReceiptIngestor",
    "ReceiptParser",
    "validate_parsed",
]

"""Structured data from already-extracted receipt text."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from tally.core.errors import TallyError, ValidationError
from tally.core.retry import RetryPolicy, retry_with_backoff
from tally.providers.base import PromptMessage

if TYPE_CHECKING:
    from tally.providers.manager import ProviderManager

logger = logging.getLogger(__name__)

ITEM_CATEGORIES = (
    "groceries",
    "dining",
    "transportation",
    "entertainment",
    "shopping",
    "healthcare",
    "utilities",
    "travel",
    "education",
    "other",
)

PARSE_PROMPT = """\
Extract receipt data as JSON:
{{
  "merchantName": "store name",
  "totalAmount": number,
  "currency": "EUR/USD",
  "date": "YYYY-MM-DD",
  "category": "category",
  "items": [{{"name": "item", "amount": number}}],
  "confidence": 0-1
}}

Receipt: {text}"""

ITEM_PROMPT = """\
Suggest the most appropriate category for this purchased item.
Choose from: {choices}

Item: "{name}"
Amount: {amount}

Return only the category name, no explanation."""


@dataclass(slots=True)
class ParsedReceipt:
    merchant_name: str
    total_amount: float
    currency: str = "USD"
    date: str | None = None
    category: str = "other"
    items: list[dict[str, Any]] = field(default_factory=list)
    confidence: float = 0.0

    def to_data(self) -> dict[str, Any]:
        """Stored form, keyed the way receipt views read it."""
        return {
            "merchantName": self.merchant_name,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "date": self.date,
            "category": self.category,
            "items": self.items,
            "confidence": self.confidence,
        }


def _as_float(value: Any, default: float = 0.0) -> float:
    number = default
    if isinstance(value, int | float) and not isinstance(value, bool):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.replace(",", ".").strip().lstrip("$€£"))
        except ValueError:
            return default
    return number if math.isfinite(number) else default


def _normalise_category(raw: Any) -> str:
    text = str(raw or "").strip().lower().rstrip(".")
    return text if text in ITEM_CATEGORIES else "other"


def validate_parsed(payload: Any) -> ParsedReceipt:
    """Clamp and default an engine-produced receipt object."""
    if not isinstance(payload, dict):
        raise ValidationError("Receipt data must be a JSON object.")

    receipt_date = payload.get("date")
    if receipt_date is not None:
        try:
            receipt_date = date.fromisoformat(str(receipt_date)).isoformat()
        except ValueError:
            receipt_date = None

    items = []
    for raw in payload.get("items") or []:
        if not isinstance(raw, dict) or not str(raw.get("name") or "").strip():
            continue
        amount = abs(_as_float(raw.get("amount")))
        if amount <= 0:
            continue
        quantity = _as_float(raw.get("quantity"), 1.0)
        items.append(
            {
                "name": str(raw["name"]).strip(),
                "amount": amount,
                "quantity": quantity if quantity > 0 else 1.0,
                "category": _normalise_category(raw.get("category")),
            }
        )

    confidence = min(1.0, max(0.0, _as_float(payload.get("confidence"))))
    return ParsedReceipt(
        merchant_name=str(payload.get("merchantName") or "Unknown Merchant").strip(),
        total_amount=abs(_as_float(payload.get("totalAmount"))),
        currency=str(payload.get("currency") or "USD").strip().upper()[:3],
        date=receipt_date,
        category=_normalise_category(payload.get("category")),
        items=items,
        confidence=confidence,
    )


class ReceiptParser:
    """Asks the reasoning engine to structure receipt text."""

    def __init__(
        self,
        provider_manager: ProviderManager,
        model_ref: str,
        *,
        retry: RetryPolicy | None = None,
        categorize_items: bool = True,
        max_concurrency: int = 5,
    ) -> None:
        self._pm = provider_manager
        self._model_ref = model_ref
        self._retry = retry or RetryPolicy()
        self._categorize_items = categorize_items
        self._max_concurrency = max_concurrency

    async def _ask(self, prompt: str, *, json_mode: bool, max_tokens: int) -> str:
        provider, model_id = self._pm.get_provider(self._model_ref)
        response = await retry_with_backoff(
            functools.partial(
                provider.send,
                [PromptMessage(role="user", content=prompt)],
                model_id,
                max_tokens=max_tokens,
                temperature=0.0,
                response_format="json" if json_mode else None,
            ),
            self._retry,
            provider_id=provider.provider_id,
        )
        self._pm.record_usage(response.model_info, response.usage)
        return response.content

    async def parse(self, text: str) -> ParsedReceipt:
        """Structure receipt text.

        Raises:
            ValidationError: Empty text or an unreadable engine reply.
            UpstreamError: The engine failed.
        """
        if not text or not text.strip():
            raise ValidationError("Receipt text is empty.")
        raw = await self._ask(
            PARSE_PROMPT.format(text=text.strip()), json_mode=True, max_tokens=800
        )
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Unparseable receipt reply: %.200s", raw)
            msg = "Could not read structured data from the receipt."
            raise ValidationError(msg) from e

        parsed = validate_parsed(payload)
        if self._categorize_items and parsed.items:
            categories = await self.suggest_item_categories(parsed.items)
            for item, category in zip(parsed.items, categories, strict=True):
                item["category"] = category
        return parsed

    async def suggest_item_categories(self, items: list[dict[str, Any]]) -> list[str]:
        """Classify items concurrently; any failed lookup becomes ``other``."""
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def classify(item: dict[str, Any]) -> str:
            prompt = ITEM_PROMPT.format(
                choices=", ".join(ITEM_CATEGORIES),
                name=item["name"],
                amount=item["amount"],
            )
            async with semaphore:
                try:
                    reply = await self._ask(prompt, json_mode=False, max_tokens=10)
                except TallyError as e:
                    logger.info(
                        "Item category lookup failed for %r: %s", item["name"], e
                    )
                    return "other"
            return _normalise_category(reply)

        return list(await asyncio.gather(*(classify(item) for item in items)))

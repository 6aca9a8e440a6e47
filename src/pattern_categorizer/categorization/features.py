"""Per-transaction features computed once before matching."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pattern_categorizer.categorization.normalizer import normalize, normalize_merchant
from pattern_categorizer.categorization.similarity import trigrams

DAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Upper bounds (exclusive) of the amount buckets used for preference contexts.
AMOUNT_BUCKETS: tuple[tuple[float, str], ...] = (
    (10.0, "0-10"),
    (50.0, "10-50"),
    (100.0, "50-100"),
    (500.0, "100-500"),
)


def time_of_day(moment: datetime) -> str:
    hour = moment.hour
    if 6 <= hour <= 11:
        return "morning"
    if 12 <= hour <= 16:
        return "afternoon"
    if 17 <= hour <= 20:
        return "evening"
    return "night"


def day_name(moment: datetime) -> str:
    return DAY_NAMES[moment.weekday()]


def amount_bucket(amount: float) -> str:
    magnitude = abs(amount)
    for upper, label in AMOUNT_BUCKETS:
        if magnitude < upper:
            return label
    return "500+"


@dataclass(frozen=True)
class TransactionFeatures:
    """Normalized view of a transaction shared by every rule evaluation."""

    transaction_id: int | None
    merchant: str
    merchant_key: str
    description: str
    merchant_grams: frozenset[str]
    description_grams: frozenset[str]
    amount: float | None
    timestamp: datetime | None

    @classmethod
    def from_transaction(cls, transaction: Any) -> "TransactionFeatures":
        if isinstance(transaction, cls):
            return transaction

        raw_merchant = getattr(transaction, "merchant_normalized", None) or getattr(
            transaction, "merchant", None
        )
        merchant = normalize(raw_merchant)
        description = normalize(getattr(transaction, "description", None))
        amount = getattr(transaction, "amount", None)

        return cls(
            transaction_id=getattr(transaction, "id", None),
            merchant=merchant,
            merchant_key=normalize_merchant(raw_merchant),
            description=description,
            merchant_grams=trigrams(merchant),
            description_grams=trigrams(description),
            amount=float(amount) if amount is not None else None,
            timestamp=getattr(transaction, "timestamp", None),
        )

    def context_values(self) -> dict[str, str]:
        """Context keys used to look up category preferences."""
        values: dict[str, str] = {}
        if self.merchant_key:
            values["merchant"] = self.merchant_key
        if self.timestamp is not None:
            values["time_of_day"] = time_of_day(self.timestamp)
            values["day_of_week"] = day_name(self.timestamp)
        if self.amount is not None:
            values["amount_range"] = amount_bucket(self.amount)
        return values

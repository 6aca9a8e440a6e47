"""Aggregate rule matches into an ordered list of category suggestions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pattern_categorizer.categorization.composite import evaluate
from pattern_categorizer.categorization.features import TransactionFeatures
from pattern_categorizer.categorization.matcher import MatchOptions, MatchResult, match
from pattern_categorizer.categorization.snapshot import PatternSnapshot
from pattern_categorizer.categorization.types import ContextType, PatternRef
from pattern_categorizer.core.config import Settings, get_settings
from pattern_categorizer.schemas.categorization import (
    CategorizationResult,
    CategorizationStatus,
    Suggestion,
)

logger = logging.getLogger(__name__)

CONFIDENCE_DECIMALS = 4


@dataclass
class _CategoryScore:
    category_id: int
    raw_total: float = 0.0
    preference_boost: float = 0.0
    refs: list[PatternRef] = field(default_factory=list)
    success_rates: list[float] = field(default_factory=list)
    last_used_at: datetime | None = None
    reasons: list[str] = field(default_factory=list)

    def add(self, ref: PatternRef, local_confidence: float, success_rate: float, reason: str,
            last_used_at: datetime | None = None) -> None:
        self.raw_total += local_confidence
        self.refs.append(ref)
        self.success_rates.append(success_rate)
        self.reasons.append(reason)
        if last_used_at is not None and (self.last_used_at is None or last_used_at > self.last_used_at):
            self.last_used_at = last_used_at

    @property
    def mean_success_rate(self) -> float:
        if not self.success_rates:
            return 0.0
        return sum(self.success_rates) / len(self.success_rates)


def _last_used_key(moment: datetime | None) -> float:
    # Naive and aware datetimes must never be compared directly.
    return moment.timestamp() if moment is not None else float("-inf")


def missing_input(transaction: Any) -> str | None:
    """Diagnostic for a transaction that cannot be categorized, else None."""
    missing = [name for name in ("amount", "timestamp") if getattr(transaction, name, None) is None]
    if missing:
        return f"missing required field(s): {', '.join(missing)}"
    return None


def categorize(
    transaction: Any,
    snapshot: PatternSnapshot,
    top_n: int | None = None,
    settings: Settings | None = None,
) -> CategorizationResult:
    """Rank categories for one transaction using only ``snapshot``.

    Per category the local confidences of matching simple and composite
    rules are summed, divided by ``confidence_scale`` and capped at
    ``confidence_ceiling``. Matching preferences then add
    ``preference_boost * strength``; the result is clamped to 1.0.

    Ties are broken by the uncapped rule total, then the mean success rate of
    the contributing rules, then the most recent use, then category id, so
    the output depends only on the transaction and the snapshot.

    Never raises for bad input: a transaction without amount or timestamp
    yields an empty list with status ``invalid_input``.
    """
    settings = settings or get_settings()
    transaction_id = getattr(transaction, "id", None)
    if isinstance(transaction, TransactionFeatures):
        transaction_id = transaction.transaction_id

    diagnostic = missing_input(transaction)
    if diagnostic:
        return CategorizationResult(
            transaction_id=transaction_id,
            status=CategorizationStatus.INVALID_INPUT,
            diagnostic=diagnostic,
        )

    options = MatchOptions.from_settings(settings)
    features = TransactionFeatures.from_transaction(transaction)
    scores: dict[int, _CategoryScore] = {}

    def score_for(category_id: int) -> _CategoryScore:
        if category_id not in scores:
            scores[category_id] = _CategoryScore(category_id)
        return scores[category_id]

    rule_results: dict[int, MatchResult] = {}
    for rule in snapshot.rules:
        result = match(features, rule, options)
        rule_results[rule.id] = result
        if result.matched:
            score_for(rule.category_id).add(
                rule.ref, result.local_confidence, rule.success_rate, result.reason, rule.last_used_at
            )

    for composite in snapshot.composites:
        result = evaluate(features, composite, snapshot.rules_by_id, options, rule_results)
        if result.matched:
            score_for(composite.category_id).add(
                composite.ref, result.local_confidence, composite.success_rate, result.reason,
                composite.last_used_at,
            )

    context = features.context_values()
    for preference in snapshot.preferences:
        if context.get(preference.context_type.value) != preference.context_value:
            continue
        if preference.strength <= 0:
            continue
        entry = score_for(preference.category_id)
        entry.preference_boost += settings.preference_boost * preference.strength
        label = "merchant" if preference.context_type is ContextType.MERCHANT else preference.context_type.value
        entry.reasons.append(f"preference for {label} '{preference.context_value}'")

    ranked = []
    for entry in scores.values():
        base = min(entry.raw_total / settings.confidence_scale, settings.confidence_ceiling)
        confidence = round(min(1.0, base + entry.preference_boost), CONFIDENCE_DECIMALS)
        ranked.append((confidence, entry))

    ranked.sort(
        key=lambda item: (
            -item[0],
            -item[1].raw_total,
            -item[1].mean_success_rate,
            -_last_used_key(item[1].last_used_at),
            item[1].category_id,
        )
    )

    limit = settings.max_suggestions if top_n is None else top_n
    suggestions = [
        Suggestion(
            category_id=entry.category_id,
            category_name=snapshot.category_name(entry.category_id),
            confidence=confidence,
            contributing_patterns=[str(ref) for ref in entry.refs],
            reason="; ".join(entry.reasons),
        )
        for confidence, entry in ranked[: max(limit, 0)]
    ]

    logger.debug(
        "Transaction %s: %d candidate categories, %d returned",
        transaction_id, len(ranked), len(suggestions),
    )
    return CategorizationResult(
        transaction_id=transaction_id,
        suggestions=suggestions,
        status=CategorizationStatus.OK if ranked else CategorizationStatus.NO_MATCH,
    )

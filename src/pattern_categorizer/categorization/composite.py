"""Boolean combination of rules plus auxiliary conditions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pattern_categorizer.categorization.features import TransactionFeatures
from pattern_categorizer.categorization.matcher import (
    DEFAULT_OPTIONS,
    MatchOptions,
    MatchResult,
    in_window,
    match,
)
from pattern_categorizer.categorization.snapshot import (
    CompositeConditions,
    CompositeRule,
    PatternRule,
)
from pattern_categorizer.categorization.types import CompositeOperator, SimpleRef


@dataclass(frozen=True)
class CompositeResult:
    matched: bool
    local_confidence: float = 0.0
    matched_components: tuple[SimpleRef, ...] = ()
    reason: str = ""


NO_COMPOSITE_MATCH = CompositeResult(matched=False)


def conditions_hold(features: TransactionFeatures, conditions: CompositeConditions) -> bool:
    """Check the auxiliary constraints; a missing field fails any constraint on it."""
    if conditions.min_amount is not None or conditions.max_amount is not None:
        if features.amount is None:
            return False
        if conditions.min_amount is not None and features.amount < conditions.min_amount:
            return False
        if conditions.max_amount is not None and features.amount > conditions.max_amount:
            return False

    if conditions.days_of_week is not None:
        if features.timestamp is None or features.timestamp.weekday() not in conditions.days_of_week:
            return False

    if conditions.time_ranges:
        if features.timestamp is None:
            return False
        minute = features.timestamp.hour * 60 + features.timestamp.minute
        if not any(in_window(minute, start, end) for start, end in conditions.time_ranges):
            return False

    if conditions.merchant_blacklist and features.merchant in conditions.merchant_blacklist:
        return False

    return True


def evaluate(
    transaction: Any,
    composite: CompositeRule,
    rules_by_id: Mapping[int, PatternRule],
    options: MatchOptions = DEFAULT_OPTIONS,
    component_results: Mapping[int, MatchResult] | None = None,
) -> CompositeResult:
    """Evaluate a composite against a transaction.

    Args:
        transaction: TransactionFeatures or any transaction-like object
        composite: compiled composite rule
        rules_by_id: active simple rules of the snapshot; a component id
            missing here, or naming a malformed rule, makes the composite
            non-matching
        options: matcher thresholds
        component_results: simple-rule results already computed for this
            transaction, keyed by rule id

    Returns:
        CompositeResult; ``local_confidence`` is the composite weight times
        the weight-averaged local confidence of the matched components
        (times 1.0 for NOT)
    """
    if composite.error is not None or composite.operator is None:
        return NO_COMPOSITE_MATCH

    components = []
    for pattern_id in composite.component_ids:
        rule = rules_by_id.get(pattern_id)
        if rule is None or rule.error is not None:
            return NO_COMPOSITE_MATCH
        components.append(rule)

    features = TransactionFeatures.from_transaction(transaction)

    matched: list[tuple[PatternRule, MatchResult]] = []
    for rule in components:
        result = None
        if component_results is not None:
            result = component_results.get(rule.id)
        if result is None:
            result = match(features, rule, options)
        if result.timed_out:
            return NO_COMPOSITE_MATCH
        if result.matched:
            matched.append((rule, result))

    operator = composite.operator
    if operator is CompositeOperator.AND:
        combined = len(matched) == len(components)
    elif operator is CompositeOperator.OR:
        combined = bool(matched)
    else:
        combined = not matched

    if not combined or not conditions_hold(features, composite.conditions):
        return NO_COMPOSITE_MATCH

    if operator is CompositeOperator.NOT:
        return CompositeResult(
            matched=True,
            local_confidence=composite.confidence_weight,
            reason=f"composite '{composite.name}' (NOT)",
        )

    total_weight = sum(rule.confidence_weight for rule, _ in matched)
    average = sum(rule.confidence_weight * result.local_confidence for rule, result in matched) / total_weight

    return CompositeResult(
        matched=True,
        local_confidence=composite.confidence_weight * average,
        matched_components=tuple(rule.ref for rule, _ in matched),
        reason=f"composite '{composite.name}' ({operator.value})",
    )

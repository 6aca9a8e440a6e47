"""Evaluate one compiled rule against one transaction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pattern_categorizer.categorization.features import TransactionFeatures, time_of_day
from pattern_categorizer.categorization.similarity import (
    DEFAULT_ALGORITHMS,
    SimilarityAlgorithm,
    exact_similarity,
    ngram_overlap,
    similarity,
)
from pattern_categorizer.categorization.snapshot import PatternRule
from pattern_categorizer.categorization.types import PatternType
from pattern_categorizer.categorization.validation import TimeSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchOptions:
    """Thresholds and limits applied by the matcher."""

    merchant_threshold: float = 0.82
    keyword_threshold: float = 1.0
    description_threshold: float = 0.82
    regex_timeout_ms: float = 5.0

    @classmethod
    def from_settings(cls, settings: Any) -> "MatchOptions":
        return cls(
            merchant_threshold=settings.merchant_similarity_threshold,
            description_threshold=settings.description_similarity_threshold,
            regex_timeout_ms=settings.regex_timeout_ms,
        )

    def threshold_for(self, pattern_type: PatternType) -> float:
        if pattern_type is PatternType.MERCHANT:
            return self.merchant_threshold
        if pattern_type is PatternType.KEYWORD:
            return self.keyword_threshold
        return self.description_threshold


DEFAULT_OPTIONS = MatchOptions()


@dataclass(frozen=True)
class MatchResult:
    matched: bool
    local_confidence: float = 0.0
    reason: str = ""
    # The rule could not be evaluated, so the non-match says nothing.
    timed_out: bool = False


NO_MATCH = MatchResult(matched=False)


def _text_score(text: str, grams: frozenset[str], rule: PatternRule) -> float:
    best = 0.0
    for algorithm in DEFAULT_ALGORITHMS[rule.pattern_type]:
        if algorithm is SimilarityAlgorithm.NGRAM:
            # Trigrams are precomputed on both sides.
            score = ngram_overlap(grams, rule.value_grams)
        elif algorithm is SimilarityAlgorithm.EXACT:
            score = exact_similarity(text, rule.value)
        else:
            score = similarity(text, rule.value, algorithm)
        best = max(best, score)
        if best >= 1.0:
            break
    return best


def _match_text(features: TransactionFeatures, rule: PatternRule, options: MatchOptions) -> MatchResult:
    if rule.pattern_type is PatternType.MERCHANT:
        candidates = (
            (features.merchant, features.merchant_grams),
            (features.description, features.description_grams),
        )
    else:
        candidates = (
            (features.description, features.description_grams),
            (features.merchant, features.merchant_grams),
        )

    # First non-empty field is compared; the other is only a fallback.
    text, grams = next(((t, g) for t, g in candidates if t), ("", frozenset()))
    if not text:
        return NO_MATCH

    score = _text_score(text, grams, rule)
    if score < options.threshold_for(rule.pattern_type):
        return NO_MATCH

    return MatchResult(
        matched=True,
        local_confidence=score * rule.confidence_weight,
        reason=f"{rule.pattern_type.value} '{rule.value}' ~ '{text}' ({score:.2f})",
    )


def _match_amount(features: TransactionFeatures, rule: PatternRule) -> MatchResult:
    if features.amount is None or rule.amount_bounds is None:
        return NO_MATCH
    low, high = rule.amount_bounds
    if not low <= features.amount <= high:
        return NO_MATCH
    return MatchResult(
        matched=True,
        local_confidence=rule.confidence_weight,
        reason=f"amount {features.amount:.2f} in [{low:g}, {high:g}]",
    )


def _match_regex(features: TransactionFeatures, rule: PatternRule, options: MatchOptions) -> MatchResult:
    text = features.description or features.merchant
    if not text or rule.compiled_regex is None:
        return NO_MATCH
    try:
        found = rule.compiled_regex.search(text, timeout=options.regex_timeout_ms / 1000.0)
    except TimeoutError:
        logger.warning("Regex %s timed out on transaction %s", rule.ref, features.transaction_id)
        return MatchResult(matched=False, reason="regex timed out", timed_out=True)
    if not found:
        return NO_MATCH
    return MatchResult(
        matched=True,
        local_confidence=rule.confidence_weight,
        reason=f"regex /{rule.raw_value}/ matched '{found.group(0)}'",
    )


def time_matches(spec: TimeSpec, moment) -> bool:
    """Whether ``moment`` falls into a named bucket or clock window."""
    if spec.bucket == "weekend":
        return moment.weekday() >= 5
    if spec.bucket == "weekday":
        return moment.weekday() < 5
    if spec.bucket is not None:
        return time_of_day(moment) == spec.bucket
    return in_window(moment.hour * 60 + moment.minute, spec.start_minute, spec.end_minute)


def in_window(minute: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= minute <= end
    # Window wraps past midnight, e.g. 22:00-02:00.
    return minute >= start or minute <= end


def _match_time(features: TransactionFeatures, rule: PatternRule) -> MatchResult:
    if features.timestamp is None or rule.time_spec is None:
        return NO_MATCH
    if not time_matches(rule.time_spec, features.timestamp):
        return NO_MATCH
    return MatchResult(
        matched=True,
        local_confidence=rule.confidence_weight,
        reason=f"time '{rule.raw_value}'",
    )


def match(transaction: Any, rule: PatternRule, options: MatchOptions = DEFAULT_OPTIONS) -> MatchResult:
    """Evaluate ``rule`` against ``transaction``.

    Never raises: malformed rules and regex timeouts come back as
    non-matches.

    Args:
        transaction: TransactionFeatures, or any object accepted by
            ``TransactionFeatures.from_transaction``
        rule: compiled rule from a PatternSnapshot
        options: thresholds and regex deadline

    Returns:
        MatchResult with ``local_confidence`` > 0 only when matched
    """
    if rule.error is not None or rule.pattern_type is None:
        return NO_MATCH

    features = TransactionFeatures.from_transaction(transaction)

    match rule.pattern_type:
        case PatternType.MERCHANT | PatternType.KEYWORD | PatternType.DESCRIPTION:
            return _match_text(features, rule, options)
        case PatternType.AMOUNT_RANGE:
            return _match_amount(features, rule)
        case PatternType.REGEX:
            return _match_regex(features, rule, options)
        case PatternType.TIME:
            return _match_time(features, rule)
        case _:
            raise AssertionError(f"Unhandled pattern type: {rule.pattern_type!r}")

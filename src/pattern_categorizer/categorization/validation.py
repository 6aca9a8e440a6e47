"""Parsing and validation of pattern values.

The same parsers serve two callers: the repositories reject bad values at
creation time (raising PatternValidationError), and snapshot compilation
turns any bad value that slipped into the store into a non-matching rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import regex

from pattern_categorizer.categorization.features import DAY_NAMES
from pattern_categorizer.categorization.types import CompositeOperator, PatternType
from pattern_categorizer.core.exceptions import PatternValidationError

MAX_REGEX_LENGTH = 500

TIME_BUCKETS = frozenset({"morning", "afternoon", "evening", "night", "weekend", "weekday"})

_AMOUNT_RANGE = re.compile(r"^\s*(-?\d+(?:\.\d{1,2})?)\s*-\s*(-?\d+(?:\.\d{1,2})?)\s*$")
_CLOCK = re.compile(r"^(\d{1,2}):(\d{2})$")

# Shapes prone to catastrophic backtracking: a quantified group whose body
# is itself quantified, e.g. (a+)+, (a*)*, (\w+\s?)*, ([a-z]+)*.
_NESTED_QUANTIFIERS = (
    re.compile(r"\((?:[^()\\]|\\.)*(?:[+*]|\{\d*,\d*\})(?:[^()\\]|\\.)*\)\s*(?:[+*]|\{\d*,\d*\})"),
    re.compile(r"(?:\.\*){2,}"),
)

VALID_CONDITION_KEYS = frozenset(
    {"min_amount", "max_amount", "days_of_week", "time_ranges", "merchant_blacklist"}
)


@dataclass(frozen=True)
class TimeSpec:
    """A named time bucket or an HH:MM-HH:MM window (may cross midnight)."""

    bucket: str | None = None
    start_minute: int | None = None
    end_minute: int | None = None


def parse_amount_range(value: str) -> tuple[float, float]:
    """Parse ``"min-max"`` (negatives allowed, e.g. ``"-100--50"``)."""
    match = _AMOUNT_RANGE.match(value or "")
    if not match:
        raise PatternValidationError(
            details={"pattern_value": value, "reason": "amount range must look like 'min-max'"}
        )
    low, high = float(match.group(1)), float(match.group(2))
    if low > high:
        raise PatternValidationError(
            details={"pattern_value": value, "reason": "minimum must not exceed maximum"}
        )
    return low, high


def parse_clock(value: str) -> int:
    """Minutes since midnight for ``HH:MM``."""
    match = _CLOCK.match((value or "").strip())
    if not match:
        raise PatternValidationError(details={"time": value, "reason": "expected HH:MM"})
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise PatternValidationError(details={"time": value, "reason": "time out of range"})
    return hour * 60 + minute


def parse_time_spec(value: str) -> TimeSpec:
    normalized = (value or "").strip().lower()
    if normalized in TIME_BUCKETS:
        return TimeSpec(bucket=normalized)

    start, sep, end = normalized.partition("-")
    if not sep:
        raise PatternValidationError(
            details={"pattern_value": value, "reason": "unknown time bucket"}
        )
    return TimeSpec(start_minute=parse_clock(start), end_minute=parse_clock(end))


def check_regex_safety(value: str) -> None:
    """Reject expressions that are too long or have nested quantifiers."""
    if not value:
        raise PatternValidationError(details={"reason": "regular expression is empty"})
    if len(value) > MAX_REGEX_LENGTH:
        raise PatternValidationError(
            error_code="PATTERN_002",
            details={"reason": f"regular expression longer than {MAX_REGEX_LENGTH} characters"},
        )
    for shape in _NESTED_QUANTIFIERS:
        if shape.search(value):
            raise PatternValidationError(
                error_code="PATTERN_002",
                details={"pattern_value": value, "reason": "nested quantifiers"},
            )


def parse_pattern_type(value: str) -> PatternType:
    try:
        return PatternType(value)
    except ValueError as exc:
        raise PatternValidationError(
            details={"pattern_type": value, "reason": "unknown pattern type"}
        ) from exc


def validate_pattern_value(pattern_type: str | PatternType, value: str) -> None:
    """Validate a pattern definition before it is stored.

    Raises:
        PatternValidationError: if the value cannot ever match correctly
    """
    kind = parse_pattern_type(pattern_type)
    if not value or not value.strip():
        raise PatternValidationError(details={"reason": "pattern value is empty"})

    if kind is PatternType.AMOUNT_RANGE:
        parse_amount_range(value)
    elif kind is PatternType.TIME:
        parse_time_spec(value)
    elif kind is PatternType.REGEX:
        check_regex_safety(value)
        try:
            regex.compile(value)
        except regex.error as exc:
            raise PatternValidationError(
                details={"pattern_value": value, "reason": str(exc)}
            ) from exc


def validate_confidence_weight(weight: float, low: float, high: float) -> None:
    if not low <= weight <= high:
        raise PatternValidationError(
            details={"confidence_weight": weight, "reason": f"must be within [{low}, {high}]"}
        )


def parse_operator(value: str) -> CompositeOperator:
    try:
        return CompositeOperator((value or "").upper())
    except ValueError as exc:
        raise PatternValidationError(
            details={"operator": value, "reason": "operator must be AND, OR or NOT"}
        ) from exc


def validate_conditions(conditions: dict[str, Any] | None) -> None:
    """Validate composite auxiliary conditions."""
    if not conditions:
        return

    invalid_keys = sorted(set(conditions) - VALID_CONDITION_KEYS)
    if invalid_keys:
        raise PatternValidationError(details={"invalid_keys": invalid_keys})

    min_amount = conditions.get("min_amount")
    max_amount = conditions.get("max_amount")
    for key, amount in (("min_amount", min_amount), ("max_amount", max_amount)):
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
            raise PatternValidationError(details={key: amount, "reason": "must be a number"})
    if min_amount is not None and max_amount is not None and min_amount > max_amount:
        raise PatternValidationError(details={"reason": "min_amount must not exceed max_amount"})

    days = conditions.get("days_of_week")
    if days is not None:
        if not isinstance(days, list) or not all(
            isinstance(day, str) and day.lower() in DAY_NAMES for day in days
        ):
            raise PatternValidationError(
                details={"days_of_week": days, "reason": "must be a list of day names"}
            )

    ranges = conditions.get("time_ranges")
    if ranges is not None:
        if not isinstance(ranges, list):
            raise PatternValidationError(details={"reason": "time_ranges must be a list"})
        for window in ranges:
            if not isinstance(window, dict) or "start" not in window or "end" not in window:
                raise PatternValidationError(
                    details={"time_range": window, "reason": "needs 'start' and 'end'"}
                )
            parse_clock(window["start"])
            parse_clock(window["end"])

    blacklist = conditions.get("merchant_blacklist")
    if blacklist is not None and (
        not isinstance(blacklist, list) or not all(isinstance(name, str) for name in blacklist)
    ):
        raise PatternValidationError(
            details={"merchant_blacklist": blacklist, "reason": "must be a list of names"}
        )

"""Closed vocabularies shared by the store and the matching engine."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class PatternType(str, Enum):
    MERCHANT = "merchant"
    KEYWORD = "keyword"
    DESCRIPTION = "description"
    AMOUNT_RANGE = "amount_range"
    REGEX = "regex"
    TIME = "time"


TEXT_PATTERN_TYPES = frozenset({PatternType.MERCHANT, PatternType.KEYWORD, PatternType.DESCRIPTION})


class CompositeOperator(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class FeedbackType(str, Enum):
    CORRECTION = "correction"
    CONFIRMATION = "confirmation"
    REJECTION = "rejection"


class ContextType(str, Enum):
    MERCHANT = "merchant"
    TIME_OF_DAY = "time_of_day"
    DAY_OF_WEEK = "day_of_week"
    AMOUNT_RANGE = "amount_range"


@dataclass(frozen=True, order=True)
class SimpleRef:
    """Reference to a row in categorization_patterns."""

    id: int

    def __str__(self) -> str:
        return f"pattern:{self.id}"


@dataclass(frozen=True, order=True)
class CompositeRef:
    """Reference to a row in composite_patterns."""

    id: int

    def __str__(self) -> str:
        return f"composite:{self.id}"


PatternRef = Union[SimpleRef, CompositeRef]


def ref_sort_key(ref: PatternRef) -> tuple[int, int]:
    """Total order over mixed references: simple patterns first, then by id."""
    return (0 if isinstance(ref, SimpleRef) else 1, ref.id)


def parse_pattern_ref(value: str | PatternRef | None) -> PatternRef | None:
    """Parse the ``pattern:<id>`` / ``composite:<id>`` wire form.

    Only used at the boundary; everything inside the engine passes
    SimpleRef/CompositeRef values around.
    """
    if value is None or isinstance(value, (SimpleRef, CompositeRef)):
        return value

    kind, sep, raw_id = str(value).partition(":")
    if not sep or not raw_id.isdigit():
        raise ValueError(f"Malformed pattern reference: {value!r}")

    if kind == "pattern":
        return SimpleRef(int(raw_id))
    if kind == "composite":
        return CompositeRef(int(raw_id))
    raise ValueError(f"Unknown pattern reference kind: {kind!r}")

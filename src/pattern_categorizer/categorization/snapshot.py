"""Immutable in-memory view of the pattern store.

A snapshot is built once per batch and passed explicitly to the matching
engine, so the hot path never touches the database. Everything in it is
frozen; staleness is checked by the caller through ``is_stale``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Iterable, Mapping

import regex

from pattern_categorizer.categorization.normalizer import normalize, normalize_merchant
from pattern_categorizer.categorization.similarity import trigrams
from pattern_categorizer.categorization.types import (
    TEXT_PATTERN_TYPES,
    CompositeOperator,
    CompositeRef,
    ContextType,
    PatternType,
    SimpleRef,
)
from pattern_categorizer.categorization.validation import (
    TimeSpec,
    check_regex_safety,
    parse_amount_range,
    parse_clock,
    parse_operator,
    parse_pattern_type,
    parse_time_spec,
    validate_conditions,
)
from pattern_categorizer.categorization.features import DAY_NAMES
from pattern_categorizer.core.exceptions import PatternValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    """Compiled, read-only form of a stored Pattern."""

    ref: SimpleRef
    category_id: int
    pattern_type: PatternType | None
    raw_value: str
    value: str = ""
    value_grams: frozenset[str] = frozenset()
    confidence_weight: float = 1.0
    success_rate: float = 0.0
    usage_count: int = 0
    last_used_at: datetime | None = None
    amount_bounds: tuple[float, float] | None = None
    compiled_regex: Any = None
    time_spec: TimeSpec | None = None
    # Set when the stored definition is malformed; such a rule never matches.
    error: str | None = None

    @property
    def id(self) -> int:
        return self.ref.id


@dataclass(frozen=True)
class CompositeConditions:
    min_amount: float | None = None
    max_amount: float | None = None
    days_of_week: frozenset[int] | None = None
    time_ranges: tuple[tuple[int, int], ...] = ()
    merchant_blacklist: frozenset[str] = frozenset()


@dataclass(frozen=True)
class CompositeRule:
    """Compiled, read-only form of a stored CompositePattern."""

    ref: CompositeRef
    category_id: int
    name: str
    operator: CompositeOperator | None
    component_ids: tuple[int, ...]
    conditions: CompositeConditions = field(default_factory=CompositeConditions)
    confidence_weight: float = 1.5
    success_rate: float = 0.0
    usage_count: int = 0
    last_used_at: datetime | None = None
    error: str | None = None

    @property
    def id(self) -> int:
        return self.ref.id


@dataclass(frozen=True)
class PreferenceRule:
    context_type: ContextType
    context_value: str
    category_id: int
    strength: float


@dataclass(frozen=True)
class PatternSnapshot:
    """Everything the engine needs to categorize a batch of transactions."""

    rules: tuple[PatternRule, ...]
    composites: tuple[CompositeRule, ...]
    preferences: tuple[PreferenceRule, ...]
    category_names: Mapping[int, str]
    rules_by_id: Mapping[int, PatternRule]
    loaded_at: datetime

    @classmethod
    def build(
        cls,
        patterns: Iterable[Any] = (),
        composites: Iterable[Any] = (),
        preferences: Iterable[Any] = (),
        categories: Mapping[int, str] | Iterable[Any] = (),
        loaded_at: datetime | None = None,
    ) -> "PatternSnapshot":
        """Compile store rows (or any objects with the same attributes).

        Inactive rows are left out. Malformed rows are kept as non-matching
        rules and logged once here rather than on every transaction.
        """
        rules = tuple(
            sorted(
                (compile_pattern(p) for p in patterns if getattr(p, "active", True)),
                key=lambda rule: rule.id,
            )
        )
        composite_rules = tuple(
            sorted(
                (compile_composite(c) for c in composites if getattr(c, "active", True)),
                key=lambda rule: rule.id,
            )
        )
        preference_rules = tuple(
            sorted(
                (rule for rule in (compile_preference(p) for p in preferences) if rule),
                key=lambda rule: (rule.context_type.value, rule.context_value, rule.category_id),
            )
        )

        if isinstance(categories, Mapping):
            names = dict(categories)
        else:
            names = {category.id: category.name for category in categories}

        malformed = [rule for rule in (*rules, *composite_rules) if rule.error]
        for rule in malformed:
            logger.warning("Skipping malformed %s: %s", rule.ref, rule.error)

        return cls(
            rules=rules,
            composites=composite_rules,
            preferences=preference_rules,
            category_names=MappingProxyType(names),
            rules_by_id=MappingProxyType({rule.id: rule for rule in rules}),
            loaded_at=loaded_at or datetime.now(timezone.utc),
        )

    @classmethod
    def empty(cls) -> "PatternSnapshot":
        return cls.build()

    def is_stale(self, max_age_seconds: float, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return (now - self.loaded_at).total_seconds() > max_age_seconds

    def category_name(self, category_id: int) -> str | None:
        return self.category_names.get(category_id)


def compile_pattern(pattern: Any) -> PatternRule:
    """Compile one stored pattern into a PatternRule. Never raises."""
    base = dict(
        ref=SimpleRef(pattern.id),
        category_id=pattern.category_id,
        raw_value=pattern.pattern_value or "",
        confidence_weight=float(pattern.confidence_weight),
        success_rate=float(pattern.success_rate or 0.0),
        usage_count=int(pattern.usage_count or 0),
        last_used_at=getattr(pattern, "last_used_at", None),
    )

    try:
        kind = parse_pattern_type(pattern.pattern_type)
    except PatternValidationError as exc:
        return PatternRule(pattern_type=None, error=str(exc), **base)

    try:
        if kind in TEXT_PATTERN_TYPES:
            value = normalize(pattern.pattern_value)
            if not value:
                raise PatternValidationError(details={"reason": "value normalizes to empty"})
            return PatternRule(pattern_type=kind, value=value, value_grams=trigrams(value), **base)

        match kind:
            case PatternType.AMOUNT_RANGE:
                bounds = parse_amount_range(pattern.pattern_value)
                return PatternRule(pattern_type=kind, amount_bounds=bounds, **base)
            case PatternType.REGEX:
                check_regex_safety(pattern.pattern_value)
                try:
                    compiled = regex.compile(pattern.pattern_value, regex.IGNORECASE)
                except regex.error as exc:
                    raise PatternValidationError(details={"reason": str(exc)}) from exc
                return PatternRule(pattern_type=kind, compiled_regex=compiled, **base)
            case PatternType.TIME:
                spec = parse_time_spec(pattern.pattern_value)
                return PatternRule(pattern_type=kind, time_spec=spec, **base)
            case _:
                raise PatternValidationError(details={"reason": f"unhandled type {kind}"})
    except PatternValidationError as exc:
        return PatternRule(pattern_type=kind, error=str(exc), **base)


def _compile_conditions(raw: dict[str, Any] | None) -> CompositeConditions:
    if not raw:
        return CompositeConditions()

    days = raw.get("days_of_week")
    return CompositeConditions(
        min_amount=float(raw["min_amount"]) if raw.get("min_amount") is not None else None,
        max_amount=float(raw["max_amount"]) if raw.get("max_amount") is not None else None,
        days_of_week=(
            frozenset(DAY_NAMES.index(day.lower()) for day in days) if days is not None else None
        ),
        time_ranges=tuple(
            (parse_clock(window["start"]), parse_clock(window["end"]))
            for window in raw.get("time_ranges") or ()
        ),
        merchant_blacklist=frozenset(
            normalize(name) for name in raw.get("merchant_blacklist") or ()
        ),
    )


def _component_ids(raw: Any) -> tuple[int, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise ValueError(f"pattern_ids must be a list, got {type(raw).__name__}")
    ids = []
    for pid in raw:
        # bool is an int subclass; reject it along with refs like "pattern:1".
        if isinstance(pid, bool) or not isinstance(pid, int):
            raise ValueError(f"invalid component id {pid!r}")
        ids.append(pid)
    return tuple(ids)


def compile_composite(composite: Any) -> CompositeRule:
    """Compile one stored composite into a CompositeRule. Never raises."""
    base = dict(
        ref=CompositeRef(composite.id),
        category_id=composite.category_id,
        name=composite.name,
        component_ids=(),
        last_used_at=getattr(composite, "last_used_at", None),
    )

    try:
        base.update(
            component_ids=_component_ids(composite.pattern_ids),
            confidence_weight=float(composite.confidence_weight),
            success_rate=float(composite.success_rate or 0.0),
            usage_count=int(composite.usage_count or 0),
        )
        operator = parse_operator(composite.operator)
        validate_conditions(composite.conditions)
        conditions = _compile_conditions(composite.conditions)
    except (PatternValidationError, ValueError, TypeError) as exc:
        return CompositeRule(operator=None, error=str(exc), **base)

    if not base["component_ids"]:
        return CompositeRule(
            operator=operator, conditions=conditions, error="no component patterns", **base
        )

    return CompositeRule(operator=operator, conditions=conditions, **base)


def compile_preference(preference: Any) -> PreferenceRule | None:
    try:
        context_type = ContextType(preference.context_type)
    except ValueError:
        logger.warning("Ignoring preference with unknown context type %r", preference.context_type)
        return None

    value = preference.context_value or ""
    if context_type is ContextType.MERCHANT:
        value = normalize_merchant(value)

    return PreferenceRule(
        context_type=context_type,
        context_value=value.lower() if context_type is not ContextType.MERCHANT else value,
        category_id=preference.category_id,
        strength=min(1.0, max(0.0, float(preference.strength))),
    )

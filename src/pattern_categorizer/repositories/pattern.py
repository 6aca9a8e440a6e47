"""Pattern repository: creation with validation and atomic statistics updates."""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Float, and_, case, cast, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.types import PatternType
from pattern_categorizer.categorization.validation import (
    parse_pattern_type,
    validate_confidence_weight,
    validate_pattern_value,
)
from pattern_categorizer.core.exceptions import PatternValidationError
from pattern_categorizer.models.base import utcnow
from pattern_categorizer.models.pattern import (
    DEFAULT_CONFIDENCE_WEIGHT,
    MAX_CONFIDENCE_WEIGHT,
    MIN_CONFIDENCE_WEIGHT,
    Pattern,
)
from pattern_categorizer.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def counter_update_values(
    model,
    usage: int,
    success: int,
    weight_delta: float = 0.0,
    used_at: datetime | None = None,
) -> dict[Any, Any]:
    """SET clause for an atomic statistics update on ``model``.

    Every expression reads the row's current values inside the UPDATE
    itself, so concurrent feedback never loses an increment.
    """
    if usage < 0 or success < 0 or success > usage:
        raise ValueError(f"Invalid counter delta: usage={usage}, success={success}")

    values: dict[Any, Any] = {}
    if usage:
        values[model.usage_count] = model.usage_count + usage
        values[model.success_count] = model.success_count + success
        values[model.success_rate] = cast(model.success_count + success, Float) / (
            model.usage_count + usage
        )
        if used_at is not None and hasattr(model, "last_used_at"):
            values[model.last_used_at] = used_at

    if weight_delta:
        weight = model.confidence_weight + weight_delta
        values[model.confidence_weight] = case(
            (weight > MAX_CONFIDENCE_WEIGHT, MAX_CONFIDENCE_WEIGHT),
            (weight < MIN_CONFIDENCE_WEIGHT, MIN_CONFIDENCE_WEIGHT),
            else_=weight,
        )

    if values:
        values[model.updated_at] = utcnow()
    return values


def poor_performance_clause(model, min_sample_size: int, success_rate_floor: float):
    return and_(
        model.active.is_(True),
        model.usage_count - model.usage_baseline >= min_sample_size,
        model.success_rate < success_rate_floor,
    )


class PatternRepository(BaseRepository[Pattern]):
    """Repository for categorization patterns.

    Counter and activation updates are single UPDATE statements and do not
    commit; the calling service owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(db, Pattern)

    async def get_by_definition(
        self, category_id: int, pattern_type: str | PatternType, pattern_value: str
    ) -> Pattern | None:
        """Find a pattern by its unique (category, type, value) triple."""
        result = await self.db.execute(
            select(Pattern).where(
                Pattern.category_id == category_id,
                Pattern.pattern_type == parse_pattern_type(pattern_type).value,
                Pattern.pattern_value == pattern_value,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_pattern(
        self,
        category_id: int,
        pattern_type: str | PatternType,
        pattern_value: str,
        confidence_weight: float = DEFAULT_CONFIDENCE_WEIGHT,
        user_created: bool = False,
        metadata: dict[str, Any] | None = None,
        commit: bool = True,
    ) -> Pattern:
        """Validate and store a new pattern.

        Args:
            category_id: Category the pattern votes for
            pattern_type: One of the PatternType values
            pattern_value: Raw value; text values are normalized when compiled
            confidence_weight: Trust multiplier within [0.1, 5.0]
            user_created: True for patterns learned from feedback
            metadata: Free-form metadata
            commit: Commit immediately, otherwise only flush

        Returns:
            The stored pattern

        Raises:
            PatternValidationError: If the value can never match correctly,
                the weight is out of range, or the pattern already exists
        """
        kind = parse_pattern_type(pattern_type)
        pattern_value = (pattern_value or "").strip()
        validate_pattern_value(kind, pattern_value)
        validate_confidence_weight(confidence_weight, MIN_CONFIDENCE_WEIGHT, MAX_CONFIDENCE_WEIGHT)

        if await self.get_by_definition(category_id, kind, pattern_value):
            raise PatternValidationError(
                details={
                    "category_id": category_id,
                    "pattern_type": kind.value,
                    "pattern_value": pattern_value,
                    "reason": "pattern already exists",
                }
            )

        pattern = Pattern(
            category_id=category_id,
            pattern_type=kind.value,
            pattern_value=pattern_value,
            confidence_weight=confidence_weight,
            user_created=user_created,
            pattern_metadata=metadata or {},
        )
        if not commit:
            self.db.add(pattern)
            await self.db.flush()
            return pattern
        return await self.create(pattern)

    async def list_active(self) -> list[Pattern]:
        """All active patterns ordered by id."""
        result = await self.db.execute(
            select(Pattern)
            .where(Pattern.active.is_(True))
            .order_by(Pattern.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_by_category(self, category_id: int, include_inactive: bool = False) -> list[Pattern]:
        query = select(Pattern).where(Pattern.category_id == category_id)
        if not include_inactive:
            query = query.where(Pattern.active.is_(True))
        result = await self.db.execute(
            query.order_by(Pattern.id).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_by_type_and_value(
        self, pattern_type: str | PatternType, pattern_value: str
    ) -> list[Pattern]:
        """Patterns of one type with one exact stored value, across categories."""
        result = await self.db.execute(
            select(Pattern)
            .where(
                Pattern.pattern_type == parse_pattern_type(pattern_type).value,
                Pattern.pattern_value == pattern_value,
            )
            .order_by(Pattern.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def increment_counters(
        self,
        pattern_ids: list[int],
        usage: int = 1,
        success: int = 0,
        weight_delta: float = 0.0,
        used_at: datetime | None = None,
    ) -> int:
        """Atomically add to usage/success counters and nudge weights.

        ``success_rate`` is recomputed in the same statement. Returns the
        number of rows updated.
        """
        if not pattern_ids:
            return 0
        values = counter_update_values(Pattern, usage, success, weight_delta, used_at or utcnow())
        if not values:
            return 0
        result = await self.db.execute(
            update(Pattern)
            .where(Pattern.id.in_(pattern_ids))
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def deactivate_poor_performers(
        self,
        min_sample_size: int,
        success_rate_floor: float,
        pattern_ids: list[int] | None = None,
    ) -> list[int]:
        """Soft-disable patterns with enough samples and a low success rate.

        Only usage accumulated since the last manual reactivation counts.
        Running this repeatedly changes nothing further.

        Returns:
            IDs of the patterns deactivated by this call
        """
        clause = poor_performance_clause(Pattern, min_sample_size, success_rate_floor)
        query = select(Pattern.id).where(clause)
        if pattern_ids is not None:
            if not pattern_ids:
                return []
            query = query.where(Pattern.id.in_(pattern_ids))

        result = await self.db.execute(query.order_by(Pattern.id))
        ids = list(result.scalars().all())
        if not ids:
            return []

        await self.db.execute(
            update(Pattern)
            .where(Pattern.id.in_(ids), clause)
            .values(active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info("Deactivated %d poorly performing pattern(s): %s", len(ids), ids)
        return ids

    async def set_active(self, pattern_id: int, active: bool) -> bool:
        """Activate or deactivate one pattern.

        Reactivation also moves ``usage_baseline`` to the current usage count
        so the pattern gets a fresh sample before it can be disabled again.
        """
        values: dict[Any, Any] = {Pattern.active: active, Pattern.updated_at: utcnow()}
        if active:
            values[Pattern.usage_baseline] = Pattern.usage_count
        result = await self.db.execute(
            update(Pattern)
            .where(Pattern.id == pattern_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def rewrite_value(self, pattern_id: int, pattern_value: str) -> None:
        await self.db.execute(
            update(Pattern)
            .where(Pattern.id == pattern_id)
            .values(pattern_value=pattern_value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

"""Composite pattern repository."""
import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.validation import (
    parse_operator,
    validate_conditions,
    validate_confidence_weight,
)
from pattern_categorizer.core.exceptions import PatternValidationError
from pattern_categorizer.models.base import utcnow
from pattern_categorizer.models.composite_pattern import DEFAULT_COMPOSITE_WEIGHT, CompositePattern
from pattern_categorizer.models.pattern import MAX_CONFIDENCE_WEIGHT, MIN_CONFIDENCE_WEIGHT, Pattern
from pattern_categorizer.repositories.base import BaseRepository
from pattern_categorizer.repositories.pattern import counter_update_values, poor_performance_clause

logger = logging.getLogger(__name__)


class CompositePatternRepository(BaseRepository[CompositePattern]):
    """Repository for composite patterns."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, CompositePattern)

    async def _check_components(self, category_id: int, pattern_ids: list[int]) -> None:
        if not pattern_ids:
            raise PatternValidationError(
                error_code="PATTERN_003", details={"reason": "at least one component is required"}
            )

        result = await self.db.execute(
            select(Pattern.id, Pattern.category_id).where(Pattern.id.in_(pattern_ids))
        )
        found = {row.id: row.category_id for row in result}

        missing = sorted(set(pattern_ids) - set(found))
        if missing:
            raise PatternValidationError(error_code="PATTERN_003", details={"missing_ids": missing})

        foreign = sorted(pid for pid, cid in found.items() if cid != category_id)
        if foreign:
            raise PatternValidationError(
                error_code="PATTERN_003",
                details={"pattern_ids": foreign, "reason": "components belong to another category"},
            )

    async def create_composite(
        self,
        category_id: int,
        name: str,
        operator: str,
        pattern_ids: list[int],
        conditions: dict[str, Any] | None = None,
        confidence_weight: float = DEFAULT_COMPOSITE_WEIGHT,
        user_created: bool = False,
    ) -> CompositePattern:
        """Validate and store a composite pattern.

        Raises:
            PatternValidationError: On an unknown operator, malformed
                conditions, or components that are missing or bound to a
                different category
        """
        op = parse_operator(operator)
        validate_conditions(conditions)
        validate_confidence_weight(confidence_weight, MIN_CONFIDENCE_WEIGHT, MAX_CONFIDENCE_WEIGHT)
        component_ids = [int(pid) for pid in pattern_ids]
        await self._check_components(category_id, component_ids)

        composite = CompositePattern(
            category_id=category_id,
            name=name,
            operator=op.value,
            pattern_ids=component_ids,
            conditions=conditions or {},
            confidence_weight=confidence_weight,
            user_created=user_created,
        )
        return await self.create(composite)

    async def add_component(self, composite_id: int, pattern_id: int) -> CompositePattern | None:
        composite = await self.get_by_id(composite_id)
        if not composite:
            return None
        if pattern_id in composite.pattern_ids:
            return composite
        await self._check_components(composite.category_id, [pattern_id])
        # JSON columns are not mutation-tracked; assign a new list.
        return await self.update(composite_id, {"pattern_ids": [*composite.pattern_ids, pattern_id]})

    async def remove_component(self, composite_id: int, pattern_id: int) -> CompositePattern | None:
        composite = await self.get_by_id(composite_id)
        if not composite:
            return None
        remaining = [pid for pid in composite.pattern_ids if pid != pattern_id]
        return await self.update(composite_id, {"pattern_ids": remaining})

    async def list_active(self) -> list[CompositePattern]:
        """All active composites ordered by id."""
        result = await self.db.execute(
            select(CompositePattern)
            .where(CompositePattern.active.is_(True))
            .order_by(CompositePattern.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def increment_counters(
        self,
        composite_ids: list[int],
        usage: int = 1,
        success: int = 0,
        weight_delta: float = 0.0,
        used_at: datetime | None = None,
    ) -> int:
        """Atomic counter update, same semantics as PatternRepository.increment_counters."""
        if not composite_ids:
            return 0
        values = counter_update_values(CompositePattern, usage, success, weight_delta, used_at or utcnow())
        if not values:
            return 0
        result = await self.db.execute(
            update(CompositePattern)
            .where(CompositePattern.id.in_(composite_ids))
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def deactivate_poor_performers(
        self,
        min_sample_size: int,
        success_rate_floor: float,
        composite_ids: list[int] | None = None,
    ) -> list[int]:
        clause = poor_performance_clause(CompositePattern, min_sample_size, success_rate_floor)
        query = select(CompositePattern.id).where(clause)
        if composite_ids is not None:
            if not composite_ids:
                return []
            query = query.where(CompositePattern.id.in_(composite_ids))

        result = await self.db.execute(query.order_by(CompositePattern.id))
        ids = list(result.scalars().all())
        if not ids:
            return []

        await self.db.execute(
            update(CompositePattern)
            .where(CompositePattern.id.in_(ids), clause)
            .values(active=False, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info("Deactivated %d poorly performing composite(s): %s", len(ids), ids)
        return ids

    async def set_active(self, composite_id: int, active: bool) -> bool:
        values: dict[Any, Any] = {CompositePattern.active: active, CompositePattern.updated_at: utcnow()}
        if active:
            values[CompositePattern.usage_baseline] = CompositePattern.usage_count
        result = await self.db.execute(
            update(CompositePattern)
            .where(CompositePattern.id == composite_id)
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

"""Feedback and learning-event repository."""
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.categorization.types import FeedbackType
from pattern_categorizer.models.feedback import PatternFeedback, PatternLearningEvent
from pattern_categorizer.repositories.base import BaseRepository


class FeedbackRepository(BaseRepository[PatternFeedback]):
    """Repository for PatternFeedback rows and the append-only learning log."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, PatternFeedback)

    async def add_feedback(
        self,
        transaction_id: int,
        category_id: int,
        feedback_type: FeedbackType,
        pattern_id: int | None = None,
        composite_pattern_id: int | None = None,
        confidence_score: float | None = None,
        merchant_key: str | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> PatternFeedback:
        """Stage a feedback row; the caller commits."""
        feedback = PatternFeedback(
            transaction_id=transaction_id,
            category_id=category_id,
            feedback_type=feedback_type.value,
            was_correct=feedback_type is FeedbackType.CONFIRMATION,
            pattern_id=pattern_id,
            composite_pattern_id=composite_pattern_id,
            confidence_score=confidence_score,
            merchant_key=merchant_key or None,
            context_data=context_data or {},
        )
        self.db.add(feedback)
        await self.db.flush()
        return feedback

    async def count_corrections(self, merchant_key: str, category_id: int) -> int:
        """How many times ``merchant_key`` was corrected to ``category_id``."""
        result = await self.db.execute(
            select(func.count(PatternFeedback.id)).where(
                PatternFeedback.merchant_key == merchant_key,
                PatternFeedback.category_id == category_id,
                PatternFeedback.feedback_type == FeedbackType.CORRECTION.value,
            )
        )
        return result.scalar_one()

    async def get_by_transaction(self, transaction_id: int) -> list[PatternFeedback]:
        result = await self.db.execute(
            select(PatternFeedback)
            .where(PatternFeedback.transaction_id == transaction_id)
            .order_by(PatternFeedback.id)
        )
        return list(result.scalars().all())

    async def add_learning_event(
        self,
        transaction_id: int,
        category_id: int | None,
        pattern_used: str | None,
        was_correct: bool,
        confidence_score: float | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> PatternLearningEvent:
        """Append one learning event and commit it on its own."""
        event = PatternLearningEvent(
            transaction_id=transaction_id,
            category_id=category_id,
            pattern_used=pattern_used,
            was_correct=was_correct,
            confidence_score=confidence_score,
            context_data=context_data or {},
        )
        self.db.add(event)
        await self.db.commit()
        return event

    async def get_learning_events(self, transaction_id: int) -> list[PatternLearningEvent]:
        result = await self.db.execute(
            select(PatternLearningEvent)
            .where(PatternLearningEvent.transaction_id == transaction_id)
            .order_by(PatternLearningEvent.id)
        )
        return list(result.scalars().all())

"""Feedback and learning-event records."""
from typing import Any

from sqlalchemy import JSON, Boolean, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pattern_categorizer.models.base import BaseModel


class PatternFeedback(BaseModel):
    """A user's confirm / correct / reject action on a categorization."""

    __tablename__ = "pattern_feedbacks"

    transaction_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    pattern_id: Mapped[int | None] = mapped_column(
        ForeignKey("categorization_patterns.id", ondelete="SET NULL"), nullable=True
    )
    composite_pattern_id: Mapped[int | None] = mapped_column(
        ForeignKey("composite_patterns.id", ondelete="SET NULL"), nullable=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    feedback_type: Mapped[str] = mapped_column(String(20), nullable=False)
    was_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    merchant_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    context_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_feedback_pattern_correct", "pattern_id", "was_correct"),
        Index("ix_feedback_merchant_category_type", "merchant_key", "category_id", "feedback_type"),
        Index("ix_feedback_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PatternFeedback(id={self.id}, transaction_id={self.transaction_id}, "
            f"type={self.feedback_type}, category_id={self.category_id})>"
        )


class PatternLearningEvent(BaseModel):
    """Append-only record of a categorization attempt and its outcome.

    Rows are written once and never updated; they exist for analytics only.
    """

    __tablename__ = "pattern_learning_events"

    transaction_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    pattern_used: Mapped[str | None] = mapped_column(String(1000), nullable=True, index=True)
    was_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, index=True)
    confidence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    context_data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)

    __table_args__ = (Index("ix_learning_events_created_at", "created_at"),)

    def __repr__(self) -> str:
        return (
            f"<PatternLearningEvent(id={self.id}, transaction_id={self.transaction_id}, "
            f"was_correct={self.was_correct})>"
        )

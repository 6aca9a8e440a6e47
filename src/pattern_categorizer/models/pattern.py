"""Categorization pattern model.

A pattern maps one transaction feature (merchant text, keyword, description,
amount range, regular expression, time bucket) to a category with a
confidence weight, and tracks its own observed accuracy.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pattern_categorizer.models.base import BaseModel

DEFAULT_CONFIDENCE_WEIGHT = 1.0
MIN_CONFIDENCE_WEIGHT = 0.1
MAX_CONFIDENCE_WEIGHT = 5.0


class Pattern(BaseModel):
    """Stored rule mapping a transaction feature to a category."""

    __tablename__ = "categorization_patterns"

    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    pattern_type: Mapped[str] = mapped_column(String(20), nullable=False)
    pattern_value: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence_weight: Mapped[float] = mapped_column(
        Float, default=DEFAULT_CONFIDENCE_WEIGHT, nullable=False
    )
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    # usage_count at the last manual reactivation; deactivation only looks at
    # usage accumulated since then.
    usage_baseline: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pattern_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "category_id", "pattern_type", "pattern_value", name="uq_pattern_category_type_value"
        ),
        CheckConstraint("success_count >= 0 AND success_count <= usage_count", name="ck_pattern_counts"),
        CheckConstraint("success_rate >= 0.0 AND success_rate <= 1.0", name="ck_pattern_success_rate"),
        Index("ix_patterns_type_value", "pattern_type", "pattern_value"),
        Index("ix_patterns_active_type", "active", "pattern_type"),
    )

    category: Mapped["Category"] = relationship("Category", back_populates="patterns")

    def __repr__(self) -> str:
        return (
            f"<Pattern(id={self.id}, type={self.pattern_type}, value={self.pattern_value!r}, "
            f"category_id={self.category_id}, active={self.active})>"
        )

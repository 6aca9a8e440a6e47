"""Composite pattern model.

Combines categorization patterns with AND / OR / NOT plus auxiliary
conditions, e.g. "uber OR lyft in the morning" or "restaurant AND weekend".
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pattern_categorizer.models.base import BaseModel

DEFAULT_COMPOSITE_WEIGHT = 1.5


class CompositePattern(BaseModel):
    """Boolean combination of patterns bound to one category."""

    __tablename__ = "composite_patterns"

    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    operator: Mapped[str] = mapped_column(String(3), nullable=False)
    # Ordered component pattern ids.
    pattern_ids: Mapped[list[int]] = mapped_column(JSON, default=list, nullable=False)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    confidence_weight: Mapped[float] = mapped_column(
        Float, default=DEFAULT_COMPOSITE_WEIGHT, nullable=False
    )
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success_rate: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    usage_baseline: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    user_created: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("category_id", "name", name="uq_composite_category_name"),
        Index("ix_composites_category_active", "category_id", "active"),
    )

    category: Mapped["Category"] = relationship("Category")

    def __repr__(self) -> str:
        return (
            f"<CompositePattern(id={self.id}, name={self.name!r}, operator={self.operator}, "
            f"pattern_ids={self.pattern_ids})>"
        )

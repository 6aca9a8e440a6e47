"""Learned category preferences keyed by transaction context."""
from sqlalchemy import Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pattern_categorizer.models.base import BaseModel


class UserCategoryPreference(BaseModel):
    """Preferred category for a context such as a merchant or a time of day.

    ``strength`` lives in [0, 1]; confirmations raise it, corrections lower it.
    """

    __tablename__ = "user_category_preferences"

    context_type: Mapped[str] = mapped_column(String(20), nullable=False)
    context_value: Mapped[str] = mapped_column(String(255), nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    strength: Mapped[float] = mapped_column(Float, default=0.5, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "context_type", "context_value", "category_id", name="uq_preference_context_category"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserCategoryPreference(context={self.context_type}:{self.context_value}, "
            f"category_id={self.category_id}, strength={self.strength})>"
        )

"""Category model, the target of every pattern and preference."""
from sqlalchemy import ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pattern_categorizer.models.base import BaseModel


class Category(BaseModel):
    """Spending category that patterns map transactions to."""

    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )

    patterns: Mapped[list["Pattern"]] = relationship(
        "Pattern", back_populates="category", passive_deletes="all"
    )

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name={self.name})>"

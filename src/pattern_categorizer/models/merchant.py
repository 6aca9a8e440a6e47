"""Canonical merchant identities and their raw-name aliases.

"UBER *TRIP", "UBER TECHNOLOGIES" and "Uber" all resolve to one canonical
merchant so that merchant patterns get reused across spellings.
"""
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pattern_categorizer.models.base import BaseModel


class CanonicalMerchant(BaseModel):
    """Normalized merchant identity."""

    __tablename__ = "canonical_merchants"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    category_hint: Mapped[str | None] = mapped_column(String(100), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    merchant_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, default=dict, nullable=False
    )

    aliases: Mapped[list["MerchantAlias"]] = relationship(
        "MerchantAlias", back_populates="canonical_merchant", passive_deletes="all"
    )

    def __repr__(self) -> str:
        return f"<CanonicalMerchant(id={self.id}, name={self.name!r})>"


class MerchantAlias(BaseModel):
    """Raw merchant text mapped to exactly one canonical merchant."""

    __tablename__ = "merchant_aliases"

    raw_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    canonical_merchant_id: Mapped[int] = mapped_column(
        ForeignKey("canonical_merchants.id", ondelete="CASCADE"), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    match_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_aliases_canonical_confidence", "canonical_merchant_id", "confidence"),
    )

    canonical_merchant: Mapped["CanonicalMerchant"] = relationship(
        "CanonicalMerchant", back_populates="aliases"
    )

    def __repr__(self) -> str:
        return (
            f"<MerchantAlias(raw_name={self.raw_name!r}, "
            f"canonical_merchant_id={self.canonical_merchant_id})>"
        )

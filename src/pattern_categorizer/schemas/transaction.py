"""Transaction input schema."""
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TransactionInput(BaseModel):
    """A transaction as handed to the engine by request or job collaborators.

    ``amount`` and ``timestamp`` are optional at the schema level so that an
    incomplete transaction yields an empty suggestion list instead of a
    validation error.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = Field(None, description="Stable transaction identifier")
    merchant: str | None = Field(None, description="Raw merchant text")
    merchant_normalized: str | None = Field(
        None, description="Merchant text already normalized upstream, if any"
    )
    description: str | None = Field(None, description="Raw description text")
    amount: Decimal | None = Field(None, description="Transaction amount in major units")
    currency: str = Field(default="USD", max_length=3)
    timestamp: datetime | None = Field(None, description="When the transaction happened")

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

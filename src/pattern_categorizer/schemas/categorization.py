"""Output schemas of the categorization engine and the feedback API."""
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pattern_categorizer.categorization.types import (
    FeedbackType,
    PatternRef,
    SimpleRef,
    parse_pattern_ref,
)


class CategorizationStatus(str, Enum):
    OK = "ok"
    NO_MATCH = "no_match"
    INVALID_INPUT = "invalid_input"
    DEGRADED = "degraded"


class Suggestion(BaseModel):
    """One ranked category suggestion."""

    model_config = ConfigDict(frozen=True)

    category_id: int
    category_name: str | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    contributing_patterns: list[str] = Field(
        default_factory=list,
        description="Pattern references such as 'pattern:12' or 'composite:3'",
    )
    reason: str


class CategorizationResult(BaseModel):
    """Ordered suggestions for one transaction.

    An empty list means "uncategorized"; callers must not read it as a
    match. ``status`` tells a missing-input or degraded-store result apart
    from an honest no-match.
    """

    model_config = ConfigDict(frozen=True)

    transaction_id: int | None = None
    suggestions: list[Suggestion] = Field(default_factory=list)
    status: CategorizationStatus = CategorizationStatus.OK
    diagnostic: str | None = None

    @property
    def best(self) -> Suggestion | None:
        return self.suggestions[0] if self.suggestions else None

    @property
    def degraded(self) -> bool:
        return self.status is CategorizationStatus.DEGRADED


class FeedbackRequest(BaseModel):
    """Feedback on one categorization, as sent by the request layer."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    transaction_id: int
    chosen_category_id: int
    feedback_type: FeedbackType
    originating_pattern: PatternRef | None = None
    confidence: float | None = Field(None, ge=0.0, le=1.0)

    @field_validator("originating_pattern", mode="before")
    @classmethod
    def parse_ref(cls, v):
        if isinstance(v, int):
            return SimpleRef(v)
        return parse_pattern_ref(v)


class FeedbackResult(BaseModel):
    """Outcome of one feedback call."""

    ok: bool = True
    feedback_id: int | None = None
    patterns_updated: list[str] = Field(default_factory=list)
    patterns_created: list[int] = Field(default_factory=list)
    patterns_deactivated: list[int] = Field(default_factory=list)
    learning_event_recorded: bool = False

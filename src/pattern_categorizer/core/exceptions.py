"""Custom exception classes for the categorization engine.

Each exception carries an error_code that maps to the catalog in errors.py.
Matching-time problems never surface as exceptions; these are raised by the
store, the feedback path and pattern validation.
"""

from typing import Any

from pattern_categorizer.core.errors import get_error


class CategorizationError(Exception):
    """Base exception for all categorization engine errors.

    Attributes:
        error_code: Code from the error catalog (e.g., "STORE_001")
        details: Additional context about the error (for logging)
    """

    default_code = "UNKNOWN_001"

    def __init__(
        self,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.error_code)

    @property
    def definition(self):
        return get_error(self.error_code)

    def __str__(self) -> str:
        message = self.definition.message
        if self.details:
            return f"{self.error_code}: {message} ({self.details})"
        return f"{self.error_code}: {message}"


class PatternValidationError(CategorizationError):
    """Raised when a pattern or composite definition is rejected at creation time.

    Common causes:
    - Inverted or unparsable amount bounds (PATTERN_001)
    - Nested-quantifier regular expressions (PATTERN_002)
    - Composite referencing missing patterns (PATTERN_003)
    """

    default_code = "PATTERN_001"


class PatternStoreUnavailableError(CategorizationError):
    """Raised when the pattern snapshot cannot be loaded from the store."""

    default_code = "STORE_001"


class InvalidFeedbackError(CategorizationError):
    """Raised when a feedback request names an unknown category or type."""

    default_code = "FEEDBACK_001"


class FeedbackConflictError(CategorizationError):
    """Raised when counter updates keep conflicting after all retries."""

    default_code = "FEEDBACK_002"


class MerchantNotFoundError(CategorizationError):
    """Raised when a canonical merchant id does not resolve."""

    default_code = "MERCHANT_001"

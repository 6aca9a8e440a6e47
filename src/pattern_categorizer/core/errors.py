"""Error codes and descriptions.

This module defines the error catalog for the categorization engine.
Each error has:
- code: Unique identifier
- message: Technical description (for logs)
- caller_action: What the calling layer should do about it
- retry_allowed: Whether the operation may be retried
"""

from dataclasses import dataclass


@dataclass
class ErrorDefinition:
    """Definition of a single error type."""

    code: str
    message: str
    caller_action: str
    retry_allowed: bool


ERROR_CATALOG: dict[str, dict] = {
    "INPUT_001": {
        "code": "INPUT_001",
        "message": "Transaction is missing a required field",
        "caller_action": "Treat the transaction as uncategorized.",
        "retry_allowed": False,
    },
    "PATTERN_001": {
        "code": "PATTERN_001",
        "message": "Pattern definition is invalid",
        "caller_action": "Fix the pattern value before saving it.",
        "retry_allowed": False,
    },
    "PATTERN_002": {
        "code": "PATTERN_002",
        "message": "Regular expression rejected as a catastrophic-backtracking risk",
        "caller_action": "Rewrite the expression without nested quantifiers.",
        "retry_allowed": False,
    },
    "PATTERN_003": {
        "code": "PATTERN_003",
        "message": "Composite pattern references unknown component patterns",
        "caller_action": "Create the component patterns first.",
        "retry_allowed": False,
    },
    "STORE_001": {
        "code": "STORE_001",
        "message": "Pattern snapshot could not be loaded",
        "caller_action": "Fall back to manual categorization.",
        "retry_allowed": True,
    },
    "FEEDBACK_001": {
        "code": "FEEDBACK_001",
        "message": "Feedback request is invalid",
        "caller_action": "Check the feedback type and category.",
        "retry_allowed": False,
    },
    "FEEDBACK_002": {
        "code": "FEEDBACK_002",
        "message": "Feedback counters could not be updated after retries",
        "caller_action": "Resubmit the feedback.",
        "retry_allowed": True,
    },
    "MERCHANT_001": {
        "code": "MERCHANT_001",
        "message": "Canonical merchant not found",
        "caller_action": "Reload the merchant list.",
        "retry_allowed": False,
    },
    "UNKNOWN_001": {
        "code": "UNKNOWN_001",
        "message": "An unexpected error occurred",
        "caller_action": "Report the error with its details.",
        "retry_allowed": True,
    },
}


def get_error(error_code: str) -> ErrorDefinition:
    """Get error definition by code.

    Args:
        error_code: Error code to look up

    Returns:
        ErrorDefinition for the code, or UNKNOWN_001 if not found
    """
    error_data = ERROR_CATALOG.get(error_code, ERROR_CATALOG["UNKNOWN_001"])
    return ErrorDefinition(**error_data)

"""Text canonicalization for merchant and description strings.

Everything here is pure and runs on the per-transaction hot path: no store
access, no caches, linear in the input length.
"""

from __future__ import annotations

import re
import unicodedata

# Payment processor markers that wrap the real merchant name,
# e.g. "PAYPAL *STARBUCKS", "SQ *BLUE BOTTLE", "TST* JOE'S PIZZA", "POS COSTCO".
_PROCESSOR_PREFIX = re.compile(r"^(?:(?:paypal|sq|square|tst)\s*\*|(?:pos|ccd|ach)\s+)")
_STAR = re.compile(r"\*+")
# Trailing transaction ids / store numbers: "402935", "#1234", "#12".
_TRAILING_ID = re.compile(r"(?:\s+#?\d{4,}|\s+#\d+)+$")
_DISALLOWED = re.compile(r"[^\w\s&'.-]")
_WHITESPACE = re.compile(r"\s+")

_CORPORATE_SUFFIX = re.compile(r"(?:\s+(?:inc|llc|ltd|corp|co|company)\.?)+$")
_LOCATION_MARKER = re.compile(r"\s+(?:store|location|loc)\s*#?\s*\d+")

KNOWN_MERCHANT_NAMES: dict[str, str] = {
    "uber": "Uber",
    "lyft": "Lyft",
    "amazon": "Amazon",
    "walmart": "Walmart",
    "target": "Target",
    "starbucks": "Starbucks",
    "mcdonalds": "McDonald's",
    "netflix": "Netflix",
    "spotify": "Spotify",
}


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def _collapse(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def _clean_pass(text: str) -> str:
    result = _collapse(strip_diacritics(strip_diacritics(text).lower()))
    result = _PROCESSOR_PREFIX.sub("", result, count=1)
    result = _collapse(_STAR.sub(" ", result))
    result = _TRAILING_ID.sub("", result)
    result = _DISALLOWED.sub(" ", result)
    return _collapse(result).strip(" .-")


def _until_stable(step, text: str) -> str:
    # After the first pass every step only removes characters, so this
    # terminates; stopping at a fixed point makes the result idempotent.
    current = step(text)
    while True:
        following = step(current)
        if following == current:
            return current
        current = following


def normalize(text: str | None) -> str:
    """Canonicalize free text for matching.

    Lower-cases, strips diacritics, removes payment-processor noise and
    trailing numeric ids, collapses whitespace. ``normalize`` is idempotent.

    Example:
        >>> normalize("PAYPAL *STARBUCKS 402935")
        'starbucks'
    """
    if not text:
        return ""
    return _until_stable(_clean_pass, text)


def _merchant_pass(text: str) -> str:
    result = _clean_pass(text)
    result = _LOCATION_MARKER.sub("", result)
    return _CORPORATE_SUFFIX.sub("", result).strip()


def normalize_merchant(text: str | None) -> str:
    """Normalize a merchant name into a stable key.

    Same as :func:`normalize`, additionally dropping corporate suffixes
    (inc, llc, ...) and store-location markers. Used as the canonical
    merchant name and as the value of learned merchant patterns.
    """
    if not text:
        return ""
    return _until_stable(_merchant_pass, text)


def beautify_merchant_name(name: str | None) -> str:
    """Display form for a normalized merchant name."""
    normalized = (name or "").lower().strip()
    if not normalized:
        return ""
    if normalized in KNOWN_MERCHANT_NAMES:
        return KNOWN_MERCHANT_NAMES[normalized]
    return " ".join(word.capitalize() for word in normalized.split())

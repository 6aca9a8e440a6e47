"""Transaction categorization engine.

Matching is pure and runs against an immutable PatternSnapshot: no store
access, no network calls, deterministic output for a given snapshot.
"""

from .normalizer import normalize, normalize_merchant
from .ranking import categorize
from .snapshot import PatternSnapshot
from .types import CompositeRef, PatternType, SimpleRef

__all__ = [
    "categorize",
    "normalize",
    "normalize_merchant",
    "PatternSnapshot",
    "PatternType",
    "SimpleRef",
    "CompositeRef",
]

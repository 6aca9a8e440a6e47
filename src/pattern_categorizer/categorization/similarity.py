"""String-similarity primitives used by the pattern matcher.

All scores are in [0, 1]. Inputs are expected to be normalized already
(see normalizer.py); nothing here lower-cases or strips.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from rapidfuzz.distance import Indel

from pattern_categorizer.categorization.types import PatternType

# Winkler-style prefix reward: up to 4 shared leading characters, each worth
# PREFIX_SCALE of the remaining distance.
PREFIX_SCALE = 0.05
MAX_PREFIX = 4


class SimilarityAlgorithm(str, Enum):
    EXACT = "exact"
    EDIT_DISTANCE = "edit_distance"
    NGRAM = "ngram"


# Algorithms tried per text pattern type; the best score wins.
DEFAULT_ALGORITHMS: dict[PatternType, tuple[SimilarityAlgorithm, ...]] = {
    PatternType.MERCHANT: (SimilarityAlgorithm.NGRAM, SimilarityAlgorithm.EDIT_DISTANCE),
    PatternType.KEYWORD: (SimilarityAlgorithm.EXACT,),
    PatternType.DESCRIPTION: (SimilarityAlgorithm.EXACT, SimilarityAlgorithm.NGRAM),
}


def trigrams(text: str) -> frozenset[str]:
    """Character trigrams of ``text`` padded with one space on each side."""
    if not text:
        return frozenset()
    padded = f" {text} "
    return frozenset(padded[i : i + 3] for i in range(len(padded) - 2))


def exact_similarity(text: str, pattern: str) -> float:
    """1.0 if ``pattern`` equals ``text`` or appears in it as whole words."""
    if not text or not pattern:
        return 0.0
    if text == pattern:
        return 1.0
    return 1.0 if f" {pattern} " in f" {text} " else 0.0


def edit_distance_similarity(text: str, pattern: str) -> float:
    """Normalized indel similarity with a bonus for a shared prefix.

    Tolerates small typos ("starbuks" vs "starbucks") while keeping
    unrelated words that merely share a stem ("stardust") below typical
    match thresholds.
    """
    if not text or not pattern:
        return 0.0
    if text == pattern:
        return 1.0

    base = Indel.normalized_similarity(text, pattern)

    prefix = 0
    for left, right in zip(text[:MAX_PREFIX], pattern[:MAX_PREFIX]):
        if left != right:
            break
        prefix += 1

    return min(1.0, base + prefix * PREFIX_SCALE * (1.0 - base))


def ngram_overlap(text_grams: Iterable[str], pattern_grams: frozenset[str]) -> float:
    """Best of Jaccard overlap and pattern containment over trigram sets."""
    text_set = text_grams if isinstance(text_grams, frozenset) else frozenset(text_grams)
    if not text_set or not pattern_grams:
        return 0.0

    shared = len(text_set & pattern_grams)
    if not shared:
        return 0.0

    jaccard = shared / len(text_set | pattern_grams)
    containment = shared / len(pattern_grams)
    return max(jaccard, containment)


def ngram_similarity(text: str, pattern: str) -> float:
    """Trigram similarity, robust to reordering and embedded noise.

    Measures how much of ``pattern`` is present in ``text``, so
    "paypal starbucks" against "starbucks" scores 1.0.
    """
    return ngram_overlap(trigrams(text), trigrams(pattern))


def ngram_jaccard(text: str, pattern: str) -> float:
    """Symmetric trigram overlap: shared trigrams over all trigrams.

    Unlike ``ngram_similarity`` a short name inside a longer one scores
    low, so "uber" against "uber eats" stays well below 0.6.
    """
    left, right = trigrams(text), trigrams(pattern)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def similarity(text: str, pattern: str, algorithm: SimilarityAlgorithm) -> float:
    """Score how well ``pattern`` is found in ``text`` using ``algorithm``."""
    if algorithm is SimilarityAlgorithm.EXACT:
        return exact_similarity(text, pattern)
    if algorithm is SimilarityAlgorithm.EDIT_DISTANCE:
        return edit_distance_similarity(text, pattern)
    if algorithm is SimilarityAlgorithm.NGRAM:
        return ngram_similarity(text, pattern)
    raise ValueError(f"Unknown similarity algorithm: {algorithm!r}")


def best_similarity(
    text: str,
    pattern: str,
    algorithms: Iterable[SimilarityAlgorithm],
) -> tuple[float, SimilarityAlgorithm | None]:
    """Highest score across ``algorithms`` and the algorithm that produced it."""
    best_score = 0.0
    best_algorithm = None
    for algorithm in algorithms:
        score = similarity(text, pattern, algorithm)
        if score > best_score:
            best_score, best_algorithm = score, algorithm
            if best_score >= 1.0:
                break
    return best_score, best_algorithm

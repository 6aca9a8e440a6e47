import pytest

from pattern_categorizer.categorization.similarity import (
    DEFAULT_ALGORITHMS,
    SimilarityAlgorithm,
    best_similarity,
    edit_distance_similarity,
    exact_similarity,
    ngram_jaccard,
    ngram_similarity,
    similarity,
    trigrams,
)
from pattern_categorizer.categorization.types import PatternType


def test_trigrams_are_padded() -> None:
    assert trigrams("ab") == frozenset({" ab", "ab "})
    assert trigrams("") == frozenset()


def test_exact_matches_whole_words_only() -> None:
    assert exact_similarity("starbucks coffee", "starbucks") == 1.0
    assert exact_similarity("starbucks", "starbucks") == 1.0
    assert exact_similarity("starbucks", "bar") == 0.0


def test_ngram_is_robust_to_embedded_noise() -> None:
    assert ngram_similarity("paypal starbucks", "starbucks") == 1.0


def test_ngram_unrelated_strings_score_low() -> None:
    assert ngram_similarity("shell oil", "starbucks") < 0.3


def test_edit_distance_tolerates_typos() -> None:
    assert edit_distance_similarity("starbuks", "starbucks") > 0.9


def test_edit_distance_shared_stem_stays_below_threshold() -> None:
    assert edit_distance_similarity("stardust", "starbucks") < 0.82


@pytest.mark.parametrize("algorithm", list(SimilarityAlgorithm))
def test_scores_are_bounded(algorithm: SimilarityAlgorithm) -> None:
    for text, pattern in [("starbucks", "starbucks"), ("uber trip", "lyft"), ("", "x")]:
        score = similarity(text, pattern, algorithm)
        assert 0.0 <= score <= 1.0


@pytest.mark.parametrize("algorithm", list(SimilarityAlgorithm))
def test_identical_strings_score_one(algorithm: SimilarityAlgorithm) -> None:
    assert similarity("whole foods", "whole foods", algorithm) == 1.0


def test_best_similarity_reports_winning_algorithm() -> None:
    score, algorithm = best_similarity(
        "paypal starbucks", "starbucks", DEFAULT_ALGORITHMS[PatternType.MERCHANT]
    )
    assert score == 1.0
    assert algorithm is SimilarityAlgorithm.NGRAM


def test_best_similarity_without_match() -> None:
    assert best_similarity("abc", "xyz", [SimilarityAlgorithm.EXACT]) == (0.0, None)


def test_ngram_jaccard_is_symmetric() -> None:
    assert ngram_jaccard("uber eats", "uber") == ngram_jaccard("uber", "uber eats")
    assert ngram_jaccard("uber eats", "uber") < 0.6
    assert ngram_jaccard("starbuck", "starbucks") >= 0.6
    assert ngram_jaccard("", "uber") == 0.0

import logging
from dataclasses import replace
from datetime import datetime

import pytest

from pattern_categorizer.categorization.features import TransactionFeatures
from pattern_categorizer.categorization.matcher import MatchOptions, match
from pattern_categorizer.categorization.snapshot import compile_pattern

TUESDAY = datetime(2024, 3, 12, 9, 30)
SATURDAY = datetime(2024, 3, 16, 19, 15)


class _SlowRegex:
    def search(self, text, timeout=None):
        raise TimeoutError("regex timed out")


def test_merchant_pattern_matches_processor_noise(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "merchant", "Starbucks", confidence_weight=3.0))
    result = match(make_transaction(merchant="PAYPAL *STARBUCKS 402935"), rule)

    assert result.matched is True
    assert result.local_confidence == pytest.approx(3.0)


def test_merchant_pattern_similarity_scales_confidence(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "merchant", "starbucks", confidence_weight=2.0))
    result = match(make_transaction(merchant="STARBUKS"), rule)

    assert result.matched is True
    assert 0.82 * 2.0 <= result.local_confidence < 2.0


def test_merchant_pattern_rejects_unrelated_merchant(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "merchant", "starbucks"))
    assert match(make_transaction(merchant="Shell Oil 5531"), rule).matched is False


def test_keyword_matches_whole_word_in_description(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "keyword", "coffee"))
    result = match(make_transaction(merchant="Blue Bottle", description="Morning COFFEE run"), rule)
    assert result.matched is True
    assert result.local_confidence == pytest.approx(1.0)


def test_keyword_does_not_match_inside_words(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "keyword", "bar"))
    assert match(make_transaction(merchant="Starbucks"), rule).matched is False


def test_amount_range(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "amount_range", "80-200", confidence_weight=0.5))

    inside = match(make_transaction(amount="95.50"), rule)
    assert inside.matched is True
    assert inside.local_confidence == pytest.approx(0.5)
    assert match(make_transaction(amount="200"), rule).matched is True
    assert match(make_transaction(amount="250"), rule).matched is False


def test_negative_amount_range(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "amount_range", "-100--50"))
    assert match(make_transaction(amount="-75"), rule).matched is True
    assert match(make_transaction(amount="75"), rule).matched is False


def test_amount_range_without_amount(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(1, "amount_range", "80-200"))
    features = TransactionFeatures.from_transaction(make_transaction(amount=None))
    assert features.amount is None
    assert match(features, rule).matched is False


def test_regex_matches_normalized_text(make_pattern, make_transaction) -> None:
    rule = compile_pattern(make_pattern(2, "regex", r"uber\s+trip"))
    assert match(make_transaction(merchant="UBER   TRIP 1234"), rule).matched is True
    assert match(make_transaction(merchant="LYFT RIDE"), rule).matched is False


def test_regex_timeout_is_a_non_match(make_pattern, make_transaction) -> None:
    rule = replace(compile_pattern(make_pattern(2, "regex", r"uber")), compiled_regex=_SlowRegex())
    result = match(make_transaction(merchant="uber"), rule, MatchOptions(regex_timeout_ms=1.0))

    assert result.matched is False
    assert result.timed_out is True
    assert result.reason == "regex timed out"


@pytest.mark.parametrize(
    "bucket, moment, expected",
    [
        ("weekend", SATURDAY, True),
        ("weekend", TUESDAY, False),
        ("weekday", TUESDAY, True),
        ("morning", TUESDAY, True),
        ("evening", SATURDAY, True),
        ("night", datetime(2024, 3, 12, 2, 0), True),
        ("afternoon", TUESDAY, False),
    ],
)
def test_time_buckets(make_pattern, make_transaction, bucket, moment, expected) -> None:
    rule = compile_pattern(make_pattern(1, "time", bucket))
    assert match(make_transaction(timestamp=moment), rule).matched is expected


@pytest.mark.parametrize(
    "moment, expected",
    [
        (datetime(2024, 3, 12, 23, 30), True),
        (datetime(2024, 3, 12, 1, 0), True),
        (datetime(2024, 3, 12, 12, 0), False),
    ],
)
def test_time_window_crossing_midnight(make_pattern, make_transaction, moment, expected) -> None:
    rule = compile_pattern(make_pattern(1, "time", "22:00-02:00"))
    assert match(make_transaction(timestamp=moment), rule).matched is expected


@pytest.mark.parametrize(
    "pattern_type, value",
    [
        ("amount_range", "200-80"),
        ("amount_range", "lots"),
        ("regex", "(a+)+$"),
        ("regex", "[unclosed"),
        ("time", "brunch"),
        ("sound", "beep"),
        ("merchant", "***"),
    ],
)
def test_malformed_patterns_never_match(make_pattern, make_transaction, pattern_type, value) -> None:
    rule = compile_pattern(make_pattern(1, pattern_type, value))

    assert rule.error is not None
    assert match(make_transaction(merchant="***", amount="100"), rule).matched is False


def test_malformed_pattern_is_logged_once_per_snapshot(make_pattern, build_snapshot, caplog) -> None:
    with caplog.at_level(logging.WARNING):
        build_snapshot([make_pattern(1, "amount_range", "200-80"), make_pattern(1, "keyword", "coffee")])

    warnings = [record for record in caplog.records if "malformed" in record.getMessage()]
    assert len(warnings) == 1

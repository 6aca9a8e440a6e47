import pytest

from pattern_categorizer.categorization.types import CompositeRef, SimpleRef, parse_pattern_ref, ref_sort_key
from pattern_categorizer.categorization.validation import (
    MAX_REGEX_LENGTH,
    TimeSpec,
    check_regex_safety,
    parse_amount_range,
    parse_time_spec,
    validate_conditions,
    validate_confidence_weight,
    validate_pattern_value,
)
from pattern_categorizer.core.exceptions import PatternValidationError


class TestAmountRange:
    def test_parses_bounds(self) -> None:
        assert parse_amount_range("10-50") == (10.0, 50.0)
        assert parse_amount_range(" 0.99 - 5 ") == (0.99, 5.0)

    def test_negative_bounds(self) -> None:
        assert parse_amount_range("-100--50") == (-100.0, -50.0)

    def test_equal_bounds_allowed(self) -> None:
        assert parse_amount_range("5-5") == (5.0, 5.0)

    @pytest.mark.parametrize("value", ["50-10", "ten-twenty", "10", ""])
    def test_rejects_bad_ranges(self, value: str) -> None:
        with pytest.raises(PatternValidationError) as exc_info:
            parse_amount_range(value)
        assert exc_info.value.error_code == "PATTERN_001"


class TestRegexSafety:
    @pytest.mark.parametrize("value", [r"(a+)+$", r"(a*)*", r"(\w+\s?)*", r"([a-z]+)*x", r".*.*=.*"])
    def test_rejects_nested_quantifiers(self, value: str) -> None:
        with pytest.raises(PatternValidationError) as exc_info:
            check_regex_safety(value)
        assert exc_info.value.error_code == "PATTERN_002"

    @pytest.mark.parametrize("value", [r"^uber\s+trip", r"amzn\s*mktp", r"(netflix|hulu)", r"\d{4}"])
    def test_accepts_plain_expressions(self, value: str) -> None:
        check_regex_safety(value)

    def test_rejects_overlong_expression(self) -> None:
        with pytest.raises(PatternValidationError) as exc_info:
            check_regex_safety("a" * (MAX_REGEX_LENGTH + 1))
        assert exc_info.value.error_code == "PATTERN_002"


def test_time_spec_buckets_and_windows() -> None:
    assert parse_time_spec("Weekend") == TimeSpec(bucket="weekend")
    assert parse_time_spec("22:00-02:30") == TimeSpec(start_minute=1320, end_minute=150)
    with pytest.raises(PatternValidationError):
        parse_time_spec("25:00-26:00")


@pytest.mark.parametrize(
    "pattern_type, value",
    [("merchant", "   "), ("regex", "[abc"), ("time", "lunch"), ("unknown", "x")],
)
def test_validate_pattern_value_rejects(pattern_type: str, value: str) -> None:
    with pytest.raises(PatternValidationError):
        validate_pattern_value(pattern_type, value)


def test_validate_confidence_weight() -> None:
    validate_confidence_weight(0.1, 0.1, 5.0)
    validate_confidence_weight(5.0, 0.1, 5.0)
    with pytest.raises(PatternValidationError):
        validate_confidence_weight(5.01, 0.1, 5.0)


class TestConditions:
    def test_accepts_full_conditions(self) -> None:
        validate_conditions(
            {
                "min_amount": 10,
                "max_amount": 99.5,
                "days_of_week": ["Monday", "friday"],
                "time_ranges": [{"start": "09:00", "end": "17:00"}],
                "merchant_blacklist": ["Uber"],
            }
        )

    @pytest.mark.parametrize(
        "conditions",
        [
            {"colour": "red"},
            {"min_amount": "10"},
            {"min_amount": True},
            {"min_amount": 50, "max_amount": 10},
            {"days_of_week": ["funday"]},
            {"days_of_week": "monday"},
            {"time_ranges": [{"start": "09:00"}]},
            {"time_ranges": [{"start": "9am", "end": "5pm"}]},
            {"merchant_blacklist": "uber"},
        ],
    )
    def test_rejects_bad_conditions(self, conditions: dict) -> None:
        with pytest.raises(PatternValidationError):
            validate_conditions(conditions)


class TestPatternRefs:
    def test_parse_wire_form(self) -> None:
        assert parse_pattern_ref("pattern:12") == SimpleRef(12)
        assert parse_pattern_ref("composite:3") == CompositeRef(3)
        assert parse_pattern_ref(None) is None
        assert parse_pattern_ref(SimpleRef(4)) == SimpleRef(4)

    def test_str_round_trips(self) -> None:
        assert str(CompositeRef(7)) == "composite:7"
        assert parse_pattern_ref(str(SimpleRef(9))) == SimpleRef(9)

    @pytest.mark.parametrize("value", ["12", "pattern:", "pattern:x", "rule:1"])
    def test_rejects_malformed(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_pattern_ref(value)

    def test_mixed_sort_order(self) -> None:
        refs = [CompositeRef(1), SimpleRef(5), SimpleRef(2)]
        assert sorted(refs, key=ref_sort_key) == [SimpleRef(2), SimpleRef(5), CompositeRef(1)]

"""Tests for rule condition evaluation."""

import pytest
from datetime import datetime, timezone

from lead_automation.routing.conditions import (
    Condition,
    ConditionValue,
    ValueKind,
    matches,
    parse_range,
)


def check(field, operator, value, attributes, tz="UTC"):
    return matches(Condition(field, operator, value), attributes, tz)


class TestConditionValue:
    """Tests for raw value parsing."""

    def test_numbers_with_commas(self):
        """Test that formatted numbers parse as numbers."""
        value = ConditionValue.parse("50,000")
        assert value.kind == ValueKind.NUMBER
        assert value.number == 50000

    def test_iso_string_is_date(self):
        """Test that ISO timestamps parse as dates."""
        value = ConditionValue.parse("2026-03-10T15:00:00Z")
        assert value.kind == ValueKind.DATE
        assert value.date == datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)

    def test_plain_string(self):
        """Test that other text stays a string."""
        value = ConditionValue.parse("  Facebook ")
        assert value.kind == ValueKind.STRING
        assert value.text == "Facebook"

    def test_parse_range(self):
        """Test lo-hi range parsing."""
        assert parse_range("40-79") == (40.0, 79.0)
        assert parse_range("-10-10") == (-10.0, 10.0)
        assert parse_range("9 - 17") == (9.0, 17.0)
        assert parse_range("forty-79") is None
        assert parse_range("") is None


class TestEquals:
    """Tests for the equals operator."""

    def test_numeric_coercion(self):
        """Test numbers compare by value, not text."""
        assert check("budget", "equals", "50000", {"budget": 50000})
        assert check("budget", "equals", "50000.0", {"budget": "50000"})

    def test_string_exact(self):
        """Test strings compare exactly."""
        assert check("state", "equals", "CA", {"state": "CA"})
        assert not check("state", "equals", "CA", {"state": "ca"})

    def test_missing_attribute(self):
        """Test a missing attribute never matches."""
        assert not check("state", "equals", "CA", {})
        assert not check("state", "equals", "", {"state": None})

    def test_boolean_attribute(self):
        """Test flags match true/false text in any case."""
        for text in ["True", "true", "TRUE"]:
            assert check("vip", "equals", text, {"vip": True})
        assert check("vip", "equals", True, {"vip": "true"})
        assert not check("vip", "equals", "True", {"vip": False})
        assert ConditionValue.parse(True).kind == ValueKind.BOOLEAN


class TestComparisons:
    """Tests for greater_than and less_than."""

    def test_greater_than(self):
        assert check("budget", "greater_than", "50000", {"budget": 60000})
        assert not check("budget", "greater_than", "50000", {"budget": 50000})

    def test_less_than(self):
        assert check("lead_score", "less_than", "40", {"lead_score": 12})
        assert not check("lead_score", "less_than", "40", {"lead_score": 40})

    def test_non_numeric_fails_closed(self):
        """Test non-numeric values are a non-match, not an error."""
        assert not check("budget", "greater_than", "50000", {"budget": "lots"})
        assert not check("budget", "greater_than", "abc", {"budget": 60000})


class TestIn:
    """Tests for the in operator."""

    def test_membership(self):
        assert check("state", "in", "CA,OR,WA,NV", {"state": "OR"})
        assert not check("state", "in", "CA,OR,WA,NV", {"state": "TX"})

    def test_whitespace_trimmed(self):
        assert check("state", "in", "CA, OR , WA", {"state": "WA"})

    def test_numeric_members(self):
        assert check("vehicle_year", "in", "2024,2025,2026", {"vehicle_year": 2025})


class TestBetween:
    """Tests for the between operator."""

    def test_inclusive_bounds(self):
        """Test both bounds are inclusive."""
        assert check("lead_score", "between", "40-79", {"lead_score": 40})
        assert check("lead_score", "between", "40-79", {"lead_score": 79})
        assert not check("lead_score", "between", "40-79", {"lead_score": 80})

    def test_negative_bounds(self):
        assert check("delta", "between", "-10-10", {"delta": -5})

    def test_malformed_range(self):
        assert not check("lead_score", "between", "40to79", {"lead_score": 50})


class TestOutsideHours:
    """Tests for the outside_hours operator."""

    def test_evening_is_outside(self):
        created = datetime(2026, 3, 10, 20, 0, tzinfo=timezone.utc)
        assert check("created_time", "outside_hours", "9-17", {"created_time": created})

    def test_midday_is_inside(self):
        created = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
        assert not check("created_time", "outside_hours", "9-17", {"created_time": created})

    def test_end_hour_is_outside(self):
        """Test the window end is exclusive."""
        created = datetime(2026, 3, 10, 17, 0, tzinfo=timezone.utc)
        assert check("created_time", "outside_hours", "9-17", {"created_time": created})

    def test_hours_read_in_tenant_zone(self):
        """Test 15:00 UTC is 08:00 in Los Angeles, before opening."""
        created = "2026-03-10T15:00:00Z"
        attributes = {"created_time": created}
        assert not check("created_time", "outside_hours", "9-17", attributes, "UTC")
        assert check("created_time", "outside_hours", "9-17", attributes, "America/Los_Angeles")

    def test_window_wrapping_midnight(self):
        late = datetime(2026, 3, 10, 23, 0, tzinfo=timezone.utc)
        noon = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
        assert not check("created_time", "outside_hours", "22-6", {"created_time": late})
        assert check("created_time", "outside_hours", "22-6", {"created_time": noon})

    def test_naive_datetime_treated_as_utc(self):
        created = datetime(2026, 3, 10, 20, 0)
        assert check("created_time", "outside_hours", "9-17", {"created_time": created})

    def test_not_a_date(self):
        assert not check("created_time", "outside_hours", "9-17", {"created_time": "yesterday"})

    def test_dates_at_calendar_edges(self):
        """Test timestamps that cannot shift into the tenant zone do not match."""
        assert not check("created_time", "outside_hours", "9-17",
                         {"created_time": "0001-01-01T00:30:00"}, "America/Chicago")
        assert not check("created_time", "outside_hours", "9-17",
                         {"created_time": "9999-12-31T23:30:00"}, "Asia/Tokyo")


class TestUnknownOperator:
    """Tests for operators the evaluator does not know."""

    def test_unknown_operator_never_matches(self):
        assert not check("state", "contains", "CA", {"state": "CA"})
        assert not check("state", "", "CA", {"state": "CA"})

    @pytest.mark.parametrize("value", ["", "   ", "not-a-number"])
    def test_bad_values_do_not_raise(self, value):
        for operator in ["equals", "greater_than", "less_than", "in", "between", "outside_hours"]:
            check("budget", operator, value, {"budget": 1})

"""
test_payment_schedule.py - Unit tests for payment schedule generation

Tests:
- Epoch conversion (naive = UTC)
- Month arithmetic with end-of-month clamping
- Grace period, midnight truncation and monthly spacing
- Schedule validation
"""

import pytest
from datetime import datetime, timezone, timedelta

from nyx import to_epoch, from_epoch, add_months, generate_payment_schedule, validate_schedule


class TestEpoch:
    """Tests for epoch helpers."""

    def test_naive_is_utc(self):
        assert to_epoch(datetime(1970, 1, 2)) == 86_400

    def test_aware_converted(self):
        aware = datetime(1970, 1, 1, 1, tzinfo=timezone(timedelta(hours=1)))
        assert to_epoch(aware) == 0

    def test_round_trip(self):
        dt = datetime(2026, 7, 1)
        assert from_epoch(to_epoch(dt)) == dt


class TestAddMonths:
    """Tests for add_months."""

    def test_simple(self):
        assert add_months(datetime(2025, 1, 15), 1) == datetime(2025, 2, 15)

    def test_clamps_to_month_end(self):
        assert add_months(datetime(2025, 1, 31), 1) == datetime(2025, 2, 28)
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_crosses_years(self):
        assert add_months(datetime(2025, 11, 30), 18) == datetime(2027, 5, 30)


class TestGenerateSchedule:
    """Tests for generate_payment_schedule."""

    def test_defaults(self):
        schedule = generate_payment_schedule(datetime(2025, 1, 1))
        assert len(schedule) == 36
        assert from_epoch(schedule[0]) == datetime(2026, 7, 1)
        assert from_epoch(schedule[-1]) == datetime(2029, 6, 1)

    def test_truncates_to_midnight(self):
        schedule = generate_payment_schedule(datetime(2025, 1, 15, 13, 30), 2, 18)
        assert [from_epoch(t) for t in schedule] == [datetime(2026, 7, 15), datetime(2026, 8, 15)]

    def test_no_drift_after_short_month(self):
        schedule = generate_payment_schedule(datetime(2025, 1, 31), 3, 0)
        assert [from_epoch(t).day for t in schedule] == [31, 28, 31]

    def test_zero_grace(self):
        (first,) = generate_payment_schedule(datetime(2025, 3, 5, 8), 1, 0)
        assert from_epoch(first) == datetime(2025, 3, 5)

    def test_non_decreasing(self):
        schedule = generate_payment_schedule(datetime(2025, 1, 1), 36, 18)
        assert schedule == sorted(schedule)

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValueError):
            generate_payment_schedule(datetime(2025, 1, 1), -1)
        with pytest.raises(ValueError):
            generate_payment_schedule(datetime(2025, 1, 1), 1, -1)


class TestValidateSchedule:
    """Tests for validate_schedule."""

    def test_accepts_equal_entries(self):
        assert validate_schedule([1, 1, 2]) == [1, 1, 2]

    @pytest.mark.parametrize("bad", [[2, 1], [-1], [1.5], [True]])
    def test_rejects(self, bad):
        with pytest.raises(ValueError):
            validate_schedule(bad)

"""
PlanPace - Date Logic Tests.

Property-based and unit tests for DateManager class.
Tests ensure correct handling of leap years, month boundaries,
inclusive day counting and proration conservation.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings, assume
from hypothesis.strategies import dates, decimals, integers

from planpace.date_logic import DateManager


class TestDateManagerUnit:
    """Unit tests for DateManager edge cases."""

    def setup_method(self) -> None:
        """Initialise DateManager for each test."""
        self.dm = DateManager()

    def test_leap_year_2024(self) -> None:
        """Verify 2024 is correctly identified as a leap year."""
        assert self.dm.is_leap_year(2024) is True

    def test_non_leap_year_1900(self) -> None:
        """Verify 1900 (divisible by 100 but not 400) is not a leap year."""
        assert self.dm.is_leap_year(1900) is False

    def test_february_leap_year_days(self) -> None:
        """Verify February has 29 days in leap year."""
        assert self.dm.get_days_in_month(2024, 2) == 29

    def test_invalid_month_raises(self) -> None:
        """Verify month 13 raises ValueError."""
        with pytest.raises(ValueError):
            self.dm.get_days_in_month(2024, 13)

    def test_single_day_range_covers_one_day(self) -> None:
        """Verify a range starting and ending on the same day counts 1."""
        day = date(2025, 6, 1)
        assert self.dm.total_days((day, day)) == 1

    def test_total_days_inverted_range_raises(self) -> None:
        """Verify an inverted range is a contract violation."""
        with pytest.raises(ValueError):
            self.dm.total_days((date(2025, 6, 2), date(2025, 6, 1)))

    def test_overlap_across_month_boundary(self) -> None:
        """Verify Jun 20 - Jul 10 shares 10 days with July."""
        burst = (date(2025, 6, 20), date(2025, 7, 10))
        july = (date(2025, 7, 1), date(2025, 7, 31))
        assert self.dm.days_of_overlap(burst, july) == 10

    def test_disjoint_ranges_have_zero_overlap(self) -> None:
        """Verify disjoint ranges overlap by 0 days, not an error."""
        june = (date(2025, 6, 1), date(2025, 6, 30))
        august = (date(2025, 8, 1), date(2025, 8, 31))
        assert self.dm.days_of_overlap(june, august) == 0

    def test_per_day_amount(self) -> None:
        """Verify 20000 over 14 days is spread evenly."""
        amount = self.dm.per_day_amount(
            Decimal("20000"), (date(2025, 6, 1), date(2025, 6, 14))
        )
        assert amount * 14 == pytest.approx(Decimal("20000"))

    def test_prorate_full_coverage_is_exact(self) -> None:
        """Verify a window covering the whole range returns the amount exactly."""
        burst = (date(2025, 6, 1), date(2025, 6, 14))
        june = (date(2025, 6, 1), date(2025, 6, 30))
        assert self.dm.prorate(Decimal("20000"), burst, june) == Decimal("20000")

    def test_prorate_disjoint_is_zero(self) -> None:
        """Verify a disjoint window receives nothing."""
        burst = (date(2025, 6, 1), date(2025, 6, 14))
        july = (date(2025, 7, 1), date(2025, 7, 31))
        assert self.dm.prorate(Decimal("20000"), burst, july) == Decimal("0")

    def test_expand_date_range_empty_when_inverted(self) -> None:
        """Verify expand_date_range returns [] for start after end."""
        assert self.dm.expand_date_range(date(2025, 6, 2), date(2025, 6, 1)) == []

    def test_months_between_spans_year_end(self) -> None:
        """Verify months_between crosses December into January."""
        months = self.dm.months_between(date(2025, 11, 15), date(2026, 1, 2))
        assert months == [date(2025, 11, 1), date(2025, 12, 1), date(2026, 1, 1)]

    def test_month_key_and_label(self) -> None:
        """Verify month key and label formatting."""
        day = date(2025, 6, 18)
        assert self.dm.month_key(day) == "2025-06"
        assert self.dm.month_label(day) == "June 2025"

    def test_month_sequence(self) -> None:
        """Verify consecutive month keys across a year boundary."""
        assert self.dm.month_sequence("2025-11", 3) == ["2025-11", "2025-12", "2026-01"]

    def test_month_sequence_zero_count(self) -> None:
        """Verify a zero count yields no months."""
        assert self.dm.month_sequence("2025-11", 0) == []

    def test_month_sequence_negative_count_raises(self) -> None:
        """Verify a negative count is rejected."""
        with pytest.raises(ValueError):
            self.dm.month_sequence("2025-11", -1)

    def test_parse_month_key_invalid_raises(self) -> None:
        """Verify an invalid month key is rejected."""
        with pytest.raises(ValueError):
            self.dm.parse_month_key("June")

    def test_parse_iso_date_ignores_time(self) -> None:
        """Verify the time-of-day part of an ISO timestamp is ignored."""
        assert self.dm.parse_iso_date("2025-06-01T23:59:59Z") == date(2025, 6, 1)

    def test_parse_iso_date_invalid_returns_none(self) -> None:
        """Verify unparseable dates return None."""
        assert self.dm.parse_iso_date("not a date") is None
        assert self.dm.parse_iso_date(None) is None

    def test_today_uses_canonical_timezone(self) -> None:
        """Verify 20:00 UTC on Jun 30 is already Jul 1 in Melbourne."""
        reference = datetime(2025, 6, 30, 20, 0, tzinfo=timezone.utc)
        assert self.dm.today(reference) == date(2025, 7, 1)
        assert self.dm.yesterday(reference) == date(2025, 6, 30)

    def test_today_respects_configured_timezone(self) -> None:
        """Verify the timezone can be overridden."""
        dm = DateManager(timezone_name="UTC")
        reference = datetime(2025, 6, 30, 20, 0, tzinfo=timezone.utc)
        assert dm.today(reference) == date(2025, 6, 30)


class TestDateManagerProperty:
    """Property-based tests for proration."""

    def setup_method(self) -> None:
        """Initialise DateManager for each test."""
        self.dm = DateManager()

    @given(
        start=dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31)),
        length=integers(min_value=0, max_value=400),
        amount=decimals(
            min_value=Decimal("0"),
            max_value=Decimal("1000000"),
            places=2,
            allow_nan=False,
            allow_infinity=False
        )
    )
    @settings(max_examples=200)
    def test_monthly_proration_conserves_amount(
        self, start: date, length: int, amount: Decimal
    ) -> None:
        """
        Property: Prorating an amount into every month it touches sums
        back to the amount.
        """
        end = start + timedelta(days=length)
        burst = (start, end)

        total = sum(
            (
                self.dm.prorate(amount, burst, self.dm.month_bounds(m.year, m.month))
                for m in self.dm.months_between(start, end)
            ),
            Decimal("0")
        )

        assert abs(total - amount) <= Decimal("0.000001")

    @given(
        a_start=dates(min_value=date(2024, 1, 1), max_value=date(2026, 12, 31)),
        a_len=integers(min_value=0, max_value=90),
        b_start=dates(min_value=date(2024, 1, 1), max_value=date(2026, 12, 31)),
        b_len=integers(min_value=0, max_value=90)
    )
    @settings(max_examples=200)
    def test_overlap_is_symmetric_and_bounded(
        self, a_start: date, a_len: int, b_start: date, b_len: int
    ) -> None:
        """
        Property: Overlap is symmetric and never exceeds either range.
        """
        a = (a_start, a_start + timedelta(days=a_len))
        b = (b_start, b_start + timedelta(days=b_len))

        overlap = self.dm.days_of_overlap(a, b)

        assert overlap == self.dm.days_of_overlap(b, a)
        assert 0 <= overlap <= min(a_len, b_len) + 1

    @given(
        start=dates(min_value=date(2020, 1, 1), max_value=date(2030, 12, 31)),
        length=integers(min_value=0, max_value=365)
    )
    @settings(max_examples=100)
    def test_expand_matches_total_days(self, start: date, length: int) -> None:
        """
        Property: The expanded range has exactly total_days entries.
        """
        end = start + timedelta(days=length)
        assume(end.year <= 9999)

        assert len(self.dm.expand_date_range(start, end)) == self.dm.total_days((start, end))

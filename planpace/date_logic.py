"""
PlanPace - Date Logic Module.

This module provides the interval proration primitive used by every other
component: inclusive day counting, overlap between date ranges, per-day
amounts, calendar month expansion, and "today" in a single canonical
timezone.

Classes:
    DateManager: Manages all date-related calculations for proration.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, List, Optional, Tuple
from zoneinfo import ZoneInfo

from planpace.schema import CANONICAL_TIMEZONE


DateRange = Tuple[date, date]


class DateManager:
    """
    Manages date calculations for burst proration.

    All day counts are inclusive of both endpoints: a range from Jan 1 to
    Jan 1 covers one day. Amount calculations return unrounded Decimal
    values; callers round after aggregation.

    Example:
        >>> dm = DateManager()
        >>> dm.days_of_overlap(
        ...     (date(2025, 6, 20), date(2025, 7, 10)),
        ...     (date(2025, 7, 1), date(2025, 7, 31)),
        ... )
        10
        >>> dm.total_days((date(2025, 6, 1), date(2025, 6, 14)))
        14
    """

    def __init__(self, timezone_name: str = CANONICAL_TIMEZONE):
        """
        Initialises the DateManager.

        Args:
            timezone_name: IANA timezone used for today/yesterday.
        """
        self._timezone = ZoneInfo(timezone_name)

    def is_leap_year(self, year: int) -> bool:
        """
        Determines if the specified year is a leap year.

        Args:
            year: Four-digit year to check.

        Returns:
            True if the year is a leap year, False otherwise.
        """
        return calendar.isleap(year)

    def get_days_in_month(self, year: int, month: int) -> int:
        """
        Returns the total number of days in the specified month.

        Args:
            year: Four-digit year.
            month: Month number (1-12).

        Returns:
            Number of days in the specified month.

        Raises:
            ValueError: If month is not in range 1-12.
        """
        if not 1 <= month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {month}")
        return calendar.monthrange(year, month)[1]

    def total_days(self, date_range: DateRange) -> int:
        """
        Counts the days in a range, inclusive of both endpoints.

        Args:
            date_range: (start, end) tuple.

        Returns:
            Number of days, always at least 1.

        Raises:
            ValueError: If end is before start. Callers reject such
                ranges before asking for a day count.
        """
        start, end = date_range
        if end < start:
            raise ValueError(f"Range end {end} is before start {start}")
        return (end - start).days + 1

    def days_of_overlap(self, range_a: DateRange, range_b: DateRange) -> int:
        """
        Counts the days two ranges have in common.

        Each range is clamped to ``max(starts)`` .. ``min(ends)``; when the
        clamped start falls after the clamped end there is no overlap.

        Args:
            range_a: First (start, end) tuple.
            range_b: Second (start, end) tuple.

        Returns:
            Number of shared days, 0 when the ranges are disjoint.
        """
        start = max(range_a[0], range_b[0])
        end = min(range_a[1], range_b[1])
        if start > end:
            return 0
        return (end - start).days + 1

    def per_day_amount(self, total_amount: Decimal, date_range: DateRange) -> Decimal:
        """
        Spreads an amount evenly across the days of a range.

        Args:
            total_amount: Amount to spread.
            date_range: (start, end) tuple.

        Returns:
            Unrounded amount per day.
        """
        return total_amount / Decimal(self.total_days(date_range))

    def prorate(
        self,
        amount: Decimal,
        source_range: DateRange,
        window: DateRange
    ) -> Decimal:
        """
        Returns the share of an amount that falls inside a window.

        Multiplies by the overlap before dividing by the source range's
        length so a fully covered range returns the amount exactly.

        Args:
            amount: Amount spread evenly across ``source_range``.
            source_range: Range the amount covers.
            window: Reporting window, e.g. a calendar month.

        Returns:
            Unrounded prorated amount; zero when the ranges are disjoint.
        """
        overlap = self.days_of_overlap(source_range, window)
        if overlap == 0:
            return Decimal("0")
        return amount * Decimal(overlap) / Decimal(self.total_days(source_range))

    def expand_date_range(self, start: date, end: date) -> List[date]:
        """
        Lists every date from start to end inclusive.

        Args:
            start: First date.
            end: Last date.

        Returns:
            Ascending list of dates; empty when start is after end.
        """
        if start > end:
            return []
        return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]

    def month_bounds(self, year: int, month: int) -> DateRange:
        """
        Returns the first and last day of a calendar month.

        Args:
            year: Four-digit year.
            month: Month number (1-12).

        Returns:
            (first_day, last_day) tuple.
        """
        return date(year, month, 1), date(year, month, self.get_days_in_month(year, month))

    def months_between(self, start: date, end: date) -> List[date]:
        """
        Lists the calendar months overlapping a range.

        Args:
            start: Range start.
            end: Range end.

        Returns:
            First-of-month dates, ascending; empty when start is after end.
        """
        if start > end:
            return []

        months = []
        current = date(start.year, start.month, 1)
        while current <= end:
            months.append(current)
            current = self._add_months(current, 1)
        return months

    def month_key(self, value: date) -> str:
        """Formats a date's month as ``YYYY-MM``."""
        return f"{value.year:04d}-{value.month:02d}"

    def month_label(self, value: date) -> str:
        """Formats a date's month as e.g. "June 2025"."""
        return f"{calendar.month_name[value.month]} {value.year}"

    def parse_month_key(self, key: str) -> date:
        """
        Parses a ``YYYY-MM`` key to the first day of that month.

        Raises:
            ValueError: If the key is not a valid month key.
        """
        try:
            year_str, month_str = key.strip().split("-")
            return date(int(year_str), int(month_str), 1)
        except (AttributeError, ValueError) as e:
            raise ValueError(f"Invalid month key: {key!r}") from e

    def month_sequence(self, start_key: str, count: int) -> List[str]:
        """
        Lists ``count`` consecutive month keys starting at ``start_key``.

        Args:
            start_key: First month as ``YYYY-MM``.
            count: Number of months requested.

        Returns:
            Month keys in ascending order.

        Raises:
            ValueError: If count is negative or the start key is invalid.
        """
        if count < 0:
            raise ValueError(f"Month count must not be negative, got {count}")

        first = self.parse_month_key(start_key)
        return [self.month_key(self._add_months(first, i)) for i in range(count)]

    def parse_iso_date(self, value: Any) -> Optional[date]:
        """
        Parses a date-only value, ignoring any time-of-day component.

        Accepts ``date`` objects, ``datetime`` objects and ISO strings such
        as "2025-06-01" or "2025-06-01T00:00:00Z".

        Args:
            value: Value to parse.

        Returns:
            Parsed date, or None if the value cannot be parsed.
        """
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value

        text = str(value).strip()
        if len(text) < 10:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None

    def today(self, reference: Optional[datetime] = None) -> date:
        """
        Returns today's date in the canonical timezone.

        Args:
            reference: Instant to convert. Defaults to now. Naive values
                are treated as UTC.

        Returns:
            Calendar date in the canonical timezone.
        """
        if reference is None:
            reference = datetime.now(self._timezone)
        elif reference.tzinfo is None:
            reference = reference.replace(tzinfo=ZoneInfo("UTC"))
        return reference.astimezone(self._timezone).date()

    def yesterday(self, reference: Optional[datetime] = None) -> date:
        """
        Returns yesterday's date in the canonical timezone.

        Computed in calendar terms (today minus one day), not "now minus
        24 hours", so it is stable across daylight-saving transitions.
        """
        return self.today(reference) - timedelta(days=1)

    def _add_months(self, first_of_month: date, months: int) -> date:
        """Adds whole months to a first-of-month date."""
        index = first_of_month.year * 12 + (first_of_month.month - 1) + months
        return date(index // 12, index % 12 + 1, 1)

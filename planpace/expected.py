"""
PlanPace - Expected Series Module.

Spreads each burst's budget and deliverables evenly across the days it
covers and sums them per day. The result feeds the pacing comparison and
is independent of the monthly billing view.

Classes:
    ExpectedSeriesCalculator: Builds daily and cumulative expected series.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Sequence

from planpace.date_logic import DateManager
from planpace.schema import (
    ZERO,
    Burst,
    ExpectedCumulativePoint,
    ExpectedDay,
    ExpectedResult,
    quantize_money,
)
from planpace.validator import burst_defect


logger = logging.getLogger(__name__)


class ExpectedSeriesCalculator:
    """
    Builds the expected daily spend and deliverables for a set of bursts.

    Proration is flat: every day of a burst receives the same share. The
    running cumulative is carried unrounded and each output value is
    rounded to 2 decimal places.

    Example:
        >>> calc = ExpectedSeriesCalculator()
        >>> result = calc.expected_series([burst])
        >>> result.daily[0].expected_spend
        Decimal('1428.57')
    """

    def __init__(self, date_manager: Optional[DateManager] = None):
        """
        Initialises the ExpectedSeriesCalculator.

        Args:
            date_manager: DateManager for day counting.
        """
        self._date_manager = date_manager or DateManager()

    def expected_series(self, bursts: Sequence[Burst]) -> ExpectedResult:
        """
        Builds daily and cumulative expected values.

        Bursts with missing or inverted dates, or negative amounts,
        contribute nothing.

        Args:
            bursts: Bursts of one campaign or line item.

        Returns:
            ExpectedResult sorted ascending by date.
        """
        spend_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        deliverables_by_day: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        total_spend = ZERO
        total_deliverables = ZERO

        for burst in bursts:
            defect = burst_defect(burst)
            if defect:
                logger.debug("Skipping burst in expected series: %s", defect)
                continue

            burst_range = (burst.start_date, burst.end_date)
            daily_spend = self._date_manager.per_day_amount(burst.budget_amount, burst_range)
            daily_deliverables = self._date_manager.per_day_amount(
                burst.deliverable_amount, burst_range
            )
            for day in self._date_manager.expand_date_range(burst.start_date, burst.end_date):
                spend_by_day[day] += daily_spend
                deliverables_by_day[day] += daily_deliverables

            total_spend += burst.budget_amount
            total_deliverables += burst.deliverable_amount

        result = ExpectedResult(
            total_spend=quantize_money(total_spend),
            total_deliverables=quantize_money(total_deliverables),
        )

        running_spend = ZERO
        running_deliverables = ZERO
        for day in sorted(spend_by_day):
            running_spend += spend_by_day[day]
            running_deliverables += deliverables_by_day[day]
            result.daily.append(ExpectedDay(
                date=day,
                expected_spend=quantize_money(spend_by_day[day]),
                expected_deliverables=quantize_money(deliverables_by_day[day]),
            ))
            result.cumulative.append(ExpectedCumulativePoint(
                date=day,
                cumulative_expected_spend=quantize_money(running_spend),
                cumulative_expected_deliverables=quantize_money(running_deliverables),
            ))

        return result

    def expected_to_date(self, bursts: Sequence[Burst], as_at: date) -> Decimal:
        """
        Returns the cumulative expected spend at a date.

        Reads the latest cumulative point on or before ``as_at``; a date
        before the first burst day gives 0 and a date after the last gives
        the full total.

        Args:
            bursts: Bursts of one campaign or line item.
            as_at: Date to read the cumulative value at.

        Returns:
            Expected spend to date, rounded to 2 decimal places.
        """
        to_date = ZERO
        for point in self.expected_series(bursts).cumulative:
            if point.date > as_at:
                break
            to_date = point.cumulative_expected_spend
        return to_date

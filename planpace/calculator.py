"""
PlanPace - Pacing Engine Module.

This module compares actual delivery against the expected (prorated) plan.
All calculations use Decimal arithmetic with Banker's Rounding to ensure
financial precision.

Two classifications are provided and are deliberately distinct:
    - classify_status: portfolio rollup (UNDER/ON/OVER) by actual/planned ratio
    - gauge_status: single-campaign gauge (Behind/At risk/On track) by percentage

Classes:
    PacingEngine: Core calculation engine for pacing comparison.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from planpace.date_logic import DateManager
from planpace.schema import (
    ZERO,
    ActualDay,
    BuyType,
    DeliverableMetric,
    ExpectedResult,
    GaugeStatus,
    PacingMetric,
    PacingResult,
    PacingSeriesPoint,
    PacingStatus,
    quantize_money,
)


logger = logging.getLogger(__name__)


DELIVERABLE_KEYS: Dict[BuyType, Optional[str]] = {
    BuyType.CPM: "impressions",
    BuyType.CPC: "clicks",
    BuyType.CPA: "results",
    BuyType.LEADS: "results",
    BuyType.BONUS: "results",
    BuyType.CPV: "video_3s_views",
    BuyType.FIXED_COST: None,
    BuyType.SUMMARY: "deliverable_value",
}

# Checked in order; first family with a matching keyword wins
METRIC_KEYWORDS: List[Tuple[DeliverableMetric, Tuple[str, ...]]] = [
    (DeliverableMetric.VIDEO_3S_VIEWS, (
        "cpv", "video", "view", "3s", "thruplay", "watch", "youtube",
    )),
    (DeliverableMetric.RESULTS, (
        "cpa", "conversion", "result", "lead", "purchase", "sales",
        "performance", "app install", "installs",
    )),
    (DeliverableMetric.CLICKS, ("cpc", "click", "traffic", "link")),
]

_Totals = Tuple[Decimal, Decimal]


class PacingEngine:
    """
    Core calculation engine for campaign pacing.

    All calculations use Decimal arithmetic with Banker's Rounding
    (ROUND_HALF_EVEN) to ensure financial precision and eliminate
    floating-point errors.

    Attributes:
        date_manager: DateManager instance for date expansion.

    Example:
        >>> engine = PacingEngine()
        >>> engine.classify_status(Decimal("500"), Decimal("0"))
        <PacingStatus.OVER: 'OVER'>
        >>> engine.gauge_status(Decimal("85"))
        <GaugeStatus.AT_RISK: 'At risk'>
    """

    # Portfolio classification ratios (actual / planned)
    UNDER_RATIO = Decimal("0.9")
    OVER_RATIO = Decimal("1.1")

    # Gauge banding thresholds (pacing percentage)
    BEHIND_THRESHOLD = Decimal("80")
    AT_RISK_THRESHOLD = Decimal("100")

    def __init__(
        self,
        date_manager: Optional[DateManager] = None,
        under_ratio: Optional[Decimal] = None,
        over_ratio: Optional[Decimal] = None
    ):
        """
        Initialises the PacingEngine.

        Args:
            date_manager: DateManager instance for date expansion.
            under_ratio: Overrides UNDER_RATIO.
            over_ratio: Overrides OVER_RATIO.
        """
        self._date_manager = date_manager or DateManager()
        if under_ratio is not None:
            self.UNDER_RATIO = under_ratio
        if over_ratio is not None:
            self.OVER_RATIO = over_ratio

    def get_deliverable_key(self, buy_type: Any) -> Optional[str]:
        """
        Maps a buy type to the actuals field used as its deliverable.

        Args:
            buy_type: BuyType or buy type label.

        Returns:
            Actuals field name, or None for FIXED COST and unknown types.
        """
        parsed = BuyType.parse(buy_type)
        if parsed is None:
            return None
        return DELIVERABLE_KEYS[parsed]

    def classify_status(self, actual: Decimal, planned: Decimal) -> PacingStatus:
        """
        Classifies pacing for portfolio rollups.

        Rules:
        - planned <= 0: ON when nothing was spent, else OVER
        - actual/planned < 0.9: UNDER
        - actual/planned > 1.1: OVER
        - otherwise: ON

        Args:
            actual: Actual to date.
            planned: Planned (expected) to date.

        Returns:
            PacingStatus enum value.
        """
        if planned <= ZERO:
            return PacingStatus.ON if actual <= ZERO else PacingStatus.OVER

        ratio = actual / planned
        if ratio < self.UNDER_RATIO:
            return PacingStatus.UNDER
        elif ratio > self.OVER_RATIO:
            return PacingStatus.OVER
        else:
            return PacingStatus.ON

    def gauge_status(self, pacing_pct: Decimal) -> GaugeStatus:
        """
        Bands a pacing percentage for the single-campaign gauge.

        Args:
            pacing_pct: Pacing percentage (actual/expected * 100).

        Returns:
            BEHIND below 80, AT_RISK below 100, otherwise ON_TRACK.
        """
        if pacing_pct < self.BEHIND_THRESHOLD:
            return GaugeStatus.BEHIND
        elif pacing_pct < self.AT_RISK_THRESHOLD:
            return GaugeStatus.AT_RISK
        else:
            return GaugeStatus.ON_TRACK

    def calculate_pacing(
        self,
        buy_type: Any,
        actual_daily: Sequence[ActualDay],
        expected: ExpectedResult,
        as_at_date: Optional[date] = None,
        deliverable_key_override: Optional[str] = None
    ) -> PacingResult:
        """
        Compares actual-to-date against expected-to-date delivery.

        To-date values are read at the latest date on or before the as-at
        date and are never interpolated. Both are clamped to the goal
        total when the goal is positive. When there is no as-at date and
        no actuals, expected-to-date is the full goal and actual is 0.

        Args:
            buy_type: BuyType or label selecting the deliverable metric.
            actual_daily: Daily actuals, in any order.
            expected: Expected series built from the same bursts.
            as_at_date: Date to read to-date values at. Defaults to the
                last actual date.
            deliverable_key_override: Actuals field to use instead of the
                buy type's default.

        Returns:
            PacingResult with every numeric field rounded to 2 places.
        """
        deliverable_key = deliverable_key_override or self.get_deliverable_key(buy_type)
        actual_by_day = self._actuals_by_day(actual_daily, deliverable_key)

        if as_at_date is None and actual_by_day:
            as_at_date = max(actual_by_day)

        if as_at_date is None:
            expected_to_date = (expected.total_spend, expected.total_deliverables)
            actual_to_date: _Totals = (ZERO, ZERO)
        else:
            expected_to_date = self._expected_on_or_before(expected, as_at_date)
            actual_to_date = self._actual_on_or_before(actual_by_day, as_at_date)

        spend = self._metric(actual_to_date[0], expected_to_date[0], expected.total_spend)

        deliverable = None
        if deliverable_key:
            deliverable = self._metric(
                actual_to_date[1], expected_to_date[1], expected.total_deliverables
            )

        return PacingResult(
            as_at_date=as_at_date,
            buy_type=BuyType.parse(buy_type),
            deliverable_key=deliverable_key,
            spend=spend,
            deliverable=deliverable,
            series=self._daily_series(expected, actual_by_day, bool(deliverable_key)),
        )

    def infer_deliverable_metric(
        self,
        channel: str,
        buy_type: Optional[str] = None,
        platform: Optional[str] = None
    ) -> DeliverableMetric:
        """
        Guesses the deliverable metric from free-text buy type and platform.

        Keyword families are checked in order: video, then conversions,
        then traffic; anything else counts impressions.

        Args:
            channel: Channel category of the line item.
            buy_type: Buy type label as entered on the plan.
            platform: Platform or publisher name.

        Returns:
            DeliverableMetric enum value.
        """
        combined = f"{buy_type or ''} {platform or ''}".strip().lower()
        for metric, keywords in METRIC_KEYWORDS:
            if any(keyword in combined for keyword in keywords):
                return metric

        logger.debug("No deliverable keyword for %s line item; using impressions", channel)
        return DeliverableMetric.IMPRESSIONS

    def summarise_portfolio(self, results: Sequence[PacingResult]) -> Dict[PacingStatus, int]:
        """
        Counts campaigns per spend pacing status.

        Args:
            results: Pacing results, one per campaign.

        Returns:
            Count for every PacingStatus, including zeros.
        """
        counts = {status: 0 for status in PacingStatus}
        for result in results:
            counts[result.spend.status] += 1
        return counts

    def _metric(self, actual: Decimal, expected: Decimal, goal_total: Decimal) -> PacingMetric:
        """Builds a rounded PacingMetric, clamping to a positive goal."""
        if goal_total > ZERO:
            actual = min(actual, goal_total)
            expected = min(expected, goal_total)

        if expected > ZERO:
            pacing_pct = actual / expected * Decimal("100")
        else:
            pacing_pct = ZERO

        return PacingMetric(
            actual_to_date=quantize_money(actual),
            expected_to_date=quantize_money(expected),
            delta=quantize_money(actual - expected),
            pacing_pct=quantize_money(pacing_pct),
            goal_total=quantize_money(goal_total),
            status=self.classify_status(actual, expected),
        )

    def _actuals_by_day(
        self,
        actual_daily: Sequence[ActualDay],
        deliverable_key: Optional[str]
    ) -> Dict[date, _Totals]:
        """Sums spend and the selected deliverable per day."""
        totals: Dict[date, List[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for day in actual_daily:
            totals[day.date][0] += day.spend
            if deliverable_key:
                value = getattr(day, deliverable_key, None)
                totals[day.date][1] += value if value is not None else ZERO
        return {day: (values[0], values[1]) for day, values in totals.items()}

    def _expected_on_or_before(self, expected: ExpectedResult, as_at: date) -> _Totals:
        latest: _Totals = (ZERO, ZERO)
        for point in expected.cumulative:
            if point.date > as_at:
                break
            latest = (point.cumulative_expected_spend, point.cumulative_expected_deliverables)
        return latest

    def _actual_on_or_before(self, actual_by_day: Dict[date, _Totals], as_at: date) -> _Totals:
        spend = ZERO
        deliverable = ZERO
        for day in sorted(actual_by_day):
            if day > as_at:
                break
            spend += actual_by_day[day][0]
            deliverable += actual_by_day[day][1]
        return spend, deliverable

    def _daily_series(
        self,
        expected: ExpectedResult,
        actual_by_day: Dict[date, _Totals],
        include_deliverable: bool
    ) -> List[PacingSeriesPoint]:
        """
        Pairs expected and actual values for every date in the combined span.

        Dates missing from either side are zero.
        """
        expected_by_day = {
            day.date: (day.expected_spend, day.expected_deliverables) for day in expected.daily
        }
        all_dates = list(expected_by_day) + list(actual_by_day)
        if not all_dates:
            return []

        series = []
        for day in self._date_manager.expand_date_range(min(all_dates), max(all_dates)):
            expected_spend, expected_deliverable = expected_by_day.get(day, (ZERO, ZERO))
            actual_spend, actual_deliverable = actual_by_day.get(day, (ZERO, ZERO))
            series.append(PacingSeriesPoint(
                date=day,
                expected_spend=quantize_money(expected_spend),
                actual_spend=quantize_money(actual_spend),
                expected_deliverable=quantize_money(expected_deliverable) if include_deliverable else ZERO,
                actual_deliverable=quantize_money(actual_deliverable) if include_deliverable else ZERO,
            ))
        return series

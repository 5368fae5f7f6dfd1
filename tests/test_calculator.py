"""
PlanPace - Pacing Engine Tests.

Property-based and unit tests for PacingEngine class.
Tests ensure correct status classification, gauge banding,
to-date clamping and Decimal arithmetic precision.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis.strategies import composite, decimals

from planpace.calculator import PacingEngine
from planpace.date_logic import DateManager
from planpace.expected import ExpectedSeriesCalculator
from planpace.schema import (
    ActualDay,
    Burst,
    BuyType,
    DeliverableMetric,
    ExpectedResult,
    GaugeStatus,
    PacingStatus,
)


@composite
def amounts(draw):
    """Generate amounts from 0 to 1,000,000 with cents."""
    return draw(decimals(
        min_value=Decimal("0"),
        max_value=Decimal("1000000"),
        places=2,
        allow_nan=False,
        allow_infinity=False
    ))


def june_expected(budget: str = "1400", impressions: str = "14000") -> ExpectedResult:
    """Expected series for a Jun 1-14 burst."""
    burst = Burst(
        start_date=date(2025, 6, 1),
        end_date=date(2025, 6, 14),
        budget_amount=Decimal(budget),
        deliverable_amount=Decimal(impressions),
    )
    return ExpectedSeriesCalculator().expected_series([burst])


def actuals(start: date, days: int, spend: str, impressions: str = "0"):
    """Identical actual days starting at ``start``."""
    return [
        ActualDay(
            date=start + timedelta(days=offset),
            spend=Decimal(spend),
            impressions=Decimal(impressions),
        )
        for offset in range(days)
    ]


class TestPacingEngineUnit:
    """Unit tests for PacingEngine edge cases."""

    def setup_method(self) -> None:
        """Initialise PacingEngine for each test."""
        self.dm = DateManager()
        self.engine = PacingEngine(self.dm)

    @pytest.mark.parametrize("buy_type,key", [
        ("CPM", "impressions"),
        ("cpc", "clicks"),
        ("CPA", "results"),
        ("LEADS", "results"),
        ("BONUS", "results"),
        ("CPV", "video_3s_views"),
        ("FIXED COST", None),
        ("fixed_cost", None),
        ("SUMMARY", "deliverable_value"),
        ("barter", None),
        (None, None),
    ])
    def test_deliverable_key_by_buy_type(self, buy_type, key) -> None:
        """Verify buy type to deliverable field mapping."""
        assert self.engine.get_deliverable_key(buy_type) == key

    def test_classify_status_bands(self) -> None:
        """Verify UNDER/ON/OVER ratio boundaries."""
        planned = Decimal("1000")
        assert self.engine.classify_status(Decimal("899.99"), planned) == PacingStatus.UNDER
        assert self.engine.classify_status(Decimal("900"), planned) == PacingStatus.ON
        assert self.engine.classify_status(Decimal("1100"), planned) == PacingStatus.ON
        assert self.engine.classify_status(Decimal("1100.01"), planned) == PacingStatus.OVER

    def test_classify_status_without_plan(self) -> None:
        """Verify no plan is ON with no spend and OVER with any spend."""
        assert self.engine.classify_status(Decimal("0"), Decimal("0")) == PacingStatus.ON
        assert self.engine.classify_status(Decimal("500"), Decimal("0")) == PacingStatus.OVER

    def test_custom_ratios(self) -> None:
        """Verify ratios can be overridden per engine."""
        engine = PacingEngine(under_ratio=Decimal("0.5"), over_ratio=Decimal("2"))
        assert engine.classify_status(Decimal("600"), Decimal("1000")) == PacingStatus.ON
        assert PacingEngine.UNDER_RATIO == Decimal("0.9")

    def test_gauge_status_bands(self) -> None:
        """Verify Behind below 80, At risk below 100, On track otherwise."""
        assert self.engine.gauge_status(Decimal("79.99")) == GaugeStatus.BEHIND
        assert self.engine.gauge_status(Decimal("80")) == GaugeStatus.AT_RISK
        assert self.engine.gauge_status(Decimal("99.99")) == GaugeStatus.AT_RISK
        assert self.engine.gauge_status(Decimal("100")) == GaugeStatus.ON_TRACK

    def test_spend_against_no_plan_is_over(self) -> None:
        """Verify expected 0 and actual 500 gives pacing 0% and OVER."""
        result = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 1, "500"), ExpectedResult()
        )

        assert result.spend.pacing_pct == Decimal("0.00")
        assert result.spend.status == PacingStatus.OVER
        assert result.spend.actual_to_date == Decimal("500.00")

    def test_as_at_defaults_to_last_actual(self) -> None:
        """Verify as-at is the last actual date and to-date values match it."""
        result = self.engine.calculate_pacing(
            BuyType.CPM, actuals(date(2025, 6, 1), 7, "100", "1000"), june_expected()
        )

        assert result.as_at_date == date(2025, 6, 7)
        assert result.spend.expected_to_date == Decimal("700.00")
        assert result.spend.actual_to_date == Decimal("700.00")
        assert result.spend.pacing_pct == Decimal("100.00")
        assert result.spend.status == PacingStatus.ON
        assert result.deliverable.expected_to_date == Decimal("7000.00")
        assert result.deliverable.actual_to_date == Decimal("7000.00")

    def test_explicit_as_at_ignores_later_actuals(self) -> None:
        """Verify actuals after the as-at date are not counted."""
        result = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 7, "100"), june_expected(),
            as_at_date=date(2025, 6, 3)
        )

        assert result.spend.actual_to_date == Decimal("300.00")
        assert result.spend.expected_to_date == Decimal("300.00")

    def test_no_as_at_and_no_actuals(self) -> None:
        """Verify expected is the full total and actual is 0."""
        result = self.engine.calculate_pacing("CPM", [], june_expected())

        assert result.as_at_date is None
        assert result.spend.expected_to_date == Decimal("1400.00")
        assert result.spend.actual_to_date == Decimal("0.00")
        assert result.spend.status == PacingStatus.UNDER

    def test_to_date_values_clamped_to_goal(self) -> None:
        """Verify overspend is clamped to the goal total."""
        result = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 20, "100"), june_expected()
        )

        assert result.spend.actual_to_date == Decimal("1400.00")
        assert result.spend.expected_to_date == Decimal("1400.00")
        assert result.spend.goal_total == Decimal("1400.00")
        assert result.spend.delta == Decimal("0.00")

    def test_fixed_cost_has_no_deliverable(self) -> None:
        """Verify FIXED COST compares spend only."""
        result = self.engine.calculate_pacing(
            "FIXED COST", actuals(date(2025, 6, 1), 3, "100"), june_expected()
        )

        assert result.deliverable_key is None
        assert result.deliverable is None

    def test_deliverable_key_override(self) -> None:
        """Verify an explicit deliverable field wins over the buy type."""
        days = [ActualDay(date(2025, 6, 1), spend=Decimal("100"), clicks=Decimal("42"))]

        result = self.engine.calculate_pacing(
            "CPM", days, june_expected(), deliverable_key_override="clicks"
        )

        assert result.deliverable_key == "clicks"
        assert result.deliverable.actual_to_date == Decimal("42.00")

    def test_duplicate_actual_dates_are_summed(self) -> None:
        """Verify two rows for the same day add together."""
        days = actuals(date(2025, 6, 1), 1, "60") + actuals(date(2025, 6, 1), 1, "40")

        result = self.engine.calculate_pacing("CPM", days, june_expected())

        assert result.spend.actual_to_date == Decimal("100.00")
        assert result.series[0].actual_spend == Decimal("100.00")

    def test_series_fills_gaps_with_zero(self) -> None:
        """Verify the series spans both inputs with zero-filled gaps."""
        days = [ActualDay(date(2025, 6, 16), spend=Decimal("5"))]

        result = self.engine.calculate_pacing(
            "CPM", days, june_expected(), as_at_date=date(2025, 6, 16)
        )

        assert len(result.series) == 16
        assert result.series[0].date == date(2025, 6, 1)
        gap = result.series[14]
        assert gap.date == date(2025, 6, 15)
        assert gap.expected_spend == Decimal("0.00")
        assert gap.actual_spend == Decimal("0.00")
        assert result.series[-1].actual_spend == Decimal("5.00")

    def test_series_empty_without_data(self) -> None:
        """Verify no expected and no actual days gives an empty series."""
        result = self.engine.calculate_pacing("CPM", [], ExpectedResult())
        assert result.series == []

    @pytest.mark.parametrize("buy_type,platform,metric", [
        ("CPV", "YouTube", DeliverableMetric.VIDEO_3S_VIEWS),
        ("Conversions", "Meta", DeliverableMetric.RESULTS),
        ("Traffic", "LinkedIn", DeliverableMetric.CLICKS),
        ("Reach", "TikTok", DeliverableMetric.IMPRESSIONS),
        (None, None, DeliverableMetric.IMPRESSIONS),
    ])
    def test_infer_deliverable_metric(self, buy_type, platform, metric) -> None:
        """Verify keyword families are checked in order."""
        assert self.engine.infer_deliverable_metric("social", buy_type, platform) == metric

    def test_summarise_portfolio(self) -> None:
        """Verify status counts include zero entries."""
        on_plan = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 7, "100"), june_expected()
        )
        no_plan = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 1, "500"), ExpectedResult()
        )

        counts = self.engine.summarise_portfolio([on_plan, no_plan])

        assert counts == {PacingStatus.UNDER: 0, PacingStatus.ON: 1, PacingStatus.OVER: 1}


class TestPacingEngineProperty:
    """Property-based tests for PacingEngine."""

    def setup_method(self) -> None:
        """Initialise PacingEngine for each test."""
        self.engine = PacingEngine()

    @given(amounts(), amounts())
    @settings(max_examples=200)
    def test_classification_matches_ratio(self, actual: Decimal, planned: Decimal) -> None:
        """
        Property: Status follows the actual/planned ratio bands.
        """
        status = self.engine.classify_status(actual, planned)

        if planned <= 0:
            expected = PacingStatus.ON if actual <= 0 else PacingStatus.OVER
        elif actual / planned < Decimal("0.9"):
            expected = PacingStatus.UNDER
        elif actual / planned > Decimal("1.1"):
            expected = PacingStatus.OVER
        else:
            expected = PacingStatus.ON
        assert status == expected

    @given(amounts())
    @settings(max_examples=100)
    def test_to_date_never_exceeds_goal(self, daily_spend: Decimal) -> None:
        """
        Property: Clamped to-date values never exceed a positive goal.
        """
        result = self.engine.calculate_pacing(
            "CPM", actuals(date(2025, 6, 1), 30, str(daily_spend)), june_expected()
        )

        assert result.spend.actual_to_date <= result.spend.goal_total
        assert result.spend.expected_to_date <= result.spend.goal_total

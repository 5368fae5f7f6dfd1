"""
PlanPace - Data Schema Module.

This module defines the value objects produced and consumed by the engine.
All monetary fields use Decimal type to ensure financial precision, and all
dates are date-only (no time-of-day component).

Agency Context:
    - A burst's budget is either gross (fee-inclusive) or net media
    - When the client pays the publisher directly, the agency bills the fee only
    - Production bursts carry no agency fee

Classes:
    PacingStatus: Portfolio pacing classification (UNDER/ON/OVER).
    GaugeStatus: Single-campaign gauge banding (Behind/At risk/On track).
    BuyType: Buy types that select the deliverable metric.
    DeliverableMetric: Delivery metric families.
    Burst: One contiguous dated spend/delivery commitment.
    FeeAllocation: Media/fee split of a burst budget.
    MonthlyBillingRow: One calendar month of a campaign billing schedule.
    ExpectedDay, ExpectedCumulativePoint, ExpectedResult: Expected series.
    ActualDay: One day of actual delivery.
    PacingMetric, PacingSeriesPoint, PacingResult: Pacing comparison output.
    CampaignMaster, LineItem, PlanVersion: Campaign version records.
    AccrualLine: Delivery versus billing for one line item in a month.
    AccrualRow: One (client, campaign, month) finance accrual row.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_EVEN
from enum import Enum
from typing import Any, Dict, List, Optional


# Currency amounts are reported to the cent
MONEY_PLACES = Decimal("0.01")

# Single calendar used for "today"/"yesterday" boundary decisions
CANONICAL_TIMEZONE = "Australia/Melbourne"

# Channel whose bursts skip fee allocation
PRODUCTION_CHANNEL = "production"

# Maximum absolute gap between a manual schedule and the campaign budget
MANUAL_SCHEDULE_TOLERANCE = Decimal("10")

# Month-level service lines of the accrual breakdown, in display order
AD_SERVING_LINE_KEY = "__service__adserving"
PRODUCTION_LINE_KEY = "__service__production"
FEES_LINE_KEY = "__service__fees"
ACCRUAL_SERVICE_LINES = {
    AD_SERVING_LINE_KEY: "Adserving & Tech Fees",
    PRODUCTION_LINE_KEY: "Production",
    FEES_LINE_KEY: "Fees",
}

ZERO = Decimal("0")


def quantize_money(amount: Decimal) -> Decimal:
    """
    Rounds an amount to 2 decimal places using Banker's Rounding.

    Args:
        amount: Unrounded Decimal amount.

    Returns:
        Amount quantized to cents.

    Example:
        >>> quantize_money(Decimal("1428.575"))
        Decimal('1428.58')
    """
    return amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)


class PacingStatus(Enum):
    """
    Portfolio pacing classification based on the actual/planned ratio.

    Attributes:
        UNDER: Ratio below 0.9.
        ON: Ratio between 0.9 and 1.1 inclusive.
        OVER: Ratio above 1.1, or any spend against no plan.
    """

    UNDER = "UNDER"
    ON = "ON"
    OVER = "OVER"


class GaugeStatus(Enum):
    """
    Single-campaign gauge banding based on the pacing percentage.

    Attributes:
        BEHIND: Pacing below 80%.
        AT_RISK: Pacing from 80% up to (not including) 100%.
        ON_TRACK: Pacing at or above 100%.
    """

    BEHIND = "Behind"
    AT_RISK = "At risk"
    ON_TRACK = "On track"


class BuyType(Enum):
    """Media buy types. The value is the canonical upper-case label."""

    CPM = "CPM"
    CPC = "CPC"
    CPA = "CPA"
    CPV = "CPV"
    LEADS = "LEADS"
    BONUS = "BONUS"
    FIXED_COST = "FIXED COST"
    SUMMARY = "SUMMARY"

    @classmethod
    def parse(cls, value: Any) -> Optional["BuyType"]:
        """
        Parses a buy type label, tolerating case and spacing variations.

        Args:
            value: BuyType, or a label such as "cpm" or "fixed_cost".

        Returns:
            Matching BuyType, or None when the label is unknown.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        label = " ".join(str(value).replace("_", " ").split()).upper()
        for member in cls:
            if member.value == label:
                return member
        return None


class DeliverableMetric(Enum):
    """Delivery metric families used when a buy type is not explicit."""

    IMPRESSIONS = "IMPRESSIONS"
    CLICKS = "CLICKS"
    RESULTS = "RESULTS"
    VIDEO_3S_VIEWS = "VIDEO_3S_VIEWS"


@dataclass
class Burst:
    """
    One contiguous, dated slice of spend/delivery commitment.

    Important Definitions:
        budget_includes_fees: The budget is gross (fee-inclusive). When
            False the budget is net media and the fee sits on top.
        client_pays_for_media: The client pays the publisher directly,
            so the agency bills the fee only.

    Attributes:
        start_date: First day of the burst (inclusive).
        end_date: Last day of the burst (inclusive).
        budget_amount: Burst budget in currency units.
        deliverable_amount: Planned deliverables (impressions, clicks...).
        fee_percentage: Agency fee percentage, usable in [0, 100).
        client_pays_for_media: Media is paid directly by the client.
        budget_includes_fees: Budget is fee-inclusive.
        channel_category: Channel bucket (search, social, production...).
        line_item_id: Owning line item identifier, if known.
        buy_type: Buy type label of the owning line item, if known.
        no_ad_serving: The burst opts out of ad-serving tech fees.
    """

    start_date: date
    end_date: date
    budget_amount: Decimal
    deliverable_amount: Decimal = ZERO
    fee_percentage: Decimal = ZERO
    client_pays_for_media: bool = False
    budget_includes_fees: bool = False
    channel_category: str = "search"
    line_item_id: Optional[str] = None
    buy_type: Optional[str] = None
    no_ad_serving: bool = False

    @property
    def total_days(self) -> int:
        """Number of days covered, inclusive of both endpoints."""
        return (self.end_date - self.start_date).days + 1

    @property
    def is_production(self) -> bool:
        """True for production bursts, which carry no agency fee."""
        return self.channel_category.strip().lower() == PRODUCTION_CHANNEL


@dataclass(frozen=True)
class FeeAllocation:
    """
    Media and fee split of a burst budget (unrounded).

    Attributes:
        media_amount: Amount the agency bills for media.
        fee_amount: Agency fee amount.
    """

    media_amount: Decimal
    fee_amount: Decimal

    @property
    def total_amount(self) -> Decimal:
        """Media plus fee."""
        return self.media_amount + self.fee_amount


@dataclass
class MonthlyBillingRow:
    """
    One calendar month of a single campaign's billing schedule.

    Totals are never stored: ``media_amount`` and ``total_amount`` are
    recomputed from the channel amounts, the fee and the ad-serving amount
    on every read, so an operator edit to any component is reflected
    immediately.

    Attributes:
        month: Month key in ``YYYY-MM`` format.
        month_label: Human-readable label, e.g. "June 2025".
        channel_amounts: Amount per channel present in the schedule.
        fee_amount: Agency fee billed in the month.
        ad_serving_amount: Ad-serving and tech fees billed in the month.
        line_item_amounts: Media per lower-cased line item id. A breakdown
            of ``channel_amounts``; not part of the total.
    """

    month: str
    month_label: str
    channel_amounts: Dict[str, Decimal] = field(default_factory=dict)
    fee_amount: Decimal = ZERO
    ad_serving_amount: Decimal = ZERO
    line_item_amounts: Dict[str, Decimal] = field(default_factory=dict)

    @property
    def media_amount(self) -> Decimal:
        """Sum of all channel amounts."""
        return sum(self.channel_amounts.values(), ZERO)

    @property
    def total_amount(self) -> Decimal:
        """Channel amounts plus fee and ad serving."""
        return self.media_amount + self.fee_amount + self.ad_serving_amount


@dataclass(frozen=True)
class ExpectedDay:
    """Prorated expected spend and deliverables for one day."""

    date: date
    expected_spend: Decimal
    expected_deliverables: Decimal


@dataclass(frozen=True)
class ExpectedCumulativePoint:
    """Running expected totals up to and including one day."""

    date: date
    cumulative_expected_spend: Decimal
    cumulative_expected_deliverables: Decimal


@dataclass
class ExpectedResult:
    """
    Expected daily series for a set of bursts.

    Attributes:
        daily: Expected values per day, ascending by date.
        cumulative: Running totals parallel to ``daily``.
        total_spend: Full-campaign expected spend.
        total_deliverables: Full-campaign expected deliverables.
    """

    daily: List[ExpectedDay] = field(default_factory=list)
    cumulative: List[ExpectedCumulativePoint] = field(default_factory=list)
    total_spend: Decimal = ZERO
    total_deliverables: Decimal = ZERO


@dataclass
class ActualDay:
    """
    One day of actual delivery from the analytics source.

    Attributes:
        date: Delivery date.
        spend: Amount spent.
        impressions: Impressions served.
        clicks: Clicks recorded.
        results: Conversions/results recorded.
        video_3s_views: Three-second video views.
        deliverable_value: Explicit deliverable for SUMMARY buys.
    """

    date: date
    spend: Decimal = ZERO
    impressions: Decimal = ZERO
    clicks: Decimal = ZERO
    results: Decimal = ZERO
    video_3s_views: Decimal = ZERO
    deliverable_value: Optional[Decimal] = None


@dataclass(frozen=True)
class PacingMetric:
    """
    To-date comparison of one measure (spend or a deliverable).

    All values are rounded to 2 decimal places.
    """

    actual_to_date: Decimal
    expected_to_date: Decimal
    delta: Decimal
    pacing_pct: Decimal
    goal_total: Decimal
    status: PacingStatus


@dataclass(frozen=True)
class PacingSeriesPoint:
    """Expected and actual values for one day, for charting."""

    date: date
    expected_spend: Decimal
    actual_spend: Decimal
    expected_deliverable: Decimal
    actual_deliverable: Decimal


@dataclass
class PacingResult:
    """
    Comparison of actual-to-date against expected-to-date delivery.

    Attributes:
        as_at_date: Date the to-date figures are read at, if any.
        buy_type: Buy type the deliverable metric was selected by.
        deliverable_key: Actuals field used as the deliverable, if any.
        spend: Spend comparison.
        deliverable: Deliverable comparison, when a metric applies.
        series: Daily expected/actual pairs.
    """

    as_at_date: Optional[date]
    buy_type: Optional[BuyType]
    deliverable_key: Optional[str]
    spend: PacingMetric
    deliverable: Optional[PacingMetric] = None
    series: List[PacingSeriesPoint] = field(default_factory=list)


@dataclass
class CampaignMaster:
    """
    Master record pointing at a campaign's latest version number.

    Attributes:
        id: Master record id (linking id on versions).
        campaign_id: Campaign identifier (MBA number).
        version_number: Latest version number, raw as stored.
    """

    id: Optional[int]
    campaign_id: str
    version_number: Any = None


@dataclass
class LineItem:
    """One planned placement within a campaign version."""

    line_item_id: str
    name: str = ""
    channel_category: str = "search"
    bursts: List[Burst] = field(default_factory=list)


@dataclass
class PlanVersion:
    """
    One snapshot of a campaign's full plan.

    Version numbers and timestamps are kept raw; the version selector
    parses them and treats unparseable values as absent.

    Attributes:
        id: Internal record id.
        campaign_id: Campaign identifier (MBA number).
        master_id: Linking id to the campaign master record.
        version_number: Version number, raw as stored.
        updated_at: Last update timestamp, raw as stored.
        created_at: Creation timestamp, raw as stored.
        client_name: Client display name.
        client_slug: Client slug; derived from the name when empty.
        campaign_name: Campaign display name.
        line_items: Delivery schedule as line items with bursts.
        billing_schedule: Billing schedule rows, including manual edits.
    """

    id: Optional[int]
    campaign_id: str
    master_id: Optional[int] = None
    version_number: Any = None
    updated_at: Any = None
    created_at: Any = None
    client_name: str = ""
    client_slug: str = ""
    campaign_name: str = ""
    line_items: List[LineItem] = field(default_factory=list)
    billing_schedule: Optional[List[MonthlyBillingRow]] = None


@dataclass
class AccrualLine:
    """
    Delivery versus billing for one line item (or month-level service) in a month.

    Line items are keyed by lower-cased line item id. Month-level services
    use the reserved keys in ``ACCRUAL_SERVICE_LINES``.
    """

    line_item_key: str
    line_item_name: str
    delivery_amount: Decimal = ZERO
    billing_amount: Decimal = ZERO

    @property
    def difference(self) -> Decimal:
        """``delivery_amount - billing_amount``."""
        return self.delivery_amount - self.billing_amount


@dataclass
class AccrualRow:
    """
    One (client, campaign, month) finance accrual row.

    ``media_amount`` and ``fee_amount`` are the authoritative figures: taken
    from the billing schedule when the version has one, else from the
    delivery bursts. ``delivery_amount`` and ``billing_amount`` expose both
    sides so finance can see the difference, and ``lines`` breaks that
    difference down per line item.

    Attributes:
        client_name: Client display name.
        client_slug: Client slug.
        campaign_id: Campaign identifier (MBA number).
        campaign_name: Campaign display name.
        version_number: Version the row was built from.
        month: Month key in ``YYYY-MM`` format.
        media_amount: Media billed by the agency.
        fee_amount: Agency fee.
        ad_serving_amount: Ad-serving and tech fees from the billing schedule.
        client_paid_media_amount: Media paid directly by the client.
        delivery_amount: Media plus fee derived from delivery bursts.
        billing_amount: Total from the billing schedule.
        difference: ``delivery_amount - billing_amount``.
        source: "billing", "delivery" or "none".
        lines: Per line item and per service breakdown.
    """

    client_name: str
    client_slug: str
    campaign_id: str
    campaign_name: str
    version_number: int
    month: str
    media_amount: Decimal = ZERO
    fee_amount: Decimal = ZERO
    ad_serving_amount: Decimal = ZERO
    client_paid_media_amount: Decimal = ZERO
    delivery_amount: Decimal = ZERO
    billing_amount: Decimal = ZERO
    difference: Decimal = ZERO
    source: str = "none"
    lines: List[AccrualLine] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        """Media plus fee and ad serving."""
        return self.media_amount + self.fee_amount + self.ad_serving_amount

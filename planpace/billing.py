"""
PlanPace - Billing Schedule Module.

Builds a campaign's monthly billing schedule from its bursts and manages
the operator-owned manual override of that schedule.

Each burst's media and fee amounts are prorated into every calendar month
it overlaps. Ad-served channels also bill a tech fee on their prorated
deliverables. Amounts are rounded to cents once per month after all bursts
have been summed, never per burst.

Classes:
    BillingScheduleBuilder: Computes the auto schedule from bursts.
    CampaignBillingSchedule: Auto/manual schedule state for one campaign.
    ScheduleTotals: Per-channel and grand totals of a schedule.

Functions:
    ad_serving_rates: Builds the per-channel ad-serving rate table.
    validate_manual_schedule: Reconciles manual rows to the campaign budget.
    schedule_totals: Sums a schedule per channel.
    schedule_to_entries: Export shape omitting zero amounts.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from planpace.date_logic import DateManager
from planpace.exceptions import BudgetMismatchError
from planpace.fees import FeeAllocator
from planpace.schema import (
    MANUAL_SCHEDULE_TOLERANCE,
    PRODUCTION_CHANNEL,
    ZERO,
    Burst,
    BuyType,
    FeeAllocation,
    MonthlyBillingRow,
    quantize_money,
)
from planpace.validator import burst_defect


logger = logging.getLogger(__name__)

BurstsByChannel = Dict[str, List[Burst]]

# Channels billed ad-serving tech fees, and the client rate each one uses
AD_SERVED_CHANNELS = {
    "digivideo": "video",
    "bvod": "video",
    "progvideo": "video",
    "progbvod": "video",
    "digiaudio": "audio",
    "progaudio": "audio",
    "digidisplay": "display",
    "progdisplay": "display",
    "progooh": "impression",
}

CPM_UNITS = Decimal("1000")


def channel_key(channel: str) -> str:
    """Folds "Digi Video", "digi_video" and "digiVideo" to "digivideo"."""
    return re.sub(r"[^a-z0-9]", "", (channel or "").lower())


def ad_serving_rates(
    video: Decimal = ZERO,
    audio: Decimal = ZERO,
    display: Decimal = ZERO,
    impression: Decimal = ZERO
) -> Dict[str, Decimal]:
    """
    Builds the per-channel ad-serving rate table from a client's rates.

    Rates are per deliverable, or per thousand deliverables for CPM buys.

    Returns:
        Rate per folded channel key for every ad-served channel.
    """
    by_group = {"video": video, "audio": audio, "display": display, "impression": impression}
    return {channel: by_group[group] for channel, group in AD_SERVED_CHANNELS.items()}


@dataclass
class ScheduleTotals:
    """
    Totals of a billing schedule.

    Attributes:
        channel_amounts: Sum per channel across all months.
        fee_amount: Sum of monthly fees.
        ad_serving_amount: Sum of monthly ad-serving fees.
        total_amount: Sum of monthly totals.
    """

    channel_amounts: Dict[str, Decimal] = field(default_factory=dict)
    fee_amount: Decimal = ZERO
    ad_serving_amount: Decimal = ZERO
    total_amount: Decimal = ZERO


class BillingScheduleBuilder:
    """
    Computes monthly billing rows from bursts grouped by channel.

    The output depends only on the inputs: building twice with the same
    bursts and bounds yields equal rows.

    Example:
        >>> builder = BillingScheduleBuilder()
        >>> rows = builder.build_auto_schedule(
        ...     {"search": [burst]}, date(2025, 6, 1), date(2025, 6, 30)
        ... )
        >>> rows[0].channel_amounts["search"], rows[0].fee_amount
        (Decimal('20000.00'), Decimal('5000.00'))
    """

    def __init__(
        self,
        date_manager: Optional[DateManager] = None,
        fee_allocator: Optional[FeeAllocator] = None,
        ad_serving_rates: Optional[Dict[str, Decimal]] = None
    ):
        """
        Initialises the BillingScheduleBuilder.

        Args:
            date_manager: DateManager for overlap and month calculations.
            fee_allocator: FeeAllocator for media/fee splits.
            ad_serving_rates: Ad-serving rate per channel. Channels without
                a rate bill no ad serving.
        """
        self._date_manager = date_manager or DateManager()
        self._fee_allocator = fee_allocator or FeeAllocator()
        self._ad_serving_rates = {
            channel_key(channel): Decimal(rate)
            for channel, rate in (ad_serving_rates or {}).items()
        }

    def build_auto_schedule(
        self,
        bursts_by_channel: BurstsByChannel,
        campaign_start: Optional[date],
        campaign_end: Optional[date]
    ) -> List[MonthlyBillingRow]:
        """
        Builds one billing row per month overlapping the campaign.

        Every channel in ``bursts_by_channel`` gets an entry in every row,
        zero when nothing falls in that month. Bursts in the production
        channel are billed as media only.

        Args:
            bursts_by_channel: Bursts keyed by channel category.
            campaign_start: First day of the campaign.
            campaign_end: Last day of the campaign.

        Returns:
            Rows in ascending month order; empty when the bounds are
            missing or inverted.
        """
        if campaign_start is None or campaign_end is None or campaign_end < campaign_start:
            logger.debug("No billing months for campaign bounds %s..%s", campaign_start, campaign_end)
            return []

        channels = list(bursts_by_channel.keys())
        allocations = self._allocate(bursts_by_channel)

        rows = []
        for month_start in self._date_manager.months_between(campaign_start, campaign_end):
            window = self._date_manager.month_bounds(month_start.year, month_start.month)

            channel_sums = {channel: ZERO for channel in channels}
            line_item_sums: Dict[str, Decimal] = {}
            fee_sum = ZERO
            ad_serving_sum = ZERO
            for channel, burst, allocation in allocations:
                burst_range = (burst.start_date, burst.end_date)
                media = self._date_manager.prorate(allocation.media_amount, burst_range, window)
                channel_sums[channel] += media
                fee_sum += self._date_manager.prorate(allocation.fee_amount, burst_range, window)
                ad_serving_sum += self._ad_serving_cost(channel, burst, window)

                # Production is billed as a service, not under its line item
                line_item_key = (burst.line_item_id or "").strip().lower()
                if line_item_key and not self._is_production(channel, burst):
                    line_item_sums[line_item_key] = line_item_sums.get(line_item_key, ZERO) + media

            rows.append(MonthlyBillingRow(
                month=self._date_manager.month_key(month_start),
                month_label=self._date_manager.month_label(month_start),
                channel_amounts={
                    channel: quantize_money(amount) for channel, amount in channel_sums.items()
                },
                fee_amount=quantize_money(fee_sum),
                ad_serving_amount=quantize_money(ad_serving_sum),
                line_item_amounts={
                    key: quantize_money(amount) for key, amount in line_item_sums.items()
                },
            ))

        return rows

    def _ad_serving_cost(self, channel: str, burst: Burst, window: tuple) -> Decimal:
        """
        Ad-serving tech fee of one burst within a month (unrounded).

        The burst's deliverables are prorated into the month and charged at
        the channel rate, per thousand for CPM buys.
        """
        if burst.no_ad_serving:
            return ZERO
        rate = self._ad_serving_rates.get(channel_key(channel))
        if not rate:
            return ZERO

        share = self._date_manager.prorate(
            burst.deliverable_amount, (burst.start_date, burst.end_date), window
        )
        if BuyType.parse(burst.buy_type) is BuyType.CPM:
            return share / CPM_UNITS * rate
        return share * rate

    def _allocate(self, bursts_by_channel: BurstsByChannel) -> List[tuple]:
        """
        Resolves each usable burst's full media/fee split once.

        Returns:
            List of (channel, burst, FeeAllocation) tuples.
        """
        allocations = []
        for channel, bursts in bursts_by_channel.items():
            for burst in bursts or []:
                defect = burst_defect(burst)
                if defect:
                    logger.debug("Skipping %s burst: %s", channel, defect)
                    continue

                if self._is_production(channel, burst):
                    allocation = FeeAllocation(media_amount=burst.budget_amount, fee_amount=ZERO)
                else:
                    allocation = self._fee_allocator.allocate_burst(burst)
                allocations.append((channel, burst, allocation))
        return allocations

    def _is_production(self, channel: str, burst: Burst) -> bool:
        return channel.strip().lower() == PRODUCTION_CHANNEL or burst.is_production


def validate_manual_schedule(
    rows: Sequence[MonthlyBillingRow],
    campaign_budget: Decimal,
    tolerance: Decimal = MANUAL_SCHEDULE_TOLERANCE
) -> Decimal:
    """
    Checks that manual rows reconcile to the campaign budget.

    Args:
        rows: Operator-edited billing rows.
        campaign_budget: Budget the schedule must add up to.
        tolerance: Maximum accepted absolute difference.

    Returns:
        The schedule total.

    Raises:
        BudgetMismatchError: If ``abs(total - budget)`` exceeds tolerance.
    """
    schedule_total = sum((row.total_amount for row in rows), ZERO)
    if abs(schedule_total - campaign_budget) > tolerance:
        error = BudgetMismatchError(schedule_total, campaign_budget, tolerance)
        logger.info("Rejected manual billing schedule: %s", error)
        raise error
    return schedule_total


class CampaignBillingSchedule:
    """
    Billing schedule state for a single campaign.

    In auto mode the rows are recomputed from the bursts whenever they
    change. Saving a manual schedule switches to manual mode: the saved
    rows replace the auto rows until ``reset_billing`` is called. Writes
    are last-write-wins.

    Attributes:
        campaign_budget: Budget manual schedules reconcile to.
        tolerance: Maximum accepted manual schedule mismatch.
    """

    def __init__(
        self,
        bursts_by_channel: BurstsByChannel,
        campaign_start: Optional[date],
        campaign_end: Optional[date],
        campaign_budget: Optional[Decimal] = None,
        tolerance: Decimal = MANUAL_SCHEDULE_TOLERANCE,
        builder: Optional[BillingScheduleBuilder] = None
    ):
        """
        Initialises the schedule in auto mode.

        Args:
            bursts_by_channel: Bursts keyed by channel category.
            campaign_start: First day of the campaign.
            campaign_end: Last day of the campaign.
            campaign_budget: Budget manual rows must reconcile to. Defaults
                to the auto schedule total.
            tolerance: Maximum accepted manual schedule mismatch.
            builder: BillingScheduleBuilder used for the auto rows.
        """
        self._builder = builder or BillingScheduleBuilder()
        self._bursts_by_channel = bursts_by_channel
        self._campaign_start = campaign_start
        self._campaign_end = campaign_end
        self.campaign_budget = campaign_budget
        self.tolerance = tolerance
        self._auto_rows = self._build()
        self._manual_rows: Optional[List[MonthlyBillingRow]] = None

    @property
    def is_manual(self) -> bool:
        """True while an operator-saved schedule is in force."""
        return self._manual_rows is not None

    @property
    def rows(self) -> List[MonthlyBillingRow]:
        """Manual rows in manual mode, auto rows otherwise."""
        if self._manual_rows is not None:
            return self._manual_rows
        return self._auto_rows

    @property
    def auto_rows(self) -> List[MonthlyBillingRow]:
        """Rows computed from the current bursts, regardless of mode."""
        return self._auto_rows

    def save_manual_schedule(
        self,
        rows: Sequence[MonthlyBillingRow],
        campaign_budget: Optional[Decimal] = None
    ) -> None:
        """
        Validates and stores an operator-edited schedule.

        The rows are deep-copied, so later edits to the caller's objects do
        not leak into the stored schedule.

        Args:
            rows: Manual billing rows.
            campaign_budget: Budget to reconcile to. Defaults to the
                configured budget, then to the auto schedule total.

        Raises:
            BudgetMismatchError: If the rows do not reconcile.
        """
        budget = campaign_budget
        if budget is None:
            budget = self.campaign_budget
        if budget is None:
            budget = schedule_totals(self._auto_rows).total_amount

        validate_manual_schedule(rows, budget, self.tolerance)
        self._manual_rows = copy.deepcopy(list(rows))
        logger.debug("Saved manual billing schedule with %d months", len(self._manual_rows))

    def reset_billing(self) -> List[MonthlyBillingRow]:
        """
        Discards manual edits and returns freshly computed auto rows.
        """
        self._manual_rows = None
        self._auto_rows = self._build()
        return self._auto_rows

    def update_bursts(
        self,
        bursts_by_channel: BurstsByChannel,
        campaign_start: Optional[date] = None,
        campaign_end: Optional[date] = None
    ) -> List[MonthlyBillingRow]:
        """
        Replaces the bursts (and optionally the campaign bounds).

        Auto rows are recomputed; a manual schedule stays in force until
        reset.

        Returns:
            The rows now in force.
        """
        self._bursts_by_channel = bursts_by_channel
        if campaign_start is not None:
            self._campaign_start = campaign_start
        if campaign_end is not None:
            self._campaign_end = campaign_end
        self._auto_rows = self._build()
        return self.rows

    def edit_manual_amount(self, month: str, channel: str, amount: Decimal) -> MonthlyBillingRow:
        """
        Edits one channel amount (or the fee) of a manual row.

        Pass ``channel="fee"`` to edit the fee and ``channel="ad_serving"``
        to edit the ad-serving amount. The row total follows the
        edit. Reconciliation is checked on the next save.

        Args:
            month: Month key of the row, ``YYYY-MM``.
            channel: Channel to edit, "fee" or "ad_serving".
            amount: New amount.

        Returns:
            The edited row.

        Raises:
            ValueError: If not in manual mode or the month is unknown.
        """
        if self._manual_rows is None:
            raise ValueError("Billing schedule is not in manual mode")

        for row in self._manual_rows:
            if row.month == month:
                if channel == "fee":
                    row.fee_amount = amount
                elif channel == "ad_serving":
                    row.ad_serving_amount = amount
                else:
                    row.channel_amounts[channel] = amount
                return row

        raise ValueError(f"No billing row for month {month}")

    def _build(self) -> List[MonthlyBillingRow]:
        return self._builder.build_auto_schedule(
            self._bursts_by_channel, self._campaign_start, self._campaign_end
        )


def schedule_totals(rows: Sequence[MonthlyBillingRow]) -> ScheduleTotals:
    """
    Sums a billing schedule per channel and overall.

    Args:
        rows: Billing rows.

    Returns:
        ScheduleTotals across all months.
    """
    totals = ScheduleTotals()
    for row in rows:
        for channel, amount in row.channel_amounts.items():
            totals.channel_amounts[channel] = totals.channel_amounts.get(channel, ZERO) + amount
        totals.fee_amount += row.fee_amount
        totals.ad_serving_amount += row.ad_serving_amount
        totals.total_amount += row.total_amount
    return totals


def schedule_to_entries(rows: Sequence[MonthlyBillingRow]) -> List[dict]:
    """
    Converts rows to the month -> channel amounts export shape.

    Zero channels are omitted, and months with nothing to bill are left
    out entirely.

    Args:
        rows: Billing rows.

    Returns:
        List of dicts with ``month``, ``month_year``, ``channels`` and,
        when non-zero, ``fee_total`` and ``adserving_tech_fees``.
    """
    entries = []
    for row in rows:
        channels = {
            channel: amount for channel, amount in row.channel_amounts.items() if amount != ZERO
        }
        if not channels and row.fee_amount == ZERO and row.ad_serving_amount == ZERO:
            continue

        entry = {"month": row.month, "month_year": row.month_label, "channels": channels}
        if row.fee_amount != ZERO:
            entry["fee_total"] = row.fee_amount
        if row.ad_serving_amount != ZERO:
            entry["adserving_tech_fees"] = row.ad_serving_amount
        entries.append(entry)
    return entries

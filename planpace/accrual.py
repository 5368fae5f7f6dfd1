"""
PlanPace - Accrual Aggregation Module.

Rolls the authoritative version of each campaign up into one row per
(client, campaign, month) for finance accrual reporting.

Delivery amounts come from the version's line-item bursts, prorated into
each month. Billing amounts come from the version's billing schedule,
which reflects any manual override and is authoritative when present.
The month axis is dense: a campaign with no activity in a requested month
still gets an explicit zero row.

Each row also carries a line breakdown: delivery versus billing per line
item, keyed by lower-cased line item id, plus month-level service lines
for ad serving, production and fees.

Classes:
    AccrualAggregator: Builds accrual rows for a set of versions.

Functions:
    normalize_month_key: Reads many month spellings as ``YYYY-MM``.
    slugify_client_name: Derives a client slug from a display name.
    merge_payment_responsibility: Builds the client-pays-for-media lookup.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from planpace.date_logic import DateManager
from planpace.fees import FeeAllocator
from planpace.schema import (
    ACCRUAL_SERVICE_LINES,
    AD_SERVING_LINE_KEY,
    FEES_LINE_KEY,
    PRODUCTION_CHANNEL,
    PRODUCTION_LINE_KEY,
    ZERO,
    AccrualLine,
    AccrualRow,
    Burst,
    FeeAllocation,
    LineItem,
    MonthlyBillingRow,
    PlanVersion,
    quantize_money,
)
from planpace.validator import DataValidator, burst_defect
from planpace.versions import parse_version_number


logger = logging.getLogger(__name__)

# Billing lines for channels without a line item breakdown
CHANNEL_LINE_PREFIX = "__channel__"

MONTH_NAMES = [
    "january", "february", "march", "april", "may", "june",
    "july", "august", "september", "october", "november", "december",
]

_YEAR_FIRST_PATTERN = re.compile(r"^(\d{4})[-/](\d{2})$")
_MONTH_FIRST_PATTERN = re.compile(r"^(\d{1,2})[-/](\d{4})$")
_NUMERIC_FALLBACK_PATTERN = re.compile(r"(\d{4}).*?(\d{1,2})")


def _month_key(year: int, month: int) -> Optional[str]:
    if 1 <= month <= 12:
        return f"{year:04d}-{month:02d}"
    return None


def normalize_month_key(value: Any) -> Optional[str]:
    """
    Normalises a month representation to ``YYYY-MM``.

    Examples:
        "January 2026" -> "2026-01"
        "Dec 2025"     -> "2025-12"
        "2025-12"      -> "2025-12"
        202512         -> "2025-12"
        "12/2025"      -> "2025-12"

    Args:
        value: date, datetime, six-digit int or month string.

    Returns:
        Month key, or None when the value cannot be read as a month.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None

    if isinstance(value, (date, datetime)):
        return _month_key(value.year, value.month)

    if isinstance(value, int):
        text = str(value)
        if len(text) == 6:
            return _month_key(int(text[:4]), int(text[4:]))
        return None

    text = " ".join(str(value).replace(",", " ").split())
    if not text:
        return None

    match = _YEAR_FIRST_PATTERN.match(text)
    if match:
        key = _month_key(int(match.group(1)), int(match.group(2)))
        if key:
            return key

    match = _MONTH_FIRST_PATTERN.match(text)
    if match:
        key = _month_key(int(match.group(2)), int(match.group(1)))
        if key:
            return key

    parts = text.split(" ")
    if len(parts) >= 2 and parts[1].isdigit():
        name = parts[0].lower()
        for index, full_name in enumerate(MONTH_NAMES):
            if name == full_name or name == full_name[:3]:
                return _month_key(int(parts[1]), index + 1)

    match = _NUMERIC_FALLBACK_PATTERN.search(text)
    if match:
        key = _month_key(int(match.group(1)), int(match.group(2)))
        if key:
            return key

    parsed = DateManager().parse_iso_date(text)
    if parsed is not None:
        return _month_key(parsed.year, parsed.month)

    return None


def line_name(key: str) -> str:
    """Display name of a service or channel line key."""
    if key in ACCRUAL_SERVICE_LINES:
        return ACCRUAL_SERVICE_LINES[key]
    return key.replace(CHANNEL_LINE_PREFIX, "")


def slugify_client_name(name: str) -> str:
    """Lower-cases a name, drops punctuation and hyphenates whitespace."""
    slug = re.sub(r"[^a-z0-9\s-]", "", name.lower())
    return re.sub(r"\s+", "-", slug).strip()


def merge_payment_responsibility(rows: Iterable[dict]) -> Dict[str, bool]:
    """
    Builds the client-pays-for-media lookup from line-item table rows.

    Keys are lower-cased line item ids. When several rows share an id,
    True wins over False.

    Args:
        rows: Raw line-item rows from any number of channel tables.

    Returns:
        Flag per line item id.
    """
    validator = DataValidator()
    lookup: Dict[str, bool] = {}
    for row in rows:
        raw_id = row.get("line_item_id") or row.get("lineItemId") or row.get("id")
        line_item_id = str(raw_id).strip().lower() if raw_id is not None else ""
        if not line_item_id:
            continue

        raw_flag = row.get("client_pays_for_media")
        if raw_flag is None:
            raw_flag = row.get("clientPaysForMedia")
        flag = bool(validator.parse_bool(raw_flag))

        if flag:
            lookup[line_item_id] = True
        else:
            lookup.setdefault(line_item_id, False)
    return lookup


class AccrualAggregator:
    """
    Builds dense accrual rows for chosen campaign versions.

    Example:
        >>> aggregator = AccrualAggregator()
        >>> rows = aggregator.compute_accrual_rows(["2025-06"], versions)
    """

    UNKNOWN_CLIENT = "Unknown"
    UNKNOWN_CAMPAIGN = "Unknown campaign"

    def __init__(
        self,
        date_manager: Optional[DateManager] = None,
        fee_allocator: Optional[FeeAllocator] = None
    ):
        """
        Initialises the AccrualAggregator.

        Args:
            date_manager: DateManager for month windows and proration.
            fee_allocator: FeeAllocator for media/fee splits.
        """
        self._date_manager = date_manager or DateManager()
        self._fee_allocator = fee_allocator or FeeAllocator()

    def normalize_months(self, months: Iterable[Any]) -> List[str]:
        """
        Normalises, de-duplicates and sorts requested months.

        Unreadable months are skipped.
        """
        keys = set()
        for month in months:
            key = normalize_month_key(month)
            if key is None:
                logger.debug("Skipping unreadable month %r", month)
                continue
            keys.add(key)
        return sorted(keys)

    def compute_accrual_rows(
        self,
        months: Iterable[Any],
        versions: Sequence[PlanVersion],
        payment_responsibility_by_line_item: Optional[Dict[str, bool]] = None
    ) -> List[AccrualRow]:
        """
        Builds one accrual row per (version, requested month).

        Args:
            months: Requested months in any readable format.
            versions: Authoritative versions, one per campaign.
            payment_responsibility_by_line_item: Client-pays-for-media flag
                per lower-cased line item id. Overrides the burst's own
                flag when present.

        Returns:
            Rows sorted by client, campaign and month.
        """
        month_keys = self.normalize_months(months)
        if not month_keys:
            return []

        lookup = payment_responsibility_by_line_item or {}
        rows = []
        for version in versions:
            for month_key in month_keys:
                rows.append(self._build_row(version, month_key, lookup))

        rows.sort(key=lambda r: (r.client_name.lower(), r.campaign_name.lower(), r.campaign_id, r.month))
        return rows

    def _build_row(
        self,
        version: PlanVersion,
        month_key: str,
        lookup: Dict[str, bool]
    ) -> AccrualRow:
        """Builds the accrual row of one version for one month."""
        client_name = (version.client_name or "").strip() or self.UNKNOWN_CLIENT
        client_slug = (version.client_slug or "").strip() or slugify_client_name(client_name)

        first_day = self._date_manager.parse_month_key(month_key)
        window = self._date_manager.month_bounds(first_day.year, first_day.month)

        delivery = self._delivery_amounts(version, window, lookup)
        media, fee = delivery.media, delivery.fee
        delivery_amount = quantize_money(media + fee)
        ad_serving = ZERO

        billing_row = self._billing_row(version.billing_schedule, month_key)
        has_schedule = bool(version.billing_schedule)
        if has_schedule:
            billing_media = billing_row.media_amount if billing_row else ZERO
            billing_fee = billing_row.fee_amount if billing_row else ZERO
            ad_serving = billing_row.ad_serving_amount if billing_row else ZERO
            billing_amount = quantize_money(billing_media + billing_fee + ad_serving)
            media, fee, source = billing_media, billing_fee, "billing"
        else:
            billing_amount = ZERO
            source = "delivery" if delivery.active else "none"

        return AccrualRow(
            client_name=client_name,
            client_slug=client_slug,
            campaign_id=(version.campaign_id or "").strip() or "unknown",
            campaign_name=(version.campaign_name or "").strip() or self.UNKNOWN_CAMPAIGN,
            version_number=parse_version_number(version.version_number) or 0,
            month=month_key,
            media_amount=quantize_money(media),
            fee_amount=quantize_money(fee),
            ad_serving_amount=quantize_money(ad_serving),
            client_paid_media_amount=quantize_money(delivery.client_paid_media),
            delivery_amount=delivery_amount,
            billing_amount=billing_amount,
            difference=quantize_money(delivery_amount - billing_amount),
            source=source,
            lines=self._merge_lines(delivery, billing_row),
        )

    def _delivery_amounts(
        self,
        version: PlanVersion,
        window: tuple,
        lookup: Dict[str, bool]
    ) -> "_DeliveryMonth":
        """
        Prorates every usable burst of a version into a month.

        Amounts are unrounded. Media is also collected per line item; fees
        and production go to their service lines.
        """
        delivery = _DeliveryMonth()

        for line_item in version.line_items:
            production_line = (line_item.channel_category or "").strip().lower() == PRODUCTION_CHANNEL
            line_key = self._line_key(line_item)
            display_name = line_item.name or line_item.line_item_id or line_key
            for burst in line_item.bursts:
                defect = burst_defect(burst)
                if defect:
                    logger.debug(
                        "Skipping burst of line item %s in %s: %s",
                        line_item.line_item_id, version.campaign_id, defect
                    )
                    continue

                burst_range = (burst.start_date, burst.end_date)
                if self._date_manager.days_of_overlap(burst_range, window) == 0:
                    continue
                delivery.active = True

                production = production_line or burst.is_production
                line_item_id = line_item.line_item_id or burst.line_item_id
                client_pays = self._client_pays(line_item_id, burst, lookup)
                allocation = self._allocate(burst, client_pays, production)
                media = self._date_manager.prorate(allocation.media_amount, burst_range, window)
                fee = self._date_manager.prorate(allocation.fee_amount, burst_range, window)
                delivery.media += media
                delivery.fee += fee

                if production:
                    delivery.add_line(PRODUCTION_LINE_KEY, media)
                else:
                    delivery.add_line(line_key, media, display_name)
                delivery.add_line(FEES_LINE_KEY, fee)

                if client_pays and not production:
                    gross = self._fee_allocator.allocate(
                        burst.budget_amount, burst.fee_percentage, False, burst.budget_includes_fees
                    )
                    delivery.client_paid_media += self._date_manager.prorate(
                        gross.media_amount, burst_range, window
                    )

        return delivery

    def _merge_lines(
        self,
        delivery: "_DeliveryMonth",
        billing_row: Optional[MonthlyBillingRow]
    ) -> List[AccrualLine]:
        """
        Pairs delivery and billing amounts per line key.

        Billing media is read from the row's line item breakdown; without
        one, each channel becomes a line of its own. Lines that are zero on
        both sides are dropped. Line items come first in the order seen,
        then the service lines.
        """
        names: Dict[str, str] = {}
        delivered: Dict[str, Decimal] = {}
        billed: Dict[str, Decimal] = {}

        for key, (name, amount) in delivery.lines.items():
            names[key] = name
            delivered[key] = amount

        if billing_row is not None:
            for key, amount in self._billing_lines(billing_row).items():
                names.setdefault(key, line_name(key))
                billed[key] = billed.get(key, ZERO) + amount

        ordered = [key for key in names if key not in ACCRUAL_SERVICE_LINES]
        ordered += [key for key in ACCRUAL_SERVICE_LINES if key in names]

        lines = []
        for key in ordered:
            line = AccrualLine(
                line_item_key=key,
                line_item_name=names[key],
                delivery_amount=quantize_money(delivered.get(key, ZERO)),
                billing_amount=quantize_money(billed.get(key, ZERO)),
            )
            if line.delivery_amount != ZERO or line.billing_amount != ZERO:
                lines.append(line)
        return lines

    def _billing_lines(self, row: MonthlyBillingRow) -> Dict[str, Decimal]:
        """Splits a billing row into line keys."""
        lines: Dict[str, Decimal] = {}
        production = ZERO
        for channel, amount in row.channel_amounts.items():
            if channel.strip().lower() == PRODUCTION_CHANNEL:
                production += amount
            elif not row.line_item_amounts:
                key = CHANNEL_LINE_PREFIX + channel.strip().lower()
                lines[key] = lines.get(key, ZERO) + amount

        for key, amount in row.line_item_amounts.items():
            lines[key.strip().lower()] = amount
        lines[AD_SERVING_LINE_KEY] = row.ad_serving_amount
        lines[PRODUCTION_LINE_KEY] = production
        lines[FEES_LINE_KEY] = row.fee_amount
        return lines

    def _line_key(self, line_item: LineItem) -> str:
        """Lower-cased line item id, or channel and name when there is none."""
        line_item_id = (line_item.line_item_id or "").strip().lower()
        if line_item_id:
            return line_item_id
        name = " ".join((line_item.name or "").lower().split())
        return f"{(line_item.channel_category or '').strip().lower()}__{name}"

    def _client_pays(self, line_item_id: Optional[str], burst: Burst, lookup: Dict[str, bool]) -> bool:
        key = (line_item_id or "").strip().lower()
        if key and key in lookup:
            return lookup[key]
        return burst.client_pays_for_media

    def _allocate(self, burst: Burst, client_pays: bool, production: bool) -> FeeAllocation:
        if production:
            return FeeAllocation(media_amount=burst.budget_amount, fee_amount=ZERO)
        return self._fee_allocator.allocate(
            burst.budget_amount, burst.fee_percentage, client_pays, burst.budget_includes_fees
        )

    def _billing_row(
        self,
        schedule: Optional[List[MonthlyBillingRow]],
        month_key: str
    ) -> Optional[MonthlyBillingRow]:
        """Finds the schedule row for a month, reading any month spelling."""
        for row in schedule or []:
            if normalize_month_key(row.month) == month_key or normalize_month_key(row.month_label) == month_key:
                return row
        return None


@dataclass
class _DeliveryMonth:
    """Unrounded delivery amounts of one version in one month."""

    media: Decimal = ZERO
    fee: Decimal = ZERO
    client_paid_media: Decimal = ZERO
    active: bool = False
    lines: Dict[str, Tuple[str, Decimal]] = field(default_factory=dict)

    def add_line(self, key: str, amount: Decimal, name: Optional[str] = None) -> None:
        previous_name, previous = self.lines.get(key, (name or line_name(key), ZERO))
        self.lines[key] = (previous_name, previous + amount)

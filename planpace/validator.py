"""
PlanPace - Data Validation Module.

This module parses raw burst, actual-delivery and campaign version
records (dicts from a JSON payload or rows from a CSV export) into typed
value objects. Malformed records are skipped and reported with their row
number; one bad historical record never blanks out a whole report.

Accepted money formats:
    - 21749.25 (number)
    - "$21,749.25" (currency symbol and thousands separator)
    - "(1,234.50)" (accounting negative)

Classes:
    ValidationError: A single rejected field with context.
    ValidationResult: Parsed records plus the errors collected.
    DataValidator: Parses burst, actuals, master and version records.

Functions:
    burst_defect: Explains why a burst cannot be prorated, if it cannot.
"""

import csv
import json
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from planpace.date_logic import DateManager
from planpace.fees import FeeAllocator
from planpace.schema import (
    MONEY_PLACES,
    ActualDay,
    Burst,
    CampaignMaster,
    LineItem,
    MonthlyBillingRow,
    PlanVersion,
)


logger = logging.getLogger(__name__)


# First matching key wins
BURST_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "start_date": ("startDate", "start_date", "start"),
    "end_date": ("endDate", "end_date", "end"),
    "budget_amount": ("budgetAmount", "budget_amount", "budget", "media_investment", "spend"),
    "deliverable_amount": ("deliverableAmount", "deliverable_amount", "deliverables"),
    "fee_percentage": ("feePercentage", "fee_percentage", "fee"),
    "client_pays_for_media": ("clientPaysForMedia", "client_pays_for_media"),
    "budget_includes_fees": ("budgetIncludesFees", "budget_includes_fees"),
    "channel_category": ("channelCategory", "channel_category", "mediaType", "media_type", "channel"),
    "line_item_id": ("lineItemId", "line_item_id"),
    "buy_type": ("buyType", "buy_type"),
    "no_ad_serving": ("noAdserving", "noAdServing", "no_adserving", "no_ad_serving"),
}

ACTUALS_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "date": ("date", "DATE_DAY", "date_day"),
    "spend": ("spend", "amountSpent", "amount_spent"),
    "impressions": ("impressions",),
    "clicks": ("clicks",),
    "results": ("results",),
    "video_3s_views": ("video3sViews", "video_3s_views"),
    "deliverable_value": ("deliverable_value", "deliverableValue"),
}

VERSION_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "campaign_id": ("campaign_id", "campaignId", "mba_number"),
    "master_id": ("master_id", "masterId", "media_plan_master_id"),
    "version_number": ("version_number", "versionNumber", "version"),
    "client_name": ("client_name", "clientName", "mp_client_name"),
    "client_slug": ("client_slug", "clientSlug", "slug"),
    "campaign_name": ("campaign_name", "campaignName", "mp_campaignname"),
    "line_items": ("line_items", "lineItems", "delivery_schedule", "deliverySchedule"),
    "billing_schedule": ("billing_schedule", "billingSchedule"),
}

# Billing entry keys holding the month's ad-serving and tech fees
AD_SERVING_KEYS = (
    "adServingAmount", "adservingTechFees", "adserving_tech_fees",
    "adServingTechFees", "ad_serving", "adserving",
)

# Keys of a billing line item that may hold its amount, first match wins
LINE_ITEM_AMOUNT_KEYS = ("amount", "totalAmount", "total_amount", "total", "value", "cost", "budget")

# Billing entry keys that are never channel amounts
BILLING_ROW_KEYS = {
    "month", "monthYear", "month_year", "month_label", "monthLabel",
    "feeAmount", "fee_amount", "feeTotal", "totalAmount", "total_amount", "channels",
    "lineItems", "line_items", "mediaTypes", "media_types", "mediaTotal",
    *AD_SERVING_KEYS,
}

TRUE_STRINGS = {"true", "yes", "y", "1"}
FALSE_STRINGS = {"false", "no", "n", "0", ""}


@dataclass
class ValidationError:
    """
    Represents a single validation error with context.

    Attributes:
        row_number: The 1-based position of the record in its source.
        field_name: The name of the field that failed validation.
        value: The invalid value that was provided.
        message: A caller-facing error message.
    """

    row_number: int
    field_name: str
    value: str
    message: str

    def __str__(self) -> str:
        """Returns a formatted error message for display."""
        return f"Error: Row {self.row_number} '{self.field_name}' - {self.message}"


@dataclass
class ValidationResult:
    """
    Container for record validation results.

    Attributes:
        records: Successfully parsed Burst or ActualDay objects.
        errors: ValidationError objects for skipped records.
        total_rows: Total number of records processed.
    """

    records: List[Any] = field(default_factory=list)
    errors: List[ValidationError] = field(default_factory=list)
    total_rows: int = 0

    @property
    def is_valid(self) -> bool:
        """Returns True if validation produced no errors."""
        return len(self.errors) == 0

    @property
    def valid_count(self) -> int:
        """Returns the number of successfully parsed records."""
        return len(self.records)

    @property
    def error_count(self) -> int:
        """Returns the number of validation errors."""
        return len(self.errors)


def burst_defect(burst: Burst) -> Optional[str]:
    """
    Explains why a burst cannot be prorated.

    Engine components call this before any arithmetic so that inverted
    ranges and unusable fee percentages are skipped instead of dividing
    by zero.

    Args:
        burst: Burst to check.

    Returns:
        Reason string, or None when the burst is usable.
    """
    if burst.start_date is None or burst.end_date is None:
        return "missing start or end date"
    if burst.end_date < burst.start_date:
        return f"end date {burst.end_date} is before start date {burst.start_date}"
    if burst.budget_amount < 0:
        return f"negative budget {burst.budget_amount}"
    if burst.deliverable_amount < 0:
        return f"negative deliverables {burst.deliverable_amount}"
    if not burst.is_production and not FeeAllocator.is_usable_fee(burst.fee_percentage):
        return f"fee percentage {burst.fee_percentage} outside [0, 100)"
    return None


class DataValidator:
    """
    Parses raw records into Burst and ActualDay objects.

    Field names are matched against camelCase and snake_case aliases.
    Every monetary value is converted to Decimal.

    Example:
        >>> validator = DataValidator()
        >>> result = validator.validate_bursts([
        ...     {"startDate": "2025-06-01", "endDate": "2025-06-14",
        ...      "budgetAmount": "20000", "feePercentage": 20,
        ...      "channelCategory": "search"}
        ... ])
        >>> result.valid_count
        1
    """

    # Pattern to clean currency strings (removes symbols, spaces, commas)
    CURRENCY_CLEAN_PATTERN = re.compile(r"[^\d.\-]")

    def __init__(self, date_manager: Optional[DateManager] = None):
        """
        Initialises the DataValidator.

        Args:
            date_manager: DateManager used for date parsing.
        """
        self._date_manager = date_manager or DateManager()

    def load_records(self, file_path: Union[str, Path], key: Optional[str] = None) -> List[dict]:
        """
        Loads raw records from a JSON or CSV file.

        JSON files may hold a list of records or an object wrapping the
        list under ``key``.

        Args:
            file_path: Path to a .json or .csv file.
            key: Wrapper key for JSON objects, e.g. "bursts".

        Returns:
            List of record dictionaries.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValueError: If the file does not contain a list of records.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Input file not found: {file_path}")

        if file_path.suffix.lower() == ".csv":
            with open(file_path, "r", encoding="utf-8-sig", newline="") as csvfile:
                return list(csv.DictReader(csvfile))

        data = json.loads(file_path.read_text(encoding="utf-8"))
        if isinstance(data, dict) and key is not None:
            data = data.get(key)
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of records in {file_path}")
        return data

    def validate_bursts(
        self,
        rows: List[dict],
        channel_category: Optional[str] = None,
        start_row: int = 1
    ) -> ValidationResult:
        """
        Parses burst records.

        Args:
            rows: Raw burst dictionaries.
            channel_category: Channel applied when a record names none.
            start_row: Row number of the first record for error reporting.

        Returns:
            ValidationResult whose records are Burst objects.
        """
        result = ValidationResult(total_rows=len(rows))

        for idx, row in enumerate(rows):
            burst, errors = self._validate_burst_row(row, start_row + idx, channel_category)
            if burst is not None:
                result.records.append(burst)
            result.errors.extend(errors)

        if result.errors:
            logger.info(
                "Skipped %d of %d burst records", result.total_rows - result.valid_count, result.total_rows
            )
        return result

    def validate_bursts_by_channel(
        self,
        payload: Dict[str, List[dict]]
    ) -> Tuple[Dict[str, List[Burst]], List[ValidationError]]:
        """
        Parses a mapping of channel -> burst records.

        Args:
            payload: Raw burst lists keyed by channel category.

        Returns:
            Tuple of (bursts keyed by channel, all errors).
        """
        bursts_by_channel: Dict[str, List[Burst]] = {}
        errors: List[ValidationError] = []

        for channel, rows in payload.items():
            result = self.validate_bursts(rows or [], channel_category=channel)
            bursts_by_channel[channel] = result.records
            errors.extend(result.errors)

        return bursts_by_channel, errors

    def validate_actuals(self, rows: List[dict], start_row: int = 1) -> ValidationResult:
        """
        Parses daily actual-delivery records.

        Args:
            rows: Raw actuals dictionaries, one per day.
            start_row: Row number of the first record for error reporting.

        Returns:
            ValidationResult whose records are ActualDay objects.
        """
        result = ValidationResult(total_rows=len(rows))

        for idx, row in enumerate(rows):
            row_number = start_row + idx
            errors: List[ValidationError] = []

            raw_date = self._pick(row, ACTUALS_FIELD_ALIASES["date"])
            day = self._date_manager.parse_iso_date(raw_date)
            if day is None:
                errors.append(ValidationError(
                    row_number=row_number,
                    field_name="date",
                    value=str(raw_date),
                    message="date must be an ISO date (YYYY-MM-DD)"
                ))

            values: Dict[str, Optional[Decimal]] = {}
            for name in ("spend", "impressions", "clicks", "results", "video_3s_views"):
                raw = self._pick(row, ACTUALS_FIELD_ALIASES[name])
                value, error = self._parse_decimal(raw, name, row_number, default=Decimal("0"))
                if error:
                    errors.append(error)
                values[name] = value

            raw_deliverable = self._pick(row, ACTUALS_FIELD_ALIASES["deliverable_value"])
            deliverable_value, error = self._parse_decimal(
                raw_deliverable, "deliverable_value", row_number, default=None
            )
            if error:
                errors.append(error)

            result.errors.extend(errors)
            if errors:
                continue

            result.records.append(ActualDay(
                date=day,
                spend=values["spend"],
                impressions=values["impressions"],
                clicks=values["clicks"],
                results=values["results"],
                video_3s_views=values["video_3s_views"],
                deliverable_value=deliverable_value,
            ))

        return result

    def validate_masters(self, rows: List[dict], start_row: int = 1) -> ValidationResult:
        """
        Parses campaign master records.

        Args:
            rows: Raw master dictionaries.
            start_row: Row number of the first record for error reporting.

        Returns:
            ValidationResult whose records are CampaignMaster objects.
        """
        result = ValidationResult(total_rows=len(rows))

        for idx, row in enumerate(rows):
            campaign_id = self._pick(row, VERSION_FIELD_ALIASES["campaign_id"])
            if campaign_id is None:
                result.errors.append(ValidationError(start_row + idx, "campaign_id", "",
                                                     "campaign_id cannot be empty"))
                continue
            result.records.append(CampaignMaster(
                id=self._parse_id(row.get("id")),
                campaign_id=str(campaign_id).strip(),
                version_number=self._pick(row, VERSION_FIELD_ALIASES["version_number"]),
            ))

        return result

    def validate_versions(self, rows: List[dict], start_row: int = 1) -> ValidationResult:
        """
        Parses campaign version records with their line items.

        Version numbers and timestamps are kept raw for the version
        selector. Malformed bursts inside a line item are dropped and
        reported without rejecting the version.

        Args:
            rows: Raw version dictionaries.
            start_row: Row number of the first record for error reporting.

        Returns:
            ValidationResult whose records are PlanVersion objects.
        """
        result = ValidationResult(total_rows=len(rows))
        aliases = VERSION_FIELD_ALIASES

        for idx, row in enumerate(rows):
            row_number = start_row + idx
            campaign_id = self._pick(row, aliases["campaign_id"])
            master_id = self._parse_id(self._pick(row, aliases["master_id"]))
            if campaign_id is None and master_id is None:
                result.errors.append(ValidationError(row_number, "campaign_id", "",
                                                     "campaign_id or master id is required"))
                continue

            line_items = []
            for item in self._pick(row, aliases["line_items"]) or []:
                channel = str(self._pick(item, BURST_FIELD_ALIASES["channel_category"]) or "search")
                line_item_id = str(self._pick(item, ("lineItemId", "line_item_id", "id")) or "").strip()
                bursts = self.validate_bursts(
                    item.get("bursts") or [], channel_category=channel
                )
                for error in bursts.errors:
                    error.row_number = row_number
                result.errors.extend(bursts.errors)
                for burst in bursts.records:
                    burst.line_item_id = burst.line_item_id or line_item_id
                line_items.append(LineItem(
                    line_item_id=line_item_id,
                    name=str(item.get("name") or item.get("lineItemName") or ""),
                    channel_category=channel.lower(),
                    bursts=bursts.records,
                ))

            schedule_raw = self._pick(row, aliases["billing_schedule"])
            billing_schedule = None
            if schedule_raw:
                billing_schedule = [self._parse_billing_row(entry) for entry in schedule_raw]

            result.records.append(PlanVersion(
                id=self._parse_id(row.get("id")),
                campaign_id=str(campaign_id or "").strip(),
                master_id=master_id,
                version_number=self._pick(row, aliases["version_number"]),
                updated_at=row.get("updated_at") or row.get("updatedAt"),
                created_at=row.get("created_at") or row.get("createdAt"),
                client_name=str(self._pick(row, aliases["client_name"]) or ""),
                client_slug=str(self._pick(row, aliases["client_slug"]) or ""),
                campaign_name=str(self._pick(row, aliases["campaign_name"]) or ""),
                line_items=line_items,
                billing_schedule=billing_schedule,
            ))

        return result

    def _parse_billing_row(self, entry: dict) -> MonthlyBillingRow:
        """
        Parses one billing schedule entry.

        Channel amounts are read from a ``channels`` mapping when present,
        otherwise every key that is not a row field is a channel.
        """
        month = str(self._pick(entry, ("month", "monthYear", "month_year")) or "")
        label = str(self._pick(entry, ("month_label", "monthLabel")) or month)
        fee = self.parse_money(self._pick(entry, ("feeAmount", "fee_amount", "feeTotal"))) or Decimal("0")
        ad_serving = self.parse_money(self._pick(entry, AD_SERVING_KEYS)) or Decimal("0")

        channels_raw = entry.get("channels")
        if not isinstance(channels_raw, dict):
            channels_raw = {
                key: value for key, value in entry.items() if key not in BILLING_ROW_KEYS
            }

        channel_amounts = {}
        for channel, raw in channels_raw.items():
            amount = self.parse_money(raw)
            if amount is not None:
                channel_amounts[channel] = amount

        return MonthlyBillingRow(
            month=month,
            month_label=label,
            channel_amounts=channel_amounts,
            fee_amount=fee,
            ad_serving_amount=ad_serving,
            line_item_amounts=self._parse_billing_line_items(entry),
        )

    def _parse_billing_line_items(self, entry: dict) -> Dict[str, Decimal]:
        """
        Reads the per line item media of a billing entry.

        Accepts a ``lineItems`` mapping of id to amount, a ``lineItems``
        list, or ``mediaTypes`` entries that each hold a ``lineItems`` list.
        Items without an id are skipped.

        Returns:
            Amount per lower-cased line item id.
        """
        items: List[Any] = []
        direct = self._pick(entry, ("lineItems", "line_items"))
        if isinstance(direct, dict):
            items.extend({"id": key, "amount": value} for key, value in direct.items())
        elif isinstance(direct, list):
            items.extend(direct)

        for media_type in self._pick(entry, ("mediaTypes", "media_types")) or []:
            if isinstance(media_type, dict):
                items.extend(self._pick(media_type, ("lineItems", "line_items")) or [])

        amounts: Dict[str, Decimal] = {}
        for item in items:
            if not isinstance(item, dict):
                continue
            raw_id = self._pick(item, ("lineItemId", "line_item_id", "id"))
            key = str(raw_id).strip().lower() if raw_id is not None else ""
            amount = self.parse_money(self._pick(item, LINE_ITEM_AMOUNT_KEYS))
            if not key or amount is None:
                logger.debug("Skipping billing line item without id or amount: %r", item)
                continue
            amounts[key] = amounts.get(key, Decimal("0")) + amount
        return amounts

    def _parse_id(self, value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def parse_money(self, value: Any) -> Optional[Decimal]:
        """
        Parses a money value without validation context.

        Args:
            value: Number or currency string.

        Returns:
            Decimal amount, or None if the value is empty or unparseable.
        """
        parsed, error = self._parse_decimal(value, "amount", 0, default=None, allow_negative=True)
        if error:
            return None
        return parsed

    def parse_bool(self, value: Any) -> Optional[bool]:
        """
        Parses a boolean flag from bool, number or string values.

        Returns:
            Parsed flag, or None if the value is not recognisable.
        """
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        if isinstance(value, (int, float)):
            return value != 0
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        return None

    def _validate_burst_row(
        self,
        row: dict,
        row_number: int,
        default_channel: Optional[str]
    ) -> Tuple[Optional[Burst], List[ValidationError]]:
        """
        Validates a single burst record.

        Args:
            row: Raw burst dictionary.
            row_number: Row number for error reporting.
            default_channel: Channel used when the record names none.

        Returns:
            Tuple of (Burst or None, list of errors).
        """
        errors: List[ValidationError] = []
        aliases = BURST_FIELD_ALIASES

        start_raw = self._pick(row, aliases["start_date"])
        end_raw = self._pick(row, aliases["end_date"])
        start_date = self._date_manager.parse_iso_date(start_raw)
        end_date = self._date_manager.parse_iso_date(end_raw)

        if start_date is None:
            errors.append(ValidationError(row_number, "startDate", str(start_raw),
                                          "startDate must be an ISO date (YYYY-MM-DD)"))
        if end_date is None:
            errors.append(ValidationError(row_number, "endDate", str(end_raw),
                                          "endDate must be an ISO date (YYYY-MM-DD)"))
        if start_date and end_date and end_date < start_date:
            errors.append(ValidationError(row_number, "endDate", str(end_raw),
                                          "endDate must not be before startDate"))

        budget, error = self._parse_decimal(
            self._pick(row, aliases["budget_amount"]), "budgetAmount", row_number,
            default=None, quantize=True
        )
        if error:
            errors.append(error)
        elif budget is None:
            errors.append(ValidationError(row_number, "budgetAmount", "",
                                          "budgetAmount cannot be empty"))

        deliverables, error = self._parse_decimal(
            self._pick(row, aliases["deliverable_amount"]), "deliverableAmount", row_number,
            default=Decimal("0")
        )
        if error:
            errors.append(error)

        fee_raw = self._pick(row, aliases["fee_percentage"])
        fee_percentage, error = self._parse_decimal(
            fee_raw, "feePercentage", row_number, default=Decimal("0")
        )
        if error:
            errors.append(error)

        flags: Dict[str, bool] = {}
        for name, label in (("client_pays_for_media", "clientPaysForMedia"),
                            ("budget_includes_fees", "budgetIncludesFees"),
                            ("no_ad_serving", "noAdserving")):
            raw = self._pick(row, aliases[name])
            flag = self.parse_bool(raw)
            if flag is None:
                errors.append(ValidationError(row_number, label, str(raw),
                                              f"{label} must be true or false"))
                flag = False
            flags[name] = flag

        channel = str(self._pick(row, aliases["channel_category"]) or default_channel or "").strip()
        if not channel:
            errors.append(ValidationError(row_number, "channelCategory", "",
                                          "channelCategory cannot be empty"))

        if errors:
            return None, errors

        line_item_id = self._pick(row, aliases["line_item_id"])
        buy_type = self._pick(row, aliases["buy_type"])
        burst = Burst(
            start_date=start_date,
            end_date=end_date,
            budget_amount=budget,
            deliverable_amount=deliverables,
            fee_percentage=fee_percentage,
            client_pays_for_media=flags["client_pays_for_media"],
            budget_includes_fees=flags["budget_includes_fees"],
            channel_category=channel.lower(),
            line_item_id=str(line_item_id).strip() if line_item_id is not None else None,
            buy_type=str(buy_type).strip() if buy_type is not None else None,
            no_ad_serving=flags["no_ad_serving"],
        )

        defect = burst_defect(burst)
        if defect:
            return None, [ValidationError(row_number, "feePercentage", str(fee_raw), defect)]

        return burst, []

    def _pick(self, row: dict, keys: Tuple[str, ...]) -> Any:
        """Returns the first non-empty value among the aliased keys."""
        for key in keys:
            value = row.get(key)
            if value is not None and value != "":
                return value
        return None

    def _parse_decimal(
        self,
        value: Any,
        field_name: str,
        row_number: int,
        default: Optional[Decimal],
        quantize: bool = False,
        allow_negative: bool = False
    ) -> Tuple[Optional[Decimal], Optional[ValidationError]]:
        """
        Parses a number or currency string to Decimal with validation.

        Args:
            value: Raw value to parse.
            field_name: Name of the field for error messages.
            row_number: Row number for error messages.
            default: Value returned when the field is empty.
            quantize: Round to cents using Banker's Rounding.
            allow_negative: Accept values below zero.

        Returns:
            Tuple of (Decimal value or default, ValidationError or None).
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            return default, None

        if isinstance(value, bool):
            return None, ValidationError(row_number, field_name, str(value),
                                         f"{field_name} must be a valid number")

        if isinstance(value, (int, Decimal)):
            decimal_value = Decimal(value)
        elif isinstance(value, float):
            decimal_value = Decimal(str(value))
        else:
            raw = str(value).strip()
            negative_by_parens = raw.startswith("(") and raw.endswith(")")
            cleaned = self.CURRENCY_CLEAN_PATTERN.sub("", raw)

            if not re.match(r"^-?\d+\.?\d*$", cleaned):
                return None, ValidationError(
                    row_number=row_number,
                    field_name=field_name,
                    value=raw,
                    message=f"{field_name} must be a valid number (received: '{raw}')"
                )

            try:
                decimal_value = Decimal(cleaned)
            except InvalidOperation:
                return None, ValidationError(
                    row_number=row_number,
                    field_name=field_name,
                    value=raw,
                    message=f"{field_name} must be a valid number (received: '{raw}')"
                )

            if negative_by_parens:
                decimal_value = -abs(decimal_value)

        if not decimal_value.is_finite():
            return None, ValidationError(row_number, field_name, str(value),
                                         f"{field_name} must be a finite number")

        if quantize:
            decimal_value = decimal_value.quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)

        if not allow_negative and decimal_value < Decimal("0"):
            return None, ValidationError(
                row_number=row_number,
                field_name=field_name,
                value=str(value),
                message=f"{field_name} must be a non-negative number (received: '{value}')"
            )

        return decimal_value, None

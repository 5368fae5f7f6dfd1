"""
PlanPace - Audit and Serialisation Module.

This module provides JSON serialisation for engine outputs: billing
schedules, pacing results and accrual rows. All Decimal values are
converted to string representation to preserve precision during
serialisation and deserialisation.

Finance Context:
    - Every document includes timestamp and version for traceability
    - Decimal precision is preserved for invoicing and accrual
    - Field names follow the engine's external record shapes

Classes:
    DecimalEncoder: JSON encoder for Decimal, date and enum values.
    AuditLogger: Manages JSON serialisation for audit and persistence.
"""

import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from planpace import __version__
from planpace.schema import (
    AccrualRow,
    MonthlyBillingRow,
    PacingMetric,
    PacingResult,
    ZERO,
)


# Keys of a billing row that are not channel amounts
BILLING_ROW_FIELDS = (
    "month", "month_label", "feeAmount", "adServingAmount", "totalAmount", "lineItems",
)


class DecimalEncoder(json.JSONEncoder):
    """
    Custom JSON encoder that converts Decimal to string.

    Preserves full precision of Decimal values by encoding them
    as strings rather than floats.
    """

    def default(self, obj: Any) -> Any:
        """
        Encode Decimal, date and Enum objects.

        Args:
            obj: Object to encode.

        Returns:
            JSON-serialisable representation.
        """
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class AuditLogger:
    """
    Manages JSON serialisation for audit and persistence.

    Every document is wrapped with a metadata block carrying the report
    type, timestamp and version identifier.

    Example:
        >>> audit = AuditLogger()
        >>> json_str = audit.serialise_billing(rows)
        >>> restored = audit.deserialise_billing(json_str)
        >>> assert restored == rows
    """

    def __init__(self, version: Optional[str] = None):
        """
        Initialises the AuditLogger.

        Args:
            version: Version identifier for documents.
                     Defaults to package version.
        """
        self._version = version or __version__

    def billing_row_to_dict(self, row: MonthlyBillingRow) -> Dict[str, Any]:
        """
        Converts a billing row to ``{month, month_label, <channel>..., feeAmount,
        adServingAmount, totalAmount}``, plus ``lineItems`` when the row has a
        line item breakdown.
        """
        data: Dict[str, Any] = {"month": row.month, "month_label": row.month_label}
        for channel, amount in row.channel_amounts.items():
            data[channel] = amount
        data["feeAmount"] = row.fee_amount
        data["adServingAmount"] = row.ad_serving_amount
        data["totalAmount"] = row.total_amount
        if row.line_item_amounts:
            data["lineItems"] = dict(row.line_item_amounts)
        return data

    def billing_row_from_dict(self, data: Dict[str, Any]) -> MonthlyBillingRow:
        """
        Rebuilds a billing row; any key that is not a row field is a channel.

        Raises:
            KeyError: If ``month`` is missing.
        """
        channel_amounts = {
            key: Decimal(str(value))
            for key, value in data.items()
            if key not in BILLING_ROW_FIELDS
        }
        return MonthlyBillingRow(
            month=data["month"],
            month_label=data.get("month_label", ""),
            channel_amounts=channel_amounts,
            fee_amount=Decimal(str(data.get("feeAmount", ZERO))),
            ad_serving_amount=Decimal(str(data.get("adServingAmount", ZERO))),
            line_item_amounts={
                key: Decimal(str(value)) for key, value in (data.get("lineItems") or {}).items()
            },
        )

    def pacing_to_dict(self, result: PacingResult) -> Dict[str, Any]:
        """Converts a PacingResult to its JSON shape."""
        data: Dict[str, Any] = {
            "asAtDate": result.as_at_date,
            "buyType": result.buy_type,
            "deliverableKey": result.deliverable_key,
            "spend": self._metric_to_dict(result.spend),
            "series": [
                {
                    "date": point.date,
                    "expectedSpend": point.expected_spend,
                    "actualSpend": point.actual_spend,
                    "expectedDeliverable": point.expected_deliverable,
                    "actualDeliverable": point.actual_deliverable,
                }
                for point in result.series
            ],
        }
        if result.deliverable is not None:
            data["deliverable"] = self._metric_to_dict(result.deliverable)
        return data

    def accrual_row_to_dict(self, row: AccrualRow) -> Dict[str, Any]:
        """Converts an AccrualRow to its JSON shape."""
        return {
            "clientName": row.client_name,
            "clientSlug": row.client_slug,
            "campaignId": row.campaign_id,
            "campaignName": row.campaign_name,
            "versionNumber": row.version_number,
            "month": row.month,
            "mediaAmount": row.media_amount,
            "feeAmount": row.fee_amount,
            "adServingAmount": row.ad_serving_amount,
            "totalAmount": row.total_amount,
            "clientPaidMediaAmount": row.client_paid_media_amount,
            "deliveryAmount": row.delivery_amount,
            "billingAmount": row.billing_amount,
            "difference": row.difference,
            "source": row.source,
            "lines": [
                {
                    "lineItemKey": line.line_item_key,
                    "lineItemName": line.line_item_name,
                    "deliveryAmount": line.delivery_amount,
                    "billingAmount": line.billing_amount,
                    "difference": line.difference,
                }
                for line in row.lines
            ],
        }

    def serialise_billing(self, rows: Sequence[MonthlyBillingRow], **extra: Any) -> str:
        """
        Serialises a billing schedule to JSON string.

        Args:
            rows: Billing rows.
            **extra: Additional top-level fields, e.g. the manual flag.

        Returns:
            JSON string representation.
        """
        payload = {"rows": [self.billing_row_to_dict(row) for row in rows], **extra}
        return self._dumps("billing_schedule", payload)

    def deserialise_billing(self, json_str: str) -> List[MonthlyBillingRow]:
        """
        Deserialises billing rows from a document or a bare list of rows.

        Raises:
            json.JSONDecodeError: If JSON is malformed.
            KeyError: If a row lacks its month.
        """
        data = json.loads(json_str)
        rows = data["rows"] if isinstance(data, dict) else data
        return [self.billing_row_from_dict(row) for row in rows]

    def serialise_pacing(self, results: Sequence[PacingResult], **extra: Any) -> str:
        """Serialises pacing results to JSON string."""
        payload = {"results": [self.pacing_to_dict(result) for result in results], **extra}
        return self._dumps("pacing", payload)

    def serialise_accrual(
        self,
        months: Sequence[str],
        rows: Sequence[AccrualRow],
        **extra: Any
    ) -> str:
        """Serialises accrual rows to JSON string."""
        payload = {
            "months": list(months),
            "rows": [self.accrual_row_to_dict(row) for row in rows],
            **extra,
        }
        return self._dumps("accrual", payload)

    def save_to_file(self, json_str: str, file_path: Union[str, Path]) -> None:
        """
        Saves a serialised document to a JSON file.

        Args:
            json_str: Output of one of the serialise methods.
            file_path: Output file path.

        Raises:
            PermissionError: If file cannot be written.
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(json_str, encoding="utf-8")

    def load_billing_file(self, file_path: Union[str, Path]) -> List[MonthlyBillingRow]:
        """
        Loads billing rows from a JSON file.

        Raises:
            FileNotFoundError: If file does not exist.
            json.JSONDecodeError: If JSON is malformed.
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Billing file not found: {file_path}")

        return self.deserialise_billing(file_path.read_text(encoding="utf-8"))

    def generate_filename(self, prefix: str = "audit") -> str:
        """
        Generates a timestamped filename for audit files.

        Args:
            prefix: Filename prefix. Defaults to "audit".

        Returns:
            Filename like "audit_2025-06-18_143052.json".
        """
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        return f"{prefix}_{timestamp}.json"

    def _metric_to_dict(self, metric: PacingMetric) -> Dict[str, Any]:
        return {
            "actualToDate": metric.actual_to_date,
            "expectedToDate": metric.expected_to_date,
            "delta": metric.delta,
            "pacingPct": metric.pacing_pct,
            "goalTotal": metric.goal_total,
            "status": metric.status,
        }

    def _dumps(self, report_type: str, payload: Dict[str, Any]) -> str:
        data = {
            "metadata": {
                "report_type": report_type,
                "timestamp": datetime.now().isoformat(),
                "version": self._version,
                "generated_by": "PlanPace",
            },
            **payload,
        }
        return json.dumps(data, cls=DecimalEncoder, indent=2)

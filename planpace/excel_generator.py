"""
PlanPace - Excel Report Generation Module.

This module generates Excel workbooks for finance: the monthly billing
schedule of a campaign, the cross-campaign accrual table and pacing
results. Follows the 'Executive First' principle: totals and statuses are
on the first sheet, detail follows.

Finance Context:
    - Currency formatting ($#,##0.00)
    - Conditional formatting for pacing status and accrual differences
    - Totals rows so the sheets reconcile at a glance

Classes:
    ExcelReporter: Generates Excel workbooks from engine outputs.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from planpace.billing import schedule_totals
from planpace.calculator import PacingEngine
from planpace.schema import (
    ZERO,
    AccrualRow,
    GaugeStatus,
    MonthlyBillingRow,
    PacingResult,
    PacingStatus,
)


class ExcelReporter:
    """
    Generates Excel reports for billing, accrual and pacing.

    Attributes:
        CURRENCY_FORMAT: Excel number format for currency.
        PERCENTAGE_FORMAT: Excel number format for percentages.

    Example:
        >>> reporter = ExcelReporter()
        >>> reporter.generate_billing_report(rows, "billing.xlsx")
    """

    # Excel number formats
    CURRENCY_FORMAT = '$#,##0.00'
    PERCENTAGE_FORMAT = '0.00%'
    NUMBER_FORMAT = '#,##0.00'

    # Conditional formatting colours
    OVER_FILL = PatternFill(
        start_color="FFC7CE",
        end_color="FFC7CE",
        fill_type="solid"
    )
    UNDER_FILL = PatternFill(
        start_color="FFEB9C",
        end_color="FFEB9C",
        fill_type="solid"
    )
    ON_FILL = PatternFill(
        start_color="C6EFCE",
        end_color="C6EFCE",
        fill_type="solid"
    )

    # Header styling
    HEADER_FONT = Font(bold=True, color="FFFFFF")
    HEADER_FILL = PatternFill(
        start_color="2F5496",
        end_color="2F5496",
        fill_type="solid"
    )
    HEADER_ALIGNMENT = Alignment(horizontal="center", vertical="center")
    TOTAL_FONT = Font(bold=True)

    # Border styling
    THIN_BORDER = Border(
        left=Side(style="thin"),
        right=Side(style="thin"),
        top=Side(style="thin"),
        bottom=Side(style="thin")
    )

    def __init__(self, engine: Optional[PacingEngine] = None):
        """
        Initialises the ExcelReporter.

        Args:
            engine: PacingEngine used for gauge banding.
        """
        self._engine = engine or PacingEngine()

    def generate_billing_report(
        self,
        rows: Sequence[MonthlyBillingRow],
        output_path: Union[str, Path],
        campaign_label: str = "",
        is_manual: bool = False
    ) -> None:
        """
        Generates a billing schedule workbook.

        One column per channel, then Fee, Ad Serving and Total, with a
        totals row.

        Args:
            rows: Billing rows in month order.
            output_path: Path for the output .xlsx file.
            campaign_label: Campaign name shown in the title.
            is_manual: Whether the rows are an operator-edited schedule.
        """
        workbook = self._new_workbook()
        ws = workbook.create_sheet("Billing Schedule")

        title = "PlanPace - Billing Schedule"
        if campaign_label:
            title += f" - {campaign_label}"
        ws["A1"] = title
        ws["A1"].font = Font(bold=True, size=16)
        ws["A2"] = "Mode:"
        ws["B2"] = "Manual" if is_manual else "Auto"
        ws["A3"] = "Report Generated:"
        ws["B3"] = datetime.now().strftime("%Y-%m-%d %H:%M")

        channels: List[str] = []
        for row in rows:
            for channel in row.channel_amounts:
                if channel not in channels:
                    channels.append(channel)

        headers = ["Month"] + [channel.title() for channel in channels]
        headers += ["Fee", "Ad Serving", "Total"]
        self._write_header(ws, 5, headers)

        row_idx = 6
        for row in rows:
            values = [row.month_label or row.month]
            values += [row.channel_amounts.get(channel, ZERO) for channel in channels]
            values += [row.fee_amount, row.ad_serving_amount, row.total_amount]
            self._write_row(ws, row_idx, values, currency_from=2)
            row_idx += 1

        totals = schedule_totals(rows)
        values = ["Total"]
        values += [totals.channel_amounts.get(channel, ZERO) for channel in channels]
        values += [totals.fee_amount, totals.ad_serving_amount, totals.total_amount]
        self._write_row(ws, row_idx, values, currency_from=2, bold=True)

        self._auto_adjust_columns(ws)
        self._save(workbook, output_path)

    def generate_accrual_report(
        self,
        rows: Sequence[AccrualRow],
        output_path: Union[str, Path]
    ) -> None:
        """
        Generates an accrual workbook.

        Creates three sheets:
        1. Accrual Summary - totals per month
        2. Accrual Detail - one row per client, campaign and month
        3. Accrual Lines - delivery versus billing per line item

        Rows and lines whose delivery and billing amounts differ are
        highlighted.

        Args:
            rows: Accrual rows.
            output_path: Path for the output .xlsx file.
        """
        workbook = self._new_workbook()

        summary = workbook.create_sheet("Accrual Summary")
        summary["A1"] = "PlanPace - Accrual Summary"
        summary["A1"].font = Font(bold=True, size=16)
        self._write_header(summary, 3, ["Month", "Media", "Fee", "Total", "Client Paid Media"])

        by_month = {}
        for row in rows:
            totals = by_month.setdefault(row.month, [ZERO, ZERO, ZERO, ZERO])
            totals[0] += row.media_amount
            totals[1] += row.fee_amount
            totals[2] += row.total_amount
            totals[3] += row.client_paid_media_amount

        row_idx = 4
        for month in sorted(by_month):
            self._write_row(summary, row_idx, [month] + by_month[month], currency_from=2)
            row_idx += 1
        self._auto_adjust_columns(summary)

        detail = workbook.create_sheet("Accrual Detail")
        headers = [
            "Client",
            "Campaign",
            "Campaign ID",
            "Version",
            "Month",
            "Media",
            "Fee",
            "Total",
            "Client Paid Media",
            "Delivery",
            "Billing",
            "Difference",
            "Source",
        ]
        self._write_header(detail, 1, headers)

        for row_idx, row in enumerate(rows, start=2):
            values = [
                row.client_name,
                row.campaign_name,
                row.campaign_id,
                row.version_number,
                row.month,
                row.media_amount,
                row.fee_amount,
                row.total_amount,
                row.client_paid_media_amount,
                row.delivery_amount,
                row.billing_amount,
                row.difference,
                row.source,
            ]
            self._write_row(detail, row_idx, values, currency_from=6, currency_to=12)
            if row.difference != ZERO:
                detail.cell(row=row_idx, column=12).fill = self.UNDER_FILL

        self._auto_adjust_columns(detail)

        lines = workbook.create_sheet("Accrual Lines")
        self._write_header(lines, 1, [
            "Client", "Campaign ID", "Month", "Line Item Key", "Line Item",
            "Delivery", "Billing", "Difference",
        ])

        row_idx = 2
        for row in rows:
            for line in row.lines:
                values = [
                    row.client_name,
                    row.campaign_id,
                    row.month,
                    line.line_item_key,
                    line.line_item_name,
                    line.delivery_amount,
                    line.billing_amount,
                    line.difference,
                ]
                self._write_row(lines, row_idx, values, currency_from=6)
                if line.difference != ZERO:
                    lines.cell(row=row_idx, column=8).fill = self.UNDER_FILL
                row_idx += 1

        self._auto_adjust_columns(lines)
        self._save(workbook, output_path)

    def generate_pacing_report(
        self,
        results: Sequence[Tuple[str, PacingResult]],
        output_path: Union[str, Path]
    ) -> None:
        """
        Generates a pacing workbook.

        Creates a Pacing Summary sheet (one row per campaign with status
        and gauge) and a Daily Series sheet.

        Args:
            results: (campaign label, PacingResult) pairs.
            output_path: Path for the output .xlsx file.
        """
        workbook = self._new_workbook()

        ws = workbook.create_sheet("Pacing Summary")
        headers = [
            "Campaign",
            "As At",
            "Actual Spend",
            "Expected Spend",
            "Delta",
            "Goal",
            "Pacing %",
            "Status",
            "Gauge",
            "Deliverable",
            "Actual Deliverable",
            "Expected Deliverable",
        ]
        self._write_header(ws, 1, headers)

        for row_idx, (label, result) in enumerate(results, start=2):
            spend = result.spend
            deliverable = result.deliverable
            values = [
                label,
                result.as_at_date.isoformat() if result.as_at_date else "",
                spend.actual_to_date,
                spend.expected_to_date,
                spend.delta,
                spend.goal_total,
                spend.pacing_pct / 100,
                spend.status.value,
                self._engine.gauge_status(spend.pacing_pct).value,
                result.deliverable_key or "",
                deliverable.actual_to_date if deliverable else "",
                deliverable.expected_to_date if deliverable else "",
            ]
            self._write_row(ws, row_idx, values, currency_from=3, currency_to=6)
            ws.cell(row=row_idx, column=7).number_format = self.PERCENTAGE_FORMAT
            for col_idx in (11, 12):
                ws.cell(row=row_idx, column=col_idx).number_format = self.NUMBER_FORMAT

            status_fill = self._get_status_fill(spend.status)
            if status_fill:
                ws.cell(row=row_idx, column=8).fill = status_fill
            if self._engine.gauge_status(spend.pacing_pct) == GaugeStatus.BEHIND:
                ws.cell(row=row_idx, column=9).fill = self.OVER_FILL

        self._auto_adjust_columns(ws)

        series = workbook.create_sheet("Daily Series")
        self._write_header(series, 1, [
            "Campaign",
            "Date",
            "Expected Spend",
            "Actual Spend",
            "Expected Deliverable",
            "Actual Deliverable",
        ])
        row_idx = 2
        for label, result in results:
            for point in result.series:
                values = [
                    label,
                    point.date.isoformat(),
                    point.expected_spend,
                    point.actual_spend,
                    point.expected_deliverable,
                    point.actual_deliverable,
                ]
                self._write_row(series, row_idx, values, currency_from=3, currency_to=4)
                for col_idx in (5, 6):
                    series.cell(row=row_idx, column=col_idx).number_format = self.NUMBER_FORMAT
                row_idx += 1

        self._auto_adjust_columns(series)
        self._save(workbook, output_path)

    def _new_workbook(self) -> Workbook:
        workbook = Workbook()
        # Remove default sheet
        workbook.remove(workbook.active)
        return workbook

    def _save(self, workbook: Workbook, output_path: Union[str, Path]) -> None:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        workbook.save(output_path)

    def _write_header(self, worksheet: Worksheet, row: int, headers: Sequence[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = worksheet.cell(row=row, column=col, value=header)
            cell.font = self.HEADER_FONT
            cell.fill = self.HEADER_FILL
            cell.alignment = self.HEADER_ALIGNMENT
            cell.border = self.THIN_BORDER

    def _write_row(
        self,
        worksheet: Worksheet,
        row: int,
        values: Sequence,
        currency_from: int,
        currency_to: Optional[int] = None,
        bold: bool = False
    ) -> None:
        """
        Writes one data row, formatting a range of columns as currency.

        Decimal values are written as floats; Excel has no decimal type.
        """
        last_currency = currency_to if currency_to is not None else len(values)
        for col_idx, value in enumerate(values, start=1):
            if isinstance(value, Decimal):
                value = float(value)
            cell = worksheet.cell(row=row, column=col_idx, value=value)
            cell.border = self.THIN_BORDER
            if currency_from <= col_idx <= last_currency:
                cell.number_format = self.CURRENCY_FORMAT
            if bold:
                cell.font = self.TOTAL_FONT

    def _get_status_fill(self, status: PacingStatus) -> Optional[PatternFill]:
        """
        Returns the appropriate fill colour for a pacing status.

        Args:
            status: Spend pacing status.

        Returns:
            PatternFill for the status.
        """
        if status == PacingStatus.OVER:
            return self.OVER_FILL
        elif status == PacingStatus.UNDER:
            return self.UNDER_FILL
        return self.ON_FILL

    def _auto_adjust_columns(self, worksheet: Worksheet) -> None:
        """
        Auto-adjusts column widths based on content.

        Args:
            worksheet: Target worksheet.
        """
        for col_idx in range(1, worksheet.max_column + 1):
            max_length = 0
            column_letter = get_column_letter(col_idx)

            for row_idx in range(1, worksheet.max_row + 1):
                cell = worksheet.cell(row=row_idx, column=col_idx)
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            # Add padding and set minimum width
            worksheet.column_dimensions[column_letter].width = max(max_length + 2, 10)

    def generate_filename(self, prefix: str = "planpace_report") -> str:
        """
        Generates a timestamped filename for reports.

        Args:
            prefix: Filename prefix. Defaults to "planpace_report".

        Returns:
            Filename like "planpace_report_2025-06-18_143052.xlsx".
        """
        timestamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        return f"{prefix}_{timestamp}.xlsx"

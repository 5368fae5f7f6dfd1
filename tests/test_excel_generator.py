"""
PlanPace - Excel Generator Tests.

Unit tests for ExcelReporter class.
Tests ensure correct sheet creation, data population,
and formatting application.
"""

import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

from openpyxl import load_workbook

from planpace.calculator import PacingEngine
from planpace.excel_generator import ExcelReporter
from planpace.expected import ExpectedSeriesCalculator
from planpace.schema import (
    AccrualLine,
    AccrualRow,
    ActualDay,
    Burst,
    MonthlyBillingRow,
    PacingResult,
    PacingStatus,
)


def billing_rows():
    return [
        MonthlyBillingRow("2025-06", "June 2025",
                          {"search": Decimal("20000.00"), "social": Decimal("0.00")},
                          Decimal("5000.00")),
        MonthlyBillingRow("2025-07", "July 2025",
                          {"search": Decimal("0.00"), "social": Decimal("1500.00")},
                          Decimal("300.00"), Decimal("120.00")),
    ]


def accrual_rows():
    return [
        AccrualRow("Acme", "acme", "MBA1", "Winter", 2, "2025-06",
                   media_amount=Decimal("20000.00"), fee_amount=Decimal("5000.00"),
                   delivery_amount=Decimal("25000.00"), billing_amount=Decimal("22500.00"),
                   difference=Decimal("2500.00"), source="billing",
                   lines=[
                       AccrualLine("li-1", "Search", Decimal("20000.00"), Decimal("18000.00")),
                       AccrualLine("__service__fees", "Fees", Decimal("5000.00"), Decimal("5000.00")),
                   ]),
        AccrualRow("Acme", "acme", "MBA1", "Winter", 2, "2025-07", source="none"),
    ]


def pacing_result(daily_spend: str) -> PacingResult:
    burst = Burst(date(2025, 6, 1), date(2025, 6, 14), Decimal("1400"),
                  deliverable_amount=Decimal("14000"))
    expected = ExpectedSeriesCalculator().expected_series([burst])
    actuals = [ActualDay(date(2025, 6, day), spend=Decimal(daily_spend)) for day in range(1, 4)]
    return PacingEngine().calculate_pacing("CPM", actuals, expected)


class TestExcelReporterUnit:
    """Unit tests for ExcelReporter."""

    def setup_method(self) -> None:
        """Initialise ExcelReporter for each test."""
        self.reporter = ExcelReporter()

    def test_billing_report_layout(self) -> None:
        """Verify one column per channel plus the amount columns and a totals row."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "billing.xlsx"
            self.reporter.generate_billing_report(
                billing_rows(), output_path, campaign_label="Winter", is_manual=True
            )

            wb = load_workbook(output_path)
            ws = wb["Billing Schedule"]

            assert wb.sheetnames == ["Billing Schedule"]
            assert ws["A1"].value == "PlanPace - Billing Schedule - Winter"
            assert ws["B2"].value == "Manual"
            assert [ws.cell(row=5, column=c).value for c in range(1, 7)] == [
                "Month", "Search", "Social", "Fee", "Ad Serving", "Total"
            ]
            assert ws["A6"].value == "June 2025"
            assert ws["E6"].value == 0.0
            assert ws["F6"].value == 25000.0
            assert ws["E7"].value == 120.0
            assert ws["A8"].value == "Total"
            assert ws["E8"].value == 120.0
            assert ws["F8"].value == 26920.0
            assert ws["B6"].number_format == ExcelReporter.CURRENCY_FORMAT

    def test_accrual_report_sheets(self) -> None:
        """Verify summary totals per month and one detail row per accrual row."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "accrual.xlsx"
            self.reporter.generate_accrual_report(accrual_rows(), output_path)

            wb = load_workbook(output_path)

            assert wb.sheetnames == ["Accrual Summary", "Accrual Detail", "Accrual Lines"]
            summary = wb["Accrual Summary"]
            assert summary["A4"].value == "2025-06"
            assert summary["D4"].value == 25000.0
            assert summary["A5"].value == "2025-07"

            detail = wb["Accrual Detail"]
            assert detail["A1"].value == "Client"
            assert detail.max_row == 3
            assert detail["M2"].value == "billing"

    def test_accrual_difference_highlighted(self) -> None:
        """Verify a non-zero difference is filled."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "accrual.xlsx"
            self.reporter.generate_accrual_report(accrual_rows(), output_path)

            detail = load_workbook(output_path)["Accrual Detail"]

            assert detail["L2"].fill.start_color.rgb.endswith("FFEB9C")
            assert detail["L3"].fill.fill_type is None

    def test_accrual_lines_sheet(self) -> None:
        """Verify one row per accrual line with differences highlighted."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "accrual.xlsx"
            self.reporter.generate_accrual_report(accrual_rows(), output_path)

            lines = load_workbook(output_path)["Accrual Lines"]

            assert lines["D1"].value == "Line Item Key"
            assert lines.max_row == 3
            assert lines["D2"].value == "li-1"
            assert lines["H2"].value == 2000.0
            assert lines["H2"].fill.start_color.rgb.endswith("FFEB9C")
            assert lines["D3"].value == "__service__fees"
            assert lines["H3"].fill.fill_type is None

    def test_pacing_report_sheets(self) -> None:
        """Verify pacing summary and daily series sheets are populated."""
        results = [("Winter", pacing_result("100")), ("Summer", pacing_result("10"))]

        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "pacing.xlsx"
            self.reporter.generate_pacing_report(results, output_path)

            wb = load_workbook(output_path)

            assert wb.sheetnames == ["Pacing Summary", "Daily Series"]
            summary = wb["Pacing Summary"]
            assert summary["A2"].value == "Winter"
            assert summary["A3"].value == "Summer"

            series = wb["Daily Series"]
            assert series["A2"].value == "Winter"
            assert series["B2"].value == "2025-06-01"
            assert series.max_row == 1 + 14 + 14

    def test_status_fill_mapping(self) -> None:
        """Verify each pacing status maps to its fill."""
        assert self.reporter._get_status_fill(PacingStatus.OVER) == ExcelReporter.OVER_FILL
        assert self.reporter._get_status_fill(PacingStatus.UNDER) == ExcelReporter.UNDER_FILL
        assert self.reporter._get_status_fill(PacingStatus.ON) == ExcelReporter.ON_FILL

    def test_generate_filename(self) -> None:
        """Verify filenames are timestamped xlsx names."""
        name = self.reporter.generate_filename("billing_report")
        assert name.startswith("billing_report_")
        assert name.endswith(".xlsx")

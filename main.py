"""
PlanPace - Main Entry Point.

Pacing & billing allocation engine for media-buying agencies.
Builds billing schedules, pacing comparisons and finance accruals from
campaign burst data, and writes JSON audit files and Excel reports.

Usage:
    python main.py billing <bursts.json> [--start DATE] [--end DATE] [--budget N] [--manual rows.json]
    python main.py pacing <bursts.json> <actuals.json> --buy-type CPM [--as-at DATE]
    python main.py accrual <versions.json> --months 2025-06,2025-07 [--masters FILE] [--line-items FILE]

Example:
    python main.py billing campaign.json --budget 25000 --output-dir reports/
"""

import argparse
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from planpace import __version__
from planpace.accrual import AccrualAggregator, merge_payment_responsibility
from planpace.audit import AuditLogger
from planpace.billing import (
    BillingScheduleBuilder,
    CampaignBillingSchedule,
    ad_serving_rates,
    schedule_totals,
)
from planpace.calculator import PacingEngine
from planpace.date_logic import DateManager
from planpace.exceptions import BudgetMismatchError
from planpace.excel_generator import ExcelReporter
from planpace.expected import ExpectedSeriesCalculator
from planpace.schema import Burst, MonthlyBillingRow, PacingResult
from planpace.validator import DataValidator, ValidationError
from planpace.versions import VersionSelector


def print_header() -> None:
    """Prints the application header."""
    print("=" * 60)
    print("  PlanPace - Pacing & Billing Allocation Engine")
    print(f"  Version: {__version__}")
    print("=" * 60)
    print()


def print_validation_errors(errors: List[ValidationError]) -> None:
    """
    Prints skipped-record warnings (first 10).

    Args:
        errors: Validation errors collected while loading.
    """
    if not errors:
        return
    print(f"  ⚠️  SKIPPED RECORDS ({len(errors)} errors):")
    for error in errors[:10]:
        print(f"     {error}")
    if len(errors) > 10:
        print(f"     ... and {len(errors) - 10} more errors")
    print()


def print_billing_summary(rows: List[MonthlyBillingRow], is_manual: bool) -> None:
    """
    Prints the billing schedule to the console.

    Args:
        rows: Billing rows in force.
        is_manual: Whether a manual schedule is in force.
    """
    print("\n" + "=" * 60)
    print(f"  BILLING SCHEDULE ({'MANUAL' if is_manual else 'AUTO'})")
    print("=" * 60)
    for row in rows:
        print(f"  {row.month_label:<16} Media: $ {row.media_amount:>12,.2f}"
              f"   Fee: $ {row.fee_amount:>10,.2f}   Total: $ {row.total_amount:>12,.2f}")

    totals = schedule_totals(rows)
    print("  " + "-" * 40)
    for channel, amount in totals.channel_amounts.items():
        print(f"  {channel.title():<16} $ {amount:,.2f}")
    print(f"  {'Fees':<16} $ {totals.fee_amount:,.2f}")
    if totals.ad_serving_amount:
        print(f"  {'Ad Serving':<16} $ {totals.ad_serving_amount:,.2f}")
    print(f"  {'Total':<16} $ {totals.total_amount:,.2f}")
    print()


def print_pacing_summary(result: PacingResult, engine: PacingEngine) -> None:
    """
    Prints a pacing result to the console.

    Args:
        result: Pacing comparison.
        engine: PacingEngine used for gauge banding.
    """
    print("\n" + "=" * 60)
    print("  PACING")
    print("=" * 60)
    print(f"  As at:             {result.as_at_date or 'n/a'}")
    spend = result.spend
    print(f"  Actual Spend:      $ {spend.actual_to_date:,.2f}")
    print(f"  Expected Spend:    $ {spend.expected_to_date:,.2f}")
    print(f"  Delta:             $ {spend.delta:,.2f}")
    print(f"  Goal:              $ {spend.goal_total:,.2f}")
    print(f"  Pacing:            {spend.pacing_pct:.2f}%")
    print(f"  Status:            {spend.status.value}")
    print(f"  Gauge:             {engine.gauge_status(spend.pacing_pct).value}")

    if result.deliverable is not None:
        deliverable = result.deliverable
        print(f"\n  Deliverable ({result.deliverable_key})")
        print(f"  Actual:            {deliverable.actual_to_date:,.2f}")
        print(f"  Expected:          {deliverable.expected_to_date:,.2f}")
        print(f"  Pacing:            {deliverable.pacing_pct:.2f}%")
        print(f"  Status:            {deliverable.status.value}")
    print()


def load_bursts_by_channel(
    validator: DataValidator,
    path: Path
) -> Tuple[Dict[str, List[Burst]], List[ValidationError]]:
    """
    Loads bursts keyed by channel from a JSON or CSV file.

    Accepts either a mapping of channel -> burst records or a flat list
    of records carrying their own channel category.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file holds neither shape.
    """
    if path.suffix.lower() == ".json" and path.exists():
        data = json.loads(path.read_text(encoding="utf-8"))
        if isinstance(data, dict) and "bursts" not in data:
            return validator.validate_bursts_by_channel(data)

    records = validator.load_records(path, key="bursts")
    result = validator.validate_bursts(records)
    bursts_by_channel: Dict[str, List[Burst]] = {}
    for burst in result.records:
        bursts_by_channel.setdefault(burst.channel_category, []).append(burst)
    return bursts_by_channel, result.errors


def parse_money_arg(value: str) -> Decimal:
    """Parses a --budget style argument such as "25,000" or "$25000"."""
    try:
        return Decimal(value.replace(",", "").replace("$", ""))
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}")


def run_billing(args: argparse.Namespace) -> int:
    """
    Builds the billing schedule and optionally reconciles a manual one.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    validator = DataValidator()
    date_manager = DateManager()

    print(f"  Loading: {args.bursts_file}")
    try:
        bursts_by_channel, errors = load_bursts_by_channel(validator, args.bursts_file)
    except FileNotFoundError:
        print(f"\n  ❌ ERROR: File not found: {args.bursts_file}")
        return 1
    except ValueError as e:
        print(f"\n  ❌ ERROR: {e}")
        return 1
    print_validation_errors(errors)

    all_bursts = [burst for bursts in bursts_by_channel.values() for burst in bursts]
    start = date_manager.parse_iso_date(args.start) if args.start else None
    end = date_manager.parse_iso_date(args.end) if args.end else None
    if all_bursts:
        start = start or min(burst.start_date for burst in all_bursts)
        end = end or max(burst.end_date for burst in all_bursts)
    print(f"  ✓ Loaded {len(all_bursts)} bursts across {len(bursts_by_channel)} channels")

    rates = ad_serving_rates(
        video=args.adserving_video,
        audio=args.adserving_audio,
        display=args.adserving_display,
        impression=args.adserving_impression,
    )
    schedule = CampaignBillingSchedule(
        bursts_by_channel, start, end, campaign_budget=args.budget,
        builder=BillingScheduleBuilder(ad_serving_rates=rates)
    )

    if args.manual:
        audit_logger = AuditLogger()
        try:
            manual_rows = audit_logger.load_billing_file(args.manual)
            schedule.save_manual_schedule(manual_rows)
        except FileNotFoundError:
            print(f"\n  ❌ ERROR: File not found: {args.manual}")
            return 1
        except BudgetMismatchError as e:
            print(f"\n  ❌ MANUAL SCHEDULE REJECTED: {e}")
            print(f"     Mismatch: $ {e.mismatch:,.2f}")
            return 1
        print("  ✓ Manual schedule reconciles to budget")

    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    audit_logger = AuditLogger()
    audit_path = output_dir / audit_logger.generate_filename("billing_audit")
    audit_logger.save_to_file(
        audit_logger.serialise_billing(schedule.rows, manual=schedule.is_manual), audit_path
    )
    print(f"  ✓ Audit log saved: {audit_path}")

    excel_reporter = ExcelReporter()
    excel_path = output_dir / excel_reporter.generate_filename("billing_report")
    excel_reporter.generate_billing_report(
        schedule.rows, excel_path, campaign_label=args.bursts_file.stem, is_manual=schedule.is_manual
    )
    print(f"  ✓ Excel report saved: {excel_path}")

    print_billing_summary(schedule.rows, schedule.is_manual)
    return 0


def run_pacing(args: argparse.Namespace) -> int:
    """
    Compares actual delivery against the expected series.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    validator = DataValidator()
    date_manager = DateManager()

    try:
        bursts_by_channel, burst_errors = load_bursts_by_channel(validator, args.bursts_file)
        actuals = validator.validate_actuals(validator.load_records(args.actuals_file, key="actuals"))
    except FileNotFoundError as e:
        print(f"\n  ❌ ERROR: {e}")
        return 1
    except ValueError as e:
        print(f"\n  ❌ ERROR: {e}")
        return 1
    print_validation_errors(burst_errors + actuals.errors)

    bursts = [burst for channel_bursts in bursts_by_channel.values() for burst in channel_bursts]
    expected = ExpectedSeriesCalculator(date_manager).expected_series(bursts)

    as_at = None
    if args.as_at == "yesterday":
        as_at = date_manager.yesterday()
    elif args.as_at:
        as_at = date_manager.parse_iso_date(args.as_at)

    engine = PacingEngine(date_manager)
    result = engine.calculate_pacing(args.buy_type, actuals.records, expected, as_at_date=as_at)

    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)
    label = args.bursts_file.stem

    audit_logger = AuditLogger()
    audit_path = output_dir / audit_logger.generate_filename("pacing_audit")
    audit_logger.save_to_file(audit_logger.serialise_pacing([result], campaign=label), audit_path)
    print(f"  ✓ Audit log saved: {audit_path}")

    excel_reporter = ExcelReporter(engine)
    excel_path = output_dir / excel_reporter.generate_filename("pacing_report")
    excel_reporter.generate_pacing_report([(label, result)], excel_path)
    print(f"  ✓ Excel report saved: {excel_path}")

    print_pacing_summary(result, engine)
    return 0


def run_accrual(args: argparse.Namespace) -> int:
    """
    Builds accrual rows for the latest version of every campaign.

    Returns:
        Exit code (0 for success, 1 for errors).
    """
    validator = DataValidator()

    try:
        versions = validator.validate_versions(validator.load_records(args.versions_file, key="versions"))
        masters = validator.validate_masters(
            validator.load_records(args.masters, key="masters") if args.masters else []
        )
        flag_rows = validator.load_records(args.line_items, key="line_items") if args.line_items else []
    except FileNotFoundError as e:
        print(f"\n  ❌ ERROR: {e}")
        return 1
    except ValueError as e:
        print(f"\n  ❌ ERROR: {e}")
        return 1
    print_validation_errors(versions.errors + masters.errors)

    chosen = VersionSelector().pick_latest_versions(versions.records, masters.records)
    print(f"  ✓ Picked {len(chosen)} of {versions.valid_count} versions")

    aggregator = AccrualAggregator()
    months = aggregator.normalize_months(args.months.split(","))
    if not months:
        print("\n  ❌ ERROR: --months needs at least one month (YYYY-MM,YYYY-MM)")
        return 1

    rows = aggregator.compute_accrual_rows(months, chosen, merge_payment_responsibility(flag_rows))

    output_dir = args.output_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    audit_logger = AuditLogger()
    audit_path = output_dir / audit_logger.generate_filename("accrual_audit")
    audit_logger.save_to_file(audit_logger.serialise_accrual(months, rows), audit_path)
    print(f"  ✓ Audit log saved: {audit_path}")

    excel_reporter = ExcelReporter()
    excel_path = output_dir / excel_reporter.generate_filename("accrual_report")
    excel_reporter.generate_accrual_report(rows, excel_path)
    print(f"  ✓ Excel report saved: {excel_path}")

    print("\n" + "=" * 60)
    print("  ACCRUAL")
    print("=" * 60)
    for month in months:
        month_rows = [row for row in rows if row.month == month]
        total = sum((row.total_amount for row in month_rows), Decimal("0"))
        print(f"  {month}   {len(month_rows):>3} campaigns   $ {total:,.2f}")
    print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser with one sub-command per report."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--output-dir",
        type=Path,
        default=Path("output"),
        help="Output directory for reports (default: output/)"
    )
    common.add_argument(
        "--verbose",
        action="store_true",
        help="Log skipped records and upstream details"
    )
    parser = argparse.ArgumentParser(
        description="PlanPace - Pacing & Billing Allocation Engine"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    billing = subparsers.add_parser("billing", parents=[common], help="Build a monthly billing schedule")
    billing.add_argument("bursts_file", type=Path, help="Bursts JSON/CSV file")
    billing.add_argument("--start", help="Campaign start date (YYYY-MM-DD)")
    billing.add_argument("--end", help="Campaign end date (YYYY-MM-DD)")
    billing.add_argument("--budget", type=parse_money_arg, help="Campaign budget for manual reconciliation")
    billing.add_argument("--manual", type=Path, help="Manual billing rows JSON file")
    for kind in ("video", "audio", "display", "impression"):
        billing.add_argument(
            f"--adserving-{kind}", type=parse_money_arg, default=Decimal("0"),
            help=f"Ad-serving rate for {kind} channels (per deliverable, per thousand for CPM)"
        )
    billing.set_defaults(handler=run_billing)

    pacing = subparsers.add_parser("pacing", parents=[common], help="Compare actuals against the plan")
    pacing.add_argument("bursts_file", type=Path, help="Bursts JSON/CSV file")
    pacing.add_argument("actuals_file", type=Path, help="Daily actuals JSON/CSV file")
    pacing.add_argument("--buy-type", default="CPM", help="Buy type (CPM, CPC, CPA, CPV, ...)")
    pacing.add_argument("--as-at", help="As-at date (YYYY-MM-DD) or 'yesterday'")
    pacing.set_defaults(handler=run_pacing)

    accrual = subparsers.add_parser("accrual", parents=[common], help="Build finance accrual rows")
    accrual.add_argument("versions_file", type=Path, help="Campaign versions JSON file")
    accrual.add_argument("--months", required=True, help="Comma-separated months, e.g. 2025-06,2025-07")
    accrual.add_argument("--masters", type=Path, help="Campaign master records JSON file")
    accrual.add_argument("--line-items", type=Path, help="Line-item payment flag rows JSON file")
    accrual.set_defaults(handler=run_accrual)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code.
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    print_header()
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())

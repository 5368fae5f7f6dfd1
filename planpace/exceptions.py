"""
PlanPace - Exceptions Module.

Typed errors surfaced to callers. Data-quality problems inside burst or
actuals records never raise; they are skipped by the engine. Only budget
reconciliation failures, fully failed upstream loads (when the caller
demands at least one source) and contract violations reach the caller.

Classes:
    PlanPaceError: Base class for all engine errors.
    BudgetMismatchError: Manual billing schedule does not reconcile.
    UpstreamUnavailableError: Every upstream source failed.
"""

from decimal import Decimal
from typing import List


class PlanPaceError(Exception):
    """Base class for PlanPace errors."""


class BudgetMismatchError(PlanPaceError):
    """
    Raised when a manual billing schedule does not reconcile to budget.

    Attributes:
        schedule_total: Sum of the manual rows' total amounts.
        campaign_budget: Budget the schedule must reconcile to.
        difference: Signed ``schedule_total - campaign_budget``.
        mismatch: Absolute value of ``difference``.
        tolerance: Maximum accepted absolute mismatch.
    """

    def __init__(
        self,
        schedule_total: Decimal,
        campaign_budget: Decimal,
        tolerance: Decimal
    ):
        self.schedule_total = schedule_total
        self.campaign_budget = campaign_budget
        self.difference = schedule_total - campaign_budget
        self.mismatch = abs(self.difference)
        self.tolerance = tolerance

        if self.difference > 0:
            detail = f"exceeds campaign budget by {self.mismatch:,.2f}"
        else:
            detail = f"is {self.mismatch:,.2f} less than campaign budget"

        super().__init__(
            f"Manual schedule total {schedule_total:,.2f} {detail} "
            f"({campaign_budget:,.2f}); must be within {tolerance:,.2f}"
        )


class UpstreamUnavailableError(PlanPaceError):
    """
    Raised when every upstream source failed and the caller required one.

    Attributes:
        failed_sources: Names of the sources that failed or timed out.
    """

    def __init__(self, failed_sources: List[str]):
        self.failed_sources = list(failed_sources)
        super().__init__(
            "All upstream sources failed: " + ", ".join(self.failed_sources)
        )

"""
PlanPace - Pacing & Billing Allocation Engine for Media-Buying Agencies.

Prorates campaign bursts across months and days, applies agency fee
treatments, builds billing schedules and finance accrual rows, and compares
actual delivery against the prorated plan.

Version: 0.1.0
"""

__version__ = "0.1.0"
__author__ = "PlanPace Team"

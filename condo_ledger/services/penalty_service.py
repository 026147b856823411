"""Late penalty calculation for obligations.

Penalty Rules:
- Obligations are due on their due date
- Grace period: configurable days per account (default 10)
- After the grace period: penalty compounds monthly on the outstanding base
- Months overdue: any time past grace counts as one month, then one more
  for every started 30 days (ceil(days_past_grace / 30))
- Formula: penalty = base * (1 + rate)^months - base, rounded half-up

Compounding Example (5% rate, base 950.00):
- Month 1: 950.00 * 5% = 47.50 (total 47.50)
- Month 2: 997.50 * 5% = 49.875 (total 97.375 -> 97.38)
"""

import math
from datetime import date, timedelta
from decimal import Decimal
from fractions import Fraction
from typing import Protocol

from condo_ledger.services.currency import round_half_up
from condo_ledger.services.errors import ValidationError

DAYS_PER_PENALTY_MONTH = 30


class PenaltyTarget(Protocol):
    """Anything with a due date and base charge: ORM row or planner snapshot."""

    due_date: date
    base_amount: int
    base_paid: int


class PenaltyCalculator:
    """Compounding late-penalty calculator for one account's policy.

    Pure and deterministic: the same obligation and date always give the same
    result, and the result is never negative.
    """

    def __init__(self, grace_period_days: int = 10, monthly_rate_percent: Decimal = Decimal("5")):
        """Initialize with the account's penalty policy.

        Args:
            grace_period_days: Days after the due date before penalties start
            monthly_rate_percent: Monthly compounding rate in percent

        Raises:
            ValidationError: If either setting is negative
        """
        if grace_period_days < 0:
            raise ValidationError(f"grace_period_days must be >= 0, got {grace_period_days}")
        rate = Decimal(str(monthly_rate_percent))
        if rate < 0:
            raise ValidationError(f"monthly_rate_percent must be >= 0, got {rate}")
        self.grace_period_days = grace_period_days
        self.monthly_rate_percent = rate
        # Exact rational arithmetic, so repeated calls never drift
        self._growth = 1 + Fraction(rate) / 100

    def grace_end(self, due_date: date) -> date:
        return due_date + timedelta(days=self.grace_period_days)

    def months_overdue(self, due_date: date, as_of: date) -> int:
        """Number of compounding months as of a date (0 while within grace)."""
        grace_end = self.grace_end(due_date)
        if as_of <= grace_end:
            return 0
        days_past_grace = (as_of - grace_end).days
        return max(1, math.ceil(days_past_grace / DAYS_PER_PENALTY_MONTH))

    def compute_penalty(self, obligation: PenaltyTarget, as_of: date) -> int:
        """Compute the accrued penalty of an obligation as of a date.

        Args:
            obligation: Obligation (or snapshot) with due_date, base_amount, base_paid
            as_of: Date to compute penalties for (usually the payment date)

        Returns:
            Penalty in minor units (>= 0)
        """
        outstanding = obligation.base_amount - obligation.base_paid
        if outstanding <= 0 or self.monthly_rate_percent == 0:
            return 0

        months = self.months_overdue(obligation.due_date, as_of)
        if months == 0:
            return 0

        compounded = outstanding * self._growth**months
        penalty = compounded - outstanding
        return max(0, round_half_up(penalty))


def compute_penalty(
    obligation: PenaltyTarget,
    as_of: date,
    grace_period_days: int = 10,
    monthly_rate_percent: Decimal = Decimal("5"),
) -> int:
    """Functional shortcut for PenaltyCalculator(...).compute_penalty(...)."""
    return PenaltyCalculator(grace_period_days, monthly_rate_percent).compute_penalty(
        obligation, as_of
    )


__all__ = ["DAYS_PER_PENALTY_MONTH", "PenaltyCalculator", "PenaltyTarget", "compute_penalty"]

"""Unit tests for late penalty calculation."""

from datetime import date
from decimal import Decimal

import pytest

from condo_ledger.models import ObligationStream
from condo_ledger.services.distribution_planner import ObligationSnapshot
from condo_ledger.services.errors import ValidationError
from condo_ledger.services.penalty_service import PenaltyCalculator, compute_penalty


def make_obligation(base_amount=95000, due_date=date(2025, 9, 6), base_paid=0):
    return ObligationSnapshot(
        id=1,
        stream=ObligationStream.DUES,
        period=f"{due_date.year:04d}-{due_date.month:02d}",
        due_date=due_date,
        base_amount=base_amount,
        base_paid=base_paid,
    )


@pytest.mark.unit
class TestMonthsOverdue:
    """Test grace period and month counting."""

    @pytest.fixture
    def calculator(self):
        return PenaltyCalculator(grace_period_days=10, monthly_rate_percent=Decimal("5"))

    def test_within_grace_period(self, calculator):
        assert calculator.months_overdue(date(2025, 11, 1), date(2025, 11, 5)) == 0

    def test_last_day_of_grace_is_free(self, calculator):
        assert calculator.months_overdue(date(2025, 11, 1), date(2025, 11, 11)) == 0

    def test_first_day_after_grace_is_one_month(self, calculator):
        assert calculator.months_overdue(date(2025, 11, 1), date(2025, 11, 12)) == 1

    def test_started_months_count(self, calculator):
        due = date(2025, 9, 6)
        # grace ends 2025-09-16
        assert calculator.months_overdue(due, date(2025, 10, 16)) == 1  # 30 days past
        assert calculator.months_overdue(due, date(2025, 10, 17)) == 2  # 31 days past
        assert calculator.months_overdue(due, date(2025, 11, 5)) == 2  # 50 days past

    def test_zero_grace(self):
        calculator = PenaltyCalculator(grace_period_days=0)
        assert calculator.months_overdue(date(2025, 11, 1), date(2025, 11, 1)) == 0
        assert calculator.months_overdue(date(2025, 11, 1), date(2025, 11, 2)) == 1


@pytest.mark.unit
class TestComputePenalty:
    """Test compounding penalty amounts."""

    def test_two_months_compounding(self):
        """950.00 sixty days after due: 950 * 1.05^2 - 950 = 97.375 -> 97.38."""
        obligation = make_obligation()
        assert compute_penalty(obligation, date(2025, 11, 5)) == 9738

    def test_one_month(self):
        obligation = make_obligation(due_date=date(2025, 10, 1))
        assert compute_penalty(obligation, date(2025, 11, 5)) == 4750

    def test_within_grace_is_zero(self):
        obligation = make_obligation(due_date=date(2025, 11, 1))
        assert compute_penalty(obligation, date(2025, 11, 5)) == 0

    def test_before_due_date_is_zero(self):
        obligation = make_obligation(due_date=date(2025, 12, 1))
        assert compute_penalty(obligation, date(2025, 11, 5)) == 0

    def test_outstanding_base_only(self):
        """Penalty accrues on the unpaid part of the base."""
        obligation = make_obligation(base_paid=45000)
        # 50000 * 1.1025 - 50000 = 5125
        assert compute_penalty(obligation, date(2025, 11, 5)) == 5125

    def test_fully_paid_base_is_zero(self):
        obligation = make_obligation(base_paid=95000)
        assert compute_penalty(obligation, date(2025, 11, 5)) == 0

    def test_zero_base_is_zero(self):
        obligation = make_obligation(base_amount=0)
        assert compute_penalty(obligation, date(2026, 11, 5)) == 0

    def test_zero_rate_is_zero(self):
        obligation = make_obligation()
        assert compute_penalty(obligation, date(2026, 11, 5), monthly_rate_percent=Decimal("0")) == 0

    def test_custom_grace_and_rate(self):
        obligation = make_obligation(base_amount=10000, due_date=date(2025, 1, 1))
        # 5 days grace, 2 days past -> 1 month at 2%
        penalty = compute_penalty(
            obligation, date(2025, 1, 8), grace_period_days=5, monthly_rate_percent=Decimal("2")
        )
        assert penalty == 200

    def test_deterministic_over_many_months(self):
        """Same input always gives the same result."""
        calculator = PenaltyCalculator()
        obligation = make_obligation(due_date=date(2024, 1, 1))
        as_of = date(2024, 12, 26)
        first = calculator.compute_penalty(obligation, as_of)
        assert first == calculator.compute_penalty(obligation, as_of)
        assert first > 0

    def test_monotonic_in_time(self):
        calculator = PenaltyCalculator()
        obligation = make_obligation(due_date=date(2025, 1, 1))
        results = [calculator.compute_penalty(obligation, date(2025, m, 15)) for m in range(1, 13)]
        assert results == sorted(results)


@pytest.mark.unit
class TestPolicyValidation:
    """Test penalty policy validation."""

    def test_negative_grace_rejected(self):
        with pytest.raises(ValidationError):
            PenaltyCalculator(grace_period_days=-1)

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            PenaltyCalculator(monthly_rate_percent=Decimal("-0.5"))

    def test_fractional_rate(self):
        calculator = PenaltyCalculator(monthly_rate_percent=Decimal("1.5"))
        obligation = make_obligation(base_amount=100000, due_date=date(2025, 10, 1))
        assert calculator.compute_penalty(obligation, date(2025, 11, 5)) == 1500

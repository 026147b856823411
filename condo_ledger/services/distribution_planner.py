"""Distribution planner: decides how one payment is split across obligations.

Pure calculation service (no database access). Repository code loads the
account and its open obligations into snapshots; the planner returns a
DistributionPlan that the payment recorder can persist unchanged.

Core Algorithm:
1. Recompute the accrued penalty of every eligible obligation as of the
   payment date (never below the penalty already stored or paid)
2. Partition eligible obligations into priority tiers:
   (1) past-due dues, (2) past-due utility, (3) current period,
   (4) future periods (prepayment, prepaid streams only)
3. Available funds = payment + existing credit
4. Per tier: first fully pay every obligation that fits in the remaining
   funds (skipping ones that don't), then apply what is left as a partial
   payment, in order. Funds reach the next tier only once a tier is paid off.
5. Inside one obligation: penalty first, then base
6. Whatever remains becomes the new credit balance

Conservation: payment_amount == sum(allocations) + net_credit_delta.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import IntEnum
from typing import Iterable

from condo_ledger.models.obligation import ObligationStatus, ObligationStream, status_for
from condo_ledger.services.currency import add_minor_units, is_minor_units
from condo_ledger.services.errors import InvariantViolationError, ValidationError
from condo_ledger.services.penalty_service import PenaltyCalculator

logger = logging.getLogger(__name__)

_PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def period_of(day: date) -> str:
    """Billing period key (YYYY-MM) containing a date."""
    return f"{day.year:04d}-{day.month:02d}"


def accrued_penalty(calculator: PenaltyCalculator, obligation, as_of: date) -> int:
    """Accrued penalty of an obligation as of a date.

    Never lower than the penalty already stored on the obligation (accrued by
    an earlier payment or carried over on import) or already paid.
    """
    computed = calculator.compute_penalty(obligation, as_of)
    return max(computed, obligation.penalty_amount, obligation.penalty_paid)


def validate_period(period: str) -> str:
    """Return the period if it is a well-formed YYYY-MM key.

    Raises:
        ValidationError: If the period is malformed
    """
    if not isinstance(period, str) or not _PERIOD_RE.match(period):
        raise ValidationError(f"Invalid period {period!r}; expected YYYY-MM")
    return period


class PriorityTier(IntEnum):
    """Allocation priority groups, processed in ascending order."""

    PAST_DUE_DUES = 1
    PAST_DUE_UTILITY = 2
    CURRENT = 3
    FUTURE = 4


@dataclass(frozen=True)
class ObligationSnapshot:
    """Immutable view of an obligation as read at plan time."""

    id: int
    stream: ObligationStream
    period: str
    due_date: date
    base_amount: int
    penalty_amount: int = 0
    base_paid: int = 0
    penalty_paid: int = 0
    status: ObligationStatus = ObligationStatus.UNPAID
    version: int = 1

    @classmethod
    def from_model(cls, obligation) -> "ObligationSnapshot":
        return cls(
            id=obligation.id,
            stream=ObligationStream(obligation.stream),
            period=obligation.period,
            due_date=obligation.due_date,
            base_amount=obligation.base_amount,
            penalty_amount=obligation.penalty_amount,
            base_paid=obligation.base_paid,
            penalty_paid=obligation.penalty_paid,
            status=ObligationStatus(obligation.status),
            version=obligation.version,
        )

    @property
    def base_remaining(self) -> int:
        return self.base_amount - self.base_paid

    @property
    def penalty_remaining(self) -> int:
        return self.penalty_amount - self.penalty_paid

    @property
    def owed(self) -> int:
        return self.base_remaining + self.penalty_remaining

    def to_dict(self) -> dict:
        return {
            "obligation_id": self.id,
            "stream": self.stream.value,
            "period": self.period,
            "due_date": self.due_date.isoformat(),
            "base_amount": self.base_amount,
            "penalty_amount": self.penalty_amount,
            "base_paid": self.base_paid,
            "penalty_paid": self.penalty_paid,
            "owed": self.owed,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class AccountSnapshot:
    """Immutable view of an account's credit balance and penalty policy."""

    id: int
    credit_balance: int = 0
    version: int = 1
    grace_period_days: int = 10
    penalty_rate_percent: Decimal = Decimal("5")

    @classmethod
    def from_model(cls, account) -> "AccountSnapshot":
        return cls(
            id=account.id,
            credit_balance=account.credit_balance,
            version=account.version,
            grace_period_days=account.grace_period_days,
            penalty_rate_percent=Decimal(str(account.penalty_rate_percent)),
        )


@dataclass(frozen=True)
class ScopeFilter:
    """Restricts a payment to one stream and/or one period."""

    stream: ObligationStream | None = None
    period: str | None = None

    def __post_init__(self):
        if self.stream is None and self.period is None:
            raise ValidationError("Scope filter must name a stream, a period, or both")
        if self.stream is not None and not isinstance(self.stream, ObligationStream):
            raise ValidationError(f"Unknown obligation stream {self.stream!r}")
        if self.period is not None:
            validate_period(self.period)

    @classmethod
    def parse(cls, stream: str | None = None, period: str | None = None) -> "ScopeFilter":
        """Build a filter from raw request values.

        Raises:
            ValidationError: On unknown stream, malformed period, or empty filter
        """
        parsed_stream = None
        if stream is not None:
            try:
                parsed_stream = ObligationStream(stream)
            except ValueError as e:
                raise ValidationError(f"Unknown obligation stream {stream!r}") from e
        return cls(stream=parsed_stream, period=period)

    def matches(self, obligation: ObligationSnapshot) -> bool:
        if self.stream is not None and obligation.stream != self.stream:
            return False
        if self.period is not None and obligation.period != self.period:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "stream": self.stream.value if self.stream else None,
            "period": self.period,
        }


@dataclass(frozen=True)
class Allocation:
    """One line item: the part of a payment applied to one obligation."""

    obligation_id: int
    stream: ObligationStream
    period: str
    tier: PriorityTier
    base_owed_before: int
    penalty_owed_before: int
    penalty_accrued: int
    base_amount: int
    penalty_amount: int
    resulting_status: ObligationStatus

    @property
    def total(self) -> int:
        return self.base_amount + self.penalty_amount

    def to_dict(self) -> dict:
        return {
            "obligation_id": self.obligation_id,
            "stream": self.stream.value,
            "period": self.period,
            "tier": int(self.tier),
            "base_owed_before": self.base_owed_before,
            "penalty_owed_before": self.penalty_owed_before,
            "base_amount": self.base_amount,
            "penalty_amount": self.penalty_amount,
            "total": self.total,
            "resulting_status": self.resulting_status.value,
        }


@dataclass(frozen=True)
class DistributionPlan:
    """Pure output of the planner. Not yet persisted."""

    account_id: int
    payment_amount: int
    payment_date: date
    scope: ScopeFilter | None
    credit_before: int
    allocations: tuple[Allocation, ...]
    obligations_after: tuple[ObligationSnapshot, ...]
    net_credit_delta: int
    overpayment_amount: int
    credit_used: int
    total_applied: int
    total_available: int = field(default=0)

    @property
    def new_credit_balance(self) -> int:
        return self.credit_before + self.net_credit_delta

    def verify(self) -> None:
        """Check the money-accuracy invariants.

        Raises:
            InvariantViolationError: If currency would be created or destroyed,
                an allocation is negative, or an obligation would be overpaid
        """
        applied = 0
        for allocation in self.allocations:
            if allocation.base_amount < 0 or allocation.penalty_amount < 0:
                raise InvariantViolationError(
                    f"Negative allocation for obligation {allocation.obligation_id}"
                )
            if (
                allocation.base_amount > allocation.base_owed_before
                or allocation.penalty_amount > allocation.penalty_owed_before
            ):
                raise InvariantViolationError(
                    f"Allocation exceeds amount owed on obligation {allocation.obligation_id}"
                )
            applied = add_minor_units(applied, allocation.total)

        if applied != self.total_applied:
            raise InvariantViolationError(
                f"Allocation total {applied} does not match plan total {self.total_applied}"
            )
        if self.payment_amount != applied + self.net_credit_delta:
            raise InvariantViolationError(
                f"Payment {self.payment_amount} != allocations {applied} "
                f"+ credit delta {self.net_credit_delta}"
            )
        if applied > max(0, self.payment_amount + self.credit_before):
            raise InvariantViolationError(
                f"Allocated {applied} exceeds available funds "
                f"{self.payment_amount + self.credit_before}"
            )

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "payment_amount": self.payment_amount,
            "payment_date": self.payment_date.isoformat(),
            "scope": self.scope.to_dict() if self.scope else None,
            "credit_before": self.credit_before,
            "allocations": [a.to_dict() for a in self.allocations],
            "obligations_after": [o.to_dict() for o in self.obligations_after],
            "net_credit_delta": self.net_credit_delta,
            "overpayment_amount": self.overpayment_amount,
            "credit_used": self.credit_used,
            "total_applied": self.total_applied,
            "total_available": self.total_available,
            "new_credit_balance": self.new_credit_balance,
        }


def classify(obligation: ObligationSnapshot, payment_date: date) -> PriorityTier | None:
    """Assign an obligation to its priority tier.

    Returns None for obligations that may not be paid yet: future periods of
    postpaid streams.
    """
    if obligation.period > period_of(payment_date):
        if not obligation.stream.allows_prepayment:
            return None
        return PriorityTier.FUTURE
    if obligation.due_date < payment_date:
        if obligation.stream is ObligationStream.DUES:
            return PriorityTier.PAST_DUE_DUES
        return PriorityTier.PAST_DUE_UTILITY
    return PriorityTier.CURRENT


def _tier_sort_key(tier: PriorityTier, obligation: ObligationSnapshot) -> tuple:
    if tier is PriorityTier.FUTURE:
        return (obligation.period, obligation.stream.rank, obligation.id)
    if tier is PriorityTier.CURRENT:
        return (obligation.due_date, obligation.stream.rank, obligation.period, obligation.id)
    return (obligation.due_date, obligation.period, obligation.id)


@dataclass
class _Candidate:
    """Mutable working state of one obligation while a plan is built."""

    snapshot: ObligationSnapshot
    tier: PriorityTier
    penalty_accrued: int
    base_applied: int = 0
    penalty_applied: int = 0

    @property
    def base_owed(self) -> int:
        return self.snapshot.base_remaining

    @property
    def penalty_owed(self) -> int:
        return self.penalty_accrued - self.snapshot.penalty_paid

    @property
    def owed(self) -> int:
        return self.base_owed + self.penalty_owed

    @property
    def remaining(self) -> int:
        return self.owed - self.base_applied - self.penalty_applied

    def apply(self, funds: int) -> int:
        """Apply up to ``funds``, penalty first. Returns the amount used."""
        to_penalty = min(funds, self.penalty_owed - self.penalty_applied)
        self.penalty_applied += to_penalty
        to_base = min(funds - to_penalty, self.base_owed - self.base_applied)
        self.base_applied += to_base
        return to_penalty + to_base


class DistributionPlanner:
    """Multi-pass priority allocation of one payment. Pure: no I/O."""

    def plan(
        self,
        account: AccountSnapshot,
        obligations: Iterable[ObligationSnapshot],
        payment_amount: int,
        payment_date: date,
        scope: ScopeFilter | None = None,
    ) -> DistributionPlan:
        """Build a distribution plan.

        Args:
            account: Account snapshot (credit balance, penalty policy)
            obligations: Obligation snapshots of the account
            payment_amount: Payment in minor units (> 0)
            payment_date: Date of payment; penalties are computed as of it
            scope: Optional filter restricting eligible obligations

        Returns:
            DistributionPlan satisfying the conservation invariant

        Raises:
            ValidationError: On invalid amount or date
            InvariantViolationError: If the snapshots are internally inconsistent
        """
        if not is_minor_units(payment_amount) or payment_amount <= 0:
            raise ValidationError(
                f"Payment amount must be a positive integer of minor units, got {payment_amount!r}"
            )
        if not isinstance(payment_date, date):
            raise ValidationError(f"Invalid payment date {payment_date!r}")

        calculator = PenaltyCalculator(account.grace_period_days, account.penalty_rate_percent)
        candidates = self._candidates(obligations, payment_date, scope, calculator)

        funds = max(0, payment_amount + account.credit_balance)
        for tier in PriorityTier:
            members = [c for c in candidates if c.tier is tier]
            funds = self._fund_tier(members, funds)

        allocations = tuple(self._allocation(c) for c in candidates if self._is_allocated(c))
        obligations_after = tuple(self._after(c) for c in candidates)

        total_applied = add_minor_units(*(a.total for a in allocations))
        net_credit_delta = payment_amount - total_applied
        plan = DistributionPlan(
            account_id=account.id,
            payment_amount=payment_amount,
            payment_date=payment_date,
            scope=scope,
            credit_before=account.credit_balance,
            allocations=allocations,
            obligations_after=obligations_after,
            net_credit_delta=net_credit_delta,
            overpayment_amount=max(0, net_credit_delta),
            credit_used=max(0, -net_credit_delta),
            total_applied=total_applied,
            total_available=payment_amount + account.credit_balance,
        )
        plan.verify()

        logger.debug(
            f"Planned payment for account {account.id}: amount={payment_amount}, "
            f"credit_before={account.credit_balance}, applied={total_applied} "
            f"across {len(allocations)} obligation(s), credit_delta={net_credit_delta}"
        )
        return plan

    def _candidates(
        self,
        obligations: Iterable[ObligationSnapshot],
        payment_date: date,
        scope: ScopeFilter | None,
        calculator: PenaltyCalculator,
    ) -> list[_Candidate]:
        candidates = []
        for obligation in sorted(obligations, key=lambda o: o.id):
            if obligation.base_paid > obligation.base_amount or obligation.penalty_paid > obligation.penalty_amount:
                raise InvariantViolationError(
                    f"Obligation {obligation.id} is paid beyond what it owes"
                )
            if obligation.status is ObligationStatus.PAID:
                continue
            if scope is not None and not scope.matches(obligation):
                continue
            tier = classify(obligation, payment_date)
            if tier is None:
                continue
            accrued = accrued_penalty(calculator, obligation, payment_date)
            candidates.append(_Candidate(snapshot=obligation, tier=tier, penalty_accrued=accrued))

        candidates.sort(key=lambda c: (c.tier, _tier_sort_key(c.tier, c.snapshot)))
        return candidates

    @staticmethod
    def _fund_tier(members: list[_Candidate], funds: int) -> int:
        # Pass 1: pay in full everything that fits, skipping what doesn't
        for candidate in members:
            if candidate.remaining <= funds:
                funds -= candidate.apply(candidate.remaining)
        # Pass 2: leftover goes to the remaining obligations as partial payments
        for candidate in members:
            if funds == 0:
                break
            if candidate.remaining > 0:
                funds -= candidate.apply(funds)
        return funds

    @staticmethod
    def _is_allocated(candidate: _Candidate) -> bool:
        # Zero-owed obligations (e.g. adjustments) are settled by any payment
        return candidate.base_applied + candidate.penalty_applied > 0 or candidate.owed == 0

    @staticmethod
    def _resulting_status(candidate: _Candidate) -> ObligationStatus:
        snapshot = candidate.snapshot
        return status_for(
            snapshot.base_amount + candidate.penalty_accrued,
            snapshot.base_paid + snapshot.penalty_paid + candidate.base_applied + candidate.penalty_applied,
        )

    def _allocation(self, candidate: _Candidate) -> Allocation:
        snapshot = candidate.snapshot
        return Allocation(
            obligation_id=snapshot.id,
            stream=snapshot.stream,
            period=snapshot.period,
            tier=candidate.tier,
            base_owed_before=candidate.base_owed,
            penalty_owed_before=candidate.penalty_owed,
            penalty_accrued=candidate.penalty_accrued,
            base_amount=candidate.base_applied,
            penalty_amount=candidate.penalty_applied,
            resulting_status=self._resulting_status(candidate),
        )

    def _after(self, candidate: _Candidate) -> ObligationSnapshot:
        snapshot = candidate.snapshot
        return replace(
            snapshot,
            penalty_amount=candidate.penalty_accrued,
            base_paid=snapshot.base_paid + candidate.base_applied,
            penalty_paid=snapshot.penalty_paid + candidate.penalty_applied,
            status=self._resulting_status(candidate),
        )


def plan_distribution(
    account: AccountSnapshot,
    obligations: Iterable[ObligationSnapshot],
    payment_amount: int,
    payment_date: date,
    scope: ScopeFilter | None = None,
) -> DistributionPlan:
    """Functional shortcut for DistributionPlanner().plan(...)."""
    return DistributionPlanner().plan(account, obligations, payment_amount, payment_date, scope)


__all__ = [
    "AccountSnapshot",
    "Allocation",
    "DistributionPlan",
    "DistributionPlanner",
    "ObligationSnapshot",
    "PriorityTier",
    "ScopeFilter",
    "accrued_penalty",
    "classify",
    "period_of",
    "plan_distribution",
    "validate_period",
]

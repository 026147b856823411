"""Payment service: preview, commit and reverse payments for an account.

Provides methods for:
- Previewing how a payment would be distributed (read-only)
- Committing a payment atomically, idempotent per reference key
- Reversing a committed payment
- Account summary, credit history and transaction listing

Preview and commit share one planning path, so identical inputs against an
identical snapshot always yield identical plans.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date

from sqlalchemy.orm import Session

from condo_ledger.models import CreditLedgerEntry, TransactionRecord, status_for
from condo_ledger.services.currency import add_minor_units, format_money, is_minor_units
from condo_ledger.services.distribution_planner import (
    Allocation,
    DistributionPlan,
    DistributionPlanner,
    ObligationSnapshot,
    PriorityTier,
    ScopeFilter,
    accrued_penalty,
)
from condo_ledger.services.errors import ConflictError, UnknownAccountError, ValidationError
from condo_ledger.services.obligation_repository import ExpectedVersions, ObligationRepository
from condo_ledger.services.payment_recorder import PaymentRecorder
from condo_ledger.services.penalty_service import PenaltyCalculator
from condo_ledger.services.reversal_service import ReversalCoordinator, ReversalResult

logger = logging.getLogger(__name__)

MAX_IDEMPOTENCY_KEY_LENGTH = 100


@dataclass(frozen=True)
class PaymentPreview:
    """A plan plus the version tokens of the snapshot it was built from."""

    plan: DistributionPlan
    expected_versions: ExpectedVersions

    @property
    def allocations(self) -> tuple[Allocation, ...]:
        return self.plan.allocations

    @property
    def net_credit_delta(self) -> int:
        return self.plan.net_credit_delta

    @property
    def overpayment_amount(self) -> int:
        return self.plan.overpayment_amount

    @property
    def obligations_after(self) -> tuple[ObligationSnapshot, ...]:
        return self.plan.obligations_after


@dataclass(frozen=True)
class CommitResult:
    """Outcome of a commit (fresh or replayed by idempotency key)."""

    transaction_id: int
    account_id: int
    allocations: tuple[Allocation, ...]
    net_credit_delta: int
    resulting_credit_balance: int
    replayed: bool = False


@dataclass(frozen=True)
class AccountSummary:
    """Open obligations with penalties as of a date, and the credit balance."""

    account_id: int
    as_of: date
    credit_balance: int
    obligations: tuple[ObligationSnapshot, ...]

    @property
    def total_owed(self) -> int:
        return add_minor_units(*(o.owed for o in self.obligations))


def allocation_from_record(record) -> Allocation:
    """Rebuild a plan Allocation from its persisted AllocationRecord."""
    return Allocation(
        obligation_id=record.obligation_id,
        stream=record.stream,
        period=record.period,
        tier=PriorityTier(record.tier),
        base_owed_before=record.base_owed_before,
        penalty_owed_before=record.penalty_owed_before,
        penalty_accrued=record.penalty_accrued,
        base_amount=record.base_amount,
        penalty_amount=record.penalty_amount,
        resulting_status=record.resulting_status,
    )


class PaymentService:
    """Entry point for the three payment operations."""

    def __init__(self, db: Session, planner: DistributionPlanner | None = None):
        """Initialize payment service.

        Args:
            db: SQLAlchemy database session
            planner: Distribution planner (default: DistributionPlanner())
        """
        self.db = db
        self.repository = ObligationRepository(db)
        self.planner = planner or DistributionPlanner()

    def preview(
        self,
        account_id: int,
        amount: int,
        payment_date: date,
        scope: ScopeFilter | None = None,
    ) -> PaymentPreview:
        """Show how a payment would be distributed, without persisting anything.

        Raises:
            ValidationError: On invalid input or unknown account
        """
        self._validate_request(amount, payment_date, scope)
        return self._plan(account_id, amount, payment_date, scope)

    def commit(
        self,
        account_id: int,
        amount: int,
        payment_date: date,
        idempotency_key: str,
        scope: ScopeFilter | None = None,
        expected_versions: ExpectedVersions | None = None,
    ) -> CommitResult:
        """Distribute and record a payment atomically.

        Args:
            account_id: Account paying
            amount: Payment in minor units (> 0)
            payment_date: Date of payment
            idempotency_key: Caller reference key; a repeated key with the same
                payload returns the original result
            scope: Optional filter restricting eligible obligations
            expected_versions: Versions from an earlier preview; when given the
                commit fails with ConflictError unless the snapshot is unchanged,
                guaranteeing the committed plan equals the previewed one

        Returns:
            CommitResult

        Raises:
            ValidationError: On invalid input, unknown account, or key reuse
                with a different payload
            ConflictError: On concurrent modification (retryable)
        """
        self._validate_request(amount, payment_date, scope)
        if not isinstance(idempotency_key, str) or not idempotency_key.strip():
            raise ValidationError("idempotency_key is required")
        if len(idempotency_key) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise ValidationError(
                f"idempotency_key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters"
            )

        existing = self.repository.find_by_idempotency_key(idempotency_key)
        if existing is not None:
            return self._replay(existing, account_id, amount, payment_date, scope)

        preview = self._plan(account_id, amount, payment_date, scope)
        if expected_versions is not None and expected_versions != preview.expected_versions:
            logger.warning(
                f"Snapshot of account {account_id} changed since preview; commit rejected"
            )
            raise ConflictError(
                "Account or obligations changed since the preview; preview again",
                account_id=account_id,
            )

        record = PaymentRecorder(self.db).commit(preview.plan, preview.expected_versions, idempotency_key)
        return CommitResult(
            transaction_id=record.id,
            account_id=account_id,
            allocations=preview.plan.allocations,
            net_credit_delta=preview.plan.net_credit_delta,
            resulting_credit_balance=preview.plan.new_credit_balance,
        )

    def reverse(self, transaction_id: int) -> ReversalResult:
        """Undo a committed payment.

        Raises:
            TransactionNotFoundError: If the transaction does not exist
            ConflictError: If touched obligations changed since the commit
        """
        return ReversalCoordinator(self.db).reverse(transaction_id)

    def account_summary(self, account_id: int, as_of: date) -> AccountSummary:
        """Open obligations with penalties recomputed as of a date (read-only)."""
        account = self.repository.load_account_snapshot(account_id)
        calculator = PenaltyCalculator(account.grace_period_days, account.penalty_rate_percent)
        obligations = []
        for obligation in self.repository.load_open_obligations(account_id):
            penalty = accrued_penalty(calculator, obligation, as_of)
            obligations.append(
                replace(
                    obligation,
                    penalty_amount=penalty,
                    status=status_for(
                        obligation.base_amount + penalty,
                        obligation.base_paid + obligation.penalty_paid,
                    ),
                )
            )
        return AccountSummary(
            account_id=account_id,
            as_of=as_of,
            credit_balance=account.credit_balance,
            obligations=tuple(obligations),
        )

    def credit_history(self, account_id: int) -> list[CreditLedgerEntry]:
        """Credit balance changes of an account, oldest first."""
        self._require_account(account_id)
        return self.repository.list_credit_entries(account_id)

    def list_transactions(self, account_id: int) -> list[TransactionRecord]:
        """Committed (not reversed) payments of an account, by payment date."""
        self._require_account(account_id)
        return self.repository.list_transactions(account_id)

    def _require_account(self, account_id: int) -> None:
        if self.repository.get_account(account_id) is None:
            raise UnknownAccountError(account_id)

    @staticmethod
    def _validate_request(amount: int, payment_date: date, scope: ScopeFilter | None) -> None:
        if not is_minor_units(amount) or amount <= 0:
            raise ValidationError(f"Payment amount must be a positive integer of minor units, got {amount!r}")
        if not isinstance(payment_date, date):
            raise ValidationError(f"Invalid payment date {payment_date!r}")
        if scope is not None and not isinstance(scope, ScopeFilter):
            raise ValidationError(f"Invalid scope filter {scope!r}")

    def _plan(
        self,
        account_id: int,
        amount: int,
        payment_date: date,
        scope: ScopeFilter | None,
    ) -> PaymentPreview:
        account = self.repository.load_account_snapshot(account_id)
        obligations = self.repository.load_open_obligations(account_id)
        plan = self.planner.plan(account, obligations, amount, payment_date, scope)
        versions = self.repository.capture_versions(account, obligations)
        return PaymentPreview(plan=plan, expected_versions=versions)

    def _replay(
        self,
        record: TransactionRecord,
        account_id: int,
        amount: int,
        payment_date: date,
        scope: ScopeFilter | None,
    ) -> CommitResult:
        same_payload = (
            record.account_id == account_id
            and record.amount == amount
            and record.payment_date == payment_date
            and record.scope_stream == (scope.stream if scope else None)
            and record.scope_period == (scope.period if scope else None)
        )
        if not same_payload:
            raise ValidationError(
                f"Idempotency key {record.idempotency_key!r} was already used for a different payment"
            )
        logger.info(
            f"Replaying payment {record.id} for key {record.idempotency_key!r} "
            f"({format_money(record.amount)})"
        )
        return CommitResult(
            transaction_id=record.id,
            account_id=record.account_id,
            allocations=tuple(allocation_from_record(a) for a in record.allocations),
            net_credit_delta=record.net_credit_delta,
            resulting_credit_balance=record.resulting_credit_balance,
            replayed=True,
        )


__all__ = [
    "AccountSummary",
    "CommitResult",
    "PaymentPreview",
    "PaymentService",
    "allocation_from_record",
]

"""Payment recorder: persists a distribution plan as one atomic unit.

A commit re-checks every version token captured when the plan was built,
then in a single database transaction:
- updates paid amounts, accrued penalty and status of each allocated obligation
- updates the account credit balance and writes the paired CreditLedgerEntry
- creates the TransactionRecord with all its AllocationRecords
- writes an audit log entry

Any failure rolls the whole transaction back; nothing partial is visible.
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from condo_ledger.models import (
    AllocationRecord,
    CreditLedgerEntry,
    CreditSource,
    Obligation,
    TransactionRecord,
    status_for,
)
from condo_ledger.services.audit_service import AuditService
from condo_ledger.services.currency import add_minor_units, format_money
from condo_ledger.services.distribution_planner import DistributionPlan
from condo_ledger.services.errors import (
    ConflictError,
    InvariantViolationError,
    UnknownAccountError,
    ValidationError,
)
from condo_ledger.services.obligation_repository import ExpectedVersions, ObligationRepository

logger = logging.getLogger(__name__)


def check_obligation_amounts(obligation: Obligation) -> None:
    """Raise if an obligation's paid amounts are negative or exceed what it owes."""
    if obligation.base_paid < 0 or obligation.penalty_paid < 0:
        raise InvariantViolationError(f"Obligation {obligation.id} has a negative paid amount")
    if obligation.base_paid > obligation.base_amount or obligation.penalty_paid > obligation.penalty_amount:
        raise InvariantViolationError(
            f"Obligation {obligation.id} would be paid beyond what it owes "
            f"(base {obligation.base_paid}/{obligation.base_amount}, "
            f"penalty {obligation.penalty_paid}/{obligation.penalty_amount})"
        )


class PaymentRecorder:
    """Applies distribution plans to storage atomically."""

    def __init__(self, session: Session):
        """Initialize with database session.

        Args:
            session: Session whose transaction the commit runs in
        """
        self.session = session
        self.repository = ObligationRepository(session)

    def commit(
        self,
        plan: DistributionPlan,
        expected_versions: ExpectedVersions,
        idempotency_key: str,
    ) -> TransactionRecord:
        """Persist a plan.

        Args:
            plan: Plan built from the snapshot the versions were captured with
            expected_versions: Account and obligation versions seen at plan time
            idempotency_key: Caller reference key stored on the transaction

        Returns:
            The committed TransactionRecord

        Raises:
            ConflictError: If any version changed since the plan was built (retryable)
            InvariantViolationError: If the plan would create or destroy money
            ValidationError: If the plan and versions do not belong together
        """
        plan.verify()
        if expected_versions.account_id != plan.account_id:
            raise ValidationError(
                f"Versions captured for account {expected_versions.account_id}, "
                f"plan is for account {plan.account_id}"
            )
        unknown = [
            a.obligation_id
            for a in plan.allocations
            if a.obligation_id not in expected_versions.obligation_versions
        ]
        if unknown:
            raise ValidationError(f"Plan allocates to obligations without captured versions: {unknown}")

        try:
            record = self._apply(plan, expected_versions, idempotency_key)
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning(f"Concurrent update while committing payment for account {plan.account_id}")
            raise ConflictError(
                "Account or obligations were modified concurrently; re-plan and retry",
                account_id=plan.account_id,
            ) from e
        except IntegrityError as e:
            self.session.rollback()
            if self.repository.find_by_idempotency_key(idempotency_key) is not None:
                raise ConflictError(
                    f"Idempotency key {idempotency_key!r} was committed concurrently",
                    account_id=plan.account_id,
                ) from e
            logger.error(f"Integrity check failed committing payment for account {plan.account_id}: {e}")
            raise InvariantViolationError(f"Database rejected payment records: {e.orig}") from e
        except InvariantViolationError as e:
            self.session.rollback()
            logger.error(f"Invariant violation committing payment for account {plan.account_id}: {e}")
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Committed payment {record.id} for account {plan.account_id}: "
            f"{format_money(plan.payment_amount)} applied {format_money(plan.total_applied)} "
            f"to {len(plan.allocations)} obligation(s), credit delta {format_money(plan.net_credit_delta)}"
        )
        return record

    def _apply(
        self,
        plan: DistributionPlan,
        expected_versions: ExpectedVersions,
        idempotency_key: str,
    ) -> TransactionRecord:
        account = self.repository.get_account(plan.account_id, refresh=True)
        if account is None:
            raise UnknownAccountError(plan.account_id)
        if account.version != expected_versions.account_version or account.credit_balance != plan.credit_before:
            raise ConflictError(
                f"Account {account.id} changed since the plan was built "
                f"(version {expected_versions.account_version} -> {account.version})",
                account_id=account.id,
            )

        expected = expected_versions.obligation_versions
        obligations = self.repository.get_obligations(expected.keys())
        stale = sorted(
            obligation_id
            for obligation_id, version in expected.items()
            if obligation_id not in obligations or obligations[obligation_id].version != version
        )
        if stale:
            raise ConflictError(
                f"Obligations {stale} changed since the plan was built",
                account_id=account.id,
                obligation_ids=tuple(stale),
            )

        record = TransactionRecord(
            account_id=account.id,
            idempotency_key=idempotency_key,
            amount=plan.payment_amount,
            payment_date=plan.payment_date,
            scope_stream=plan.scope.stream if plan.scope else None,
            scope_period=plan.scope.period if plan.scope else None,
            credit_before=plan.credit_before,
            net_credit_delta=plan.net_credit_delta,
            account_version_after=account.version + 1,
        )

        for sequence, allocation in enumerate(plan.allocations):
            obligation = obligations[allocation.obligation_id]
            if obligation.account_id != account.id:
                raise InvariantViolationError(
                    f"Obligation {obligation.id} does not belong to account {account.id}"
                )
            penalty_before = obligation.penalty_amount
            version_before = obligation.version

            obligation.penalty_amount = allocation.penalty_accrued
            obligation.penalty_paid = add_minor_units(obligation.penalty_paid, allocation.penalty_amount)
            obligation.base_paid = add_minor_units(obligation.base_paid, allocation.base_amount)
            check_obligation_amounts(obligation)
            obligation.status = status_for(obligation.owed_total, obligation.paid_total)
            if obligation.status != allocation.resulting_status:
                raise InvariantViolationError(
                    f"Obligation {obligation.id} status {obligation.status.value} "
                    f"differs from planned {allocation.resulting_status.value}"
                )
            obligation.version += 1

            record.allocations.append(
                AllocationRecord(
                    obligation_id=obligation.id,
                    sequence=sequence,
                    stream=allocation.stream,
                    period=allocation.period,
                    tier=int(allocation.tier),
                    base_owed_before=allocation.base_owed_before,
                    penalty_owed_before=allocation.penalty_owed_before,
                    penalty_accrued=allocation.penalty_accrued,
                    penalty_amount_before=penalty_before,
                    base_amount=allocation.base_amount,
                    penalty_amount=allocation.penalty_amount,
                    resulting_status=allocation.resulting_status,
                    obligation_version_before=version_before,
                    obligation_version_after=obligation.version,
                )
            )

        account.credit_balance = plan.new_credit_balance
        account.version += 1

        self.repository.add(record)
        self.repository.flush()

        self.repository.add(
            CreditLedgerEntry(
                account_id=account.id,
                transaction_id=record.id,
                source=CreditSource.PAYMENT,
                amount=plan.net_credit_delta,
                balance_after=account.credit_balance,
                note=f"Payment {idempotency_key}",
            )
        )
        AuditService.log(
            self.session,
            entity_type="payment_transaction",
            entity_id=record.id,
            action="commit",
            changes={
                "account_id": account.id,
                "amount": plan.payment_amount,
                "total_applied": plan.total_applied,
                "net_credit_delta": plan.net_credit_delta,
                "obligation_ids": [a.obligation_id for a in plan.allocations],
            },
        )
        self.repository.flush()
        return record


__all__ = ["PaymentRecorder", "check_obligation_amounts"]

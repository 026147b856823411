"""Reversal coordinator: undoes one committed payment exactly.

Reversal is all-or-nothing. Every obligation the payment touched must still
carry the version the commit produced; if any was modified afterwards (for
example by a later payment) the reversal fails with a ConflictError and
nothing changes. Reversing the later payment first hands the obligation back
to the earlier one, so stacked payments unwind newest first.

When all versions match, one database transaction:
- subtracts each allocation from its obligation's paid amounts
- restores the accrued penalty stored before the commit, recomputes status
- applies the negated credit delta and writes a reversal CreditLedgerEntry
- deletes the TransactionRecord and its AllocationRecords
"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from condo_ledger.models import CreditLedgerEntry, CreditSource, status_for
from condo_ledger.services.audit_service import AuditService
from condo_ledger.services.currency import add_minor_units, format_money
from condo_ledger.services.errors import (
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    TransactionNotFoundError,
)
from condo_ledger.services.obligation_repository import ObligationRepository
from condo_ledger.services.payment_recorder import check_obligation_amounts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReversalResult:
    """Outcome of a reversal."""

    transaction_id: int
    account_id: int
    restored_credit_balance: int
    obligation_ids: tuple[int, ...]


class ReversalCoordinator:
    """Computes and applies the exact inverse of a committed payment."""

    def __init__(self, session: Session):
        """Initialize with database session.

        Args:
            session: Session whose transaction the reversal runs in
        """
        self.session = session
        self.repository = ObligationRepository(session)

    def reverse(self, transaction_id: int) -> ReversalResult:
        """Reverse a committed payment.

        Args:
            transaction_id: ID of the TransactionRecord to undo

        Returns:
            ReversalResult with the restored credit balance

        Raises:
            TransactionNotFoundError: If the transaction does not exist
            ConflictError: If a touched obligation or the credit it created was
                modified since the commit
            InvariantViolationError: If undoing would leave negative paid amounts
        """
        try:
            result = self._apply(transaction_id)
            self.session.commit()
        except StaleDataError as e:
            self.session.rollback()
            logger.warning(f"Concurrent update while reversing payment {transaction_id}")
            raise ConflictError(
                f"Payment {transaction_id} data was modified concurrently; reversal abandoned"
            ) from e
        except InvariantViolationError as e:
            self.session.rollback()
            logger.error(f"Invariant violation reversing payment {transaction_id}: {e}")
            raise
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"Reversed payment {transaction_id} for account {result.account_id}: "
            f"restored credit balance {format_money(result.restored_credit_balance)}"
        )
        return result

    def _apply(self, transaction_id: int) -> ReversalResult:
        record = self.repository.get_transaction(transaction_id)
        if record is None:
            raise TransactionNotFoundError(transaction_id)

        allocations = list(record.allocations)
        obligations = self.repository.get_obligations(a.obligation_id for a in allocations)
        stale = sorted(
            a.obligation_id
            for a in allocations
            if a.obligation_id not in obligations
            or obligations[a.obligation_id].version != a.obligation_version_after
        )
        if stale:
            raise ConflictError(
                f"Obligations {stale} were modified after payment {transaction_id}; "
                f"reverse later payments first",
                account_id=record.account_id,
                obligation_ids=tuple(stale),
            )

        account = self.repository.get_account(record.account_id, refresh=True)
        if account is None:
            raise NotFoundError(f"Account {record.account_id} of payment {transaction_id} not found")

        restored_credit = account.credit_balance - record.net_credit_delta
        # Restored credit may not drop below zero, or below the debit it started from
        if restored_credit < min(0, record.credit_before):
            raise ConflictError(
                f"Credit created by payment {transaction_id} has already been used",
                account_id=account.id,
            )

        for allocation in allocations:
            obligation = obligations[allocation.obligation_id]
            obligation.base_paid = add_minor_units(obligation.base_paid, -allocation.base_amount)
            obligation.penalty_paid = add_minor_units(obligation.penalty_paid, -allocation.penalty_amount)
            obligation.penalty_amount = allocation.penalty_amount_before
            check_obligation_amounts(obligation)
            obligation.status = status_for(obligation.owed_total, obligation.paid_total)
            obligation.version += 1
            # The payment before this one becomes the latest on the obligation again
            for earlier in self.repository.find_allocations_at_version(
                obligation.id, allocation.obligation_version_before, exclude_transaction_id=record.id
            ):
                earlier.obligation_version_after = obligation.version

        account.credit_balance = restored_credit
        account.version += 1

        self.repository.add(
            CreditLedgerEntry(
                account_id=account.id,
                transaction_id=record.id,
                source=CreditSource.REVERSAL,
                amount=-record.net_credit_delta,
                balance_after=restored_credit,
                note=f"Reversal of payment {record.idempotency_key}",
            )
        )
        AuditService.log(
            self.session,
            entity_type="payment_transaction",
            entity_id=record.id,
            action="reverse",
            changes={
                "account_id": account.id,
                "amount": record.amount,
                "net_credit_delta": -record.net_credit_delta,
                "obligation_ids": [a.obligation_id for a in allocations],
            },
        )
        result = ReversalResult(
            transaction_id=record.id,
            account_id=account.id,
            restored_credit_balance=restored_credit,
            obligation_ids=tuple(a.obligation_id for a in allocations),
        )
        self.repository.delete(record)
        self.repository.flush()
        return result


__all__ = ["ReversalCoordinator", "ReversalResult"]

"""Obligation repository: storage access for accounts, obligations and payments.

Reads return immutable snapshots for the planner together with the version
tokens captured at read time; writes go through the ORM models so that the
mapper's version check guards every UPDATE.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from condo_ledger.models import (
    Account,
    AllocationRecord,
    CreditLedgerEntry,
    Obligation,
    ObligationStatus,
    ObligationStream,
    TransactionRecord,
    status_for,
)
from condo_ledger.services.config import settings
from condo_ledger.services.distribution_planner import AccountSnapshot, ObligationSnapshot, validate_period
from condo_ledger.services.errors import UnknownAccountError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpectedVersions:
    """Version tokens captured when a plan was built."""

    account_id: int
    account_version: int
    obligation_versions: dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "account_id": self.account_id,
            "account_version": self.account_version,
            "obligation_versions": {str(k): v for k, v in sorted(self.obligation_versions.items())},
        }


class ObligationRepository:
    """Read/write access to one database session's ledger records."""

    def __init__(self, session: Session):
        """Initialize with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    # Accounts

    def get_account(self, account_id: int, refresh: bool = False) -> Account | None:
        """Get account by ID, optionally re-reading it from the database."""
        return self.session.get(Account, account_id, populate_existing=refresh)

    def create_account(
        self,
        name: str,
        credit_balance: int = 0,
        grace_period_days: int | None = None,
        penalty_rate_percent: Decimal | None = None,
    ) -> Account:
        """Create an account with the configured penalty policy defaults."""
        grace = settings.default_grace_period_days if grace_period_days is None else grace_period_days
        rate = settings.default_penalty_rate_percent if penalty_rate_percent is None else penalty_rate_percent
        if grace < 0 or Decimal(str(rate)) < 0:
            raise ValidationError("Grace period and penalty rate must be non-negative")
        account = Account(
            name=name,
            credit_balance=credit_balance,
            grace_period_days=grace,
            penalty_rate_percent=Decimal(str(rate)),
        )
        self.session.add(account)
        self.session.flush()
        return account

    def load_account_snapshot(self, account_id: int) -> AccountSnapshot:
        """Load an account snapshot.

        Raises:
            UnknownAccountError: If the account does not exist
        """
        account = self.get_account(account_id, refresh=True)
        if account is None:
            raise UnknownAccountError(account_id)
        return AccountSnapshot.from_model(account)

    # Obligations

    def add_obligation(
        self,
        account_id: int,
        stream: ObligationStream,
        period: str,
        due_date: date,
        base_amount: int,
        penalty_amount: int = 0,
        description: str | None = None,
    ) -> Obligation:
        """Register an obligation produced by billing-cycle generation.

        Status is derived from the amounts, so a zero-amount adjustment starts
        out paid.
        """
        validate_period(period)
        if base_amount < 0 or penalty_amount < 0:
            raise ValidationError("Obligation amounts must be non-negative")
        obligation = Obligation(
            account_id=account_id,
            stream=stream,
            period=period,
            due_date=due_date,
            base_amount=base_amount,
            penalty_amount=penalty_amount,
            status=status_for(base_amount + penalty_amount, 0),
            description=description,
        )
        self.session.add(obligation)
        self.session.flush()
        return obligation

    def load_open_obligations(self, account_id: int) -> list[ObligationSnapshot]:
        """Snapshots of all not-yet-paid obligations of an account, by id."""
        stmt = (
            select(Obligation)
            .where(Obligation.account_id == account_id)
            .where(Obligation.status != ObligationStatus.PAID)
            .order_by(Obligation.id)
            .execution_options(populate_existing=True)
        )
        return [ObligationSnapshot.from_model(o) for o in self.session.scalars(stmt).all()]

    def get_obligations(self, obligation_ids: Iterable[int], refresh: bool = True) -> dict[int, Obligation]:
        """Load obligations by ID (missing IDs are absent from the result)."""
        ids = sorted(set(obligation_ids))
        if not ids:
            return {}
        stmt = select(Obligation).where(Obligation.id.in_(ids))
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return {o.id: o for o in self.session.scalars(stmt).all()}

    @staticmethod
    def capture_versions(
        account: AccountSnapshot, obligations: Iterable[ObligationSnapshot]
    ) -> ExpectedVersions:
        """Version tokens of everything a plan was built from."""
        return ExpectedVersions(
            account_id=account.id,
            account_version=account.version,
            obligation_versions={o.id: o.version for o in obligations},
        )

    # Payment transactions

    def get_transaction(self, transaction_id: int) -> TransactionRecord | None:
        return self.session.get(TransactionRecord, transaction_id)

    def find_by_idempotency_key(self, idempotency_key: str) -> TransactionRecord | None:
        stmt = select(TransactionRecord).where(TransactionRecord.idempotency_key == idempotency_key)
        return self.session.scalars(stmt).first()

    def find_allocations_at_version(
        self, obligation_id: int, version: int, exclude_transaction_id: int
    ) -> list[AllocationRecord]:
        """Allocations of other payments that left an obligation at a given version."""
        stmt = (
            select(AllocationRecord)
            .where(AllocationRecord.obligation_id == obligation_id)
            .where(AllocationRecord.obligation_version_after == version)
            .where(AllocationRecord.transaction_id != exclude_transaction_id)
        )
        return list(self.session.scalars(stmt).all())

    def list_transactions(self, account_id: int) -> list[TransactionRecord]:
        stmt = (
            select(TransactionRecord)
            .where(TransactionRecord.account_id == account_id)
            .order_by(TransactionRecord.payment_date, TransactionRecord.id)
        )
        return list(self.session.scalars(stmt).all())

    def list_credit_entries(self, account_id: int) -> list[CreditLedgerEntry]:
        stmt = (
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.account_id == account_id)
            .order_by(CreditLedgerEntry.id)
        )
        return list(self.session.scalars(stmt).all())

    # Unit of work

    def add(self, *records) -> None:
        self.session.add_all(records)

    def delete(self, record) -> None:
        self.session.delete(record)

    def flush(self) -> None:
        self.session.flush()


__all__ = ["ExpectedVersions", "ObligationRepository"]

"""Payment transaction ORM models: the durable, reversible record of a commit."""

from datetime import date

from sqlalchemy import Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from condo_ledger.models import Base, BaseModel
from condo_ledger.models.obligation import ObligationStatus, ObligationStream


class TransactionRecord(Base, BaseModel):
    """Model binding one payment to its allocations and credit change.

    Created together with its AllocationRecords in a single database
    transaction and deleted together with them on reversal.
    """

    __tablename__ = "payment_transactions"

    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
        comment="Account the payment was applied to",
    )

    idempotency_key: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Caller-supplied reference key; replays return this record",
    )

    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Payment amount in minor units",
    )

    payment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
        comment="Date of payment (penalties computed as of this date)",
    )

    scope_stream: Mapped[ObligationStream | None] = mapped_column(nullable=True)
    scope_period: Mapped[str | None] = mapped_column(String(7), nullable=True)

    credit_before: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Account credit balance before the payment",
    )

    net_credit_delta: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Signed change applied to the credit balance",
    )

    account_version_after: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    allocations: Mapped[list["AllocationRecord"]] = relationship(
        "AllocationRecord",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="AllocationRecord.sequence",
    )

    __table_args__ = (
        Index("idx_payment_transaction_account_date", "account_id", "payment_date"),
    )

    @property
    def resulting_credit_balance(self) -> int:
        return self.credit_before + self.net_credit_delta

    def __repr__(self) -> str:
        return (
            f"<TransactionRecord(id={self.id}, account_id={self.account_id}, "
            f"amount={self.amount}, date={self.payment_date}, "
            f"net_credit_delta={self.net_credit_delta})>"
        )


class AllocationRecord(Base, BaseModel):
    """One line item of a committed payment: part of one obligation paid.

    Stores everything needed to rebuild the plan's allocation exactly and to
    undo it: the amounts applied, the accrued penalty before the commit and
    the obligation versions before and after the commit.
    """

    __tablename__ = "payment_allocations"

    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("payment_transactions.id"),
        nullable=False,
        index=True,
    )
    obligation_id: Mapped[int] = mapped_column(
        ForeignKey("obligations.id"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, comment="Order within the plan")

    stream: Mapped[ObligationStream] = mapped_column(nullable=False)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)

    base_owed_before: Mapped[int] = mapped_column(Integer, nullable=False)
    penalty_owed_before: Mapped[int] = mapped_column(Integer, nullable=False)
    penalty_accrued: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Accrued penalty as of the payment date",
    )
    penalty_amount_before: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Stored accrued penalty before the commit (restored on reversal)",
    )

    base_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    penalty_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    resulting_status: Mapped[ObligationStatus] = mapped_column(nullable=False)
    obligation_version_before: Mapped[int] = mapped_column(Integer, nullable=False)
    obligation_version_after: Mapped[int] = mapped_column(Integer, nullable=False)

    transaction: Mapped["TransactionRecord"] = relationship(
        "TransactionRecord",
        back_populates="allocations",
        foreign_keys=[transaction_id],
    )

    @property
    def total(self) -> int:
        return self.base_amount + self.penalty_amount

    def __repr__(self) -> str:
        return (
            f"<AllocationRecord(transaction_id={self.transaction_id}, "
            f"obligation_id={self.obligation_id}, base={self.base_amount}, "
            f"penalty={self.penalty_amount}, status={self.resulting_status})>"
        )


__all__ = ["AllocationRecord", "TransactionRecord"]

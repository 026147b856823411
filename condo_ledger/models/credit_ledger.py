"""Credit ledger ORM model: history of credit balance changes."""

from enum import Enum

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from condo_ledger.models import Base, BaseModel


class CreditSource(str, Enum):
    """What caused a credit balance change."""

    PAYMENT = "payment"
    REVERSAL = "reversal"


class CreditLedgerEntry(Base, BaseModel):
    """One credit balance change, paired 1:1 with a payment or its reversal.

    Entries are history and outlive the transaction they describe, so
    ``transaction_id`` is a plain reference rather than a foreign key.
    """

    __tablename__ = "credit_ledger_entries"

    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
    )

    transaction_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
        comment="Payment transaction committed or reversed",
    )

    source: Mapped[CreditSource] = mapped_column(nullable=False)

    amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Signed change in minor units",
    )

    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)

    note: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        Index("idx_credit_ledger_account_created", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<CreditLedgerEntry(id={self.id}, account_id={self.account_id}, "
            f"source={self.source}, amount={self.amount}, balance_after={self.balance_after})>"
        )


__all__ = ["CreditLedgerEntry", "CreditSource"]

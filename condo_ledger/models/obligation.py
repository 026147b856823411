"""Obligation ORM model: one billable charge of one stream for one period."""

from datetime import date
from enum import Enum

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from condo_ledger.models import Base, BaseModel


class ObligationStream(str, Enum):
    """Obligation streams sharing one allocation algorithm."""

    DUES = "dues"
    """Recurring association dues (prepaid: future periods may be paid ahead)"""

    UTILITY = "utility"
    """Metered utility bill (postpaid: billed after consumption)"""

    @property
    def rank(self) -> int:
        """Ordering among streams when several are due together."""
        return _STREAM_RANK[self]

    @property
    def allows_prepayment(self) -> bool:
        return self is ObligationStream.DUES


_STREAM_RANK = {
    ObligationStream.DUES: 0,
    ObligationStream.UTILITY: 1,
}


class ObligationStatus(str, Enum):
    """Payment status, derived from paid vs. owed."""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


def status_for(owed_total: int, paid_total: int) -> ObligationStatus:
    """Derive status from total owed (base + accrued penalty) and total paid."""
    if paid_total >= owed_total:
        return ObligationStatus.PAID
    if paid_total == 0:
        return ObligationStatus.UNPAID
    return ObligationStatus.PARTIAL


class Obligation(Base, BaseModel):
    """
    One charge instance belonging to a stream, e.g. "dues for 2025-11".

    Amounts are integer minor units. ``penalty_amount`` is the accrued late
    penalty as of the last payment applied; ``base_paid`` and
    ``penalty_paid`` never exceed ``base_amount`` and ``penalty_amount``.

    Obligations are created by billing-cycle generation and mutated only by
    the payment recorder and the reversal coordinator.
    """

    __tablename__ = "obligations"

    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"),
        nullable=False,
        index=True,
        comment="Account (unit) this obligation belongs to",
    )

    stream: Mapped[ObligationStream] = mapped_column(
        nullable=False,
        index=True,
        comment="Obligation stream: dues or utility",
    )

    period: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="Billing period as YYYY-MM",
    )

    due_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="Date payment is due; penalties accrue after grace",
    )

    base_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Base charge in minor units",
    )

    penalty_amount: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Accrued penalty in minor units",
    )

    base_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    penalty_paid: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[ObligationStatus] = mapped_column(
        nullable=False,
        default=ObligationStatus.UNPAID,
        index=True,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency token",
    )

    description: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        comment="Optional note (e.g., 'Adjustment')",
    )

    # Relationships
    account: Mapped["Account"] = relationship(  # noqa: F821
        "Account",
        back_populates="obligations",
        foreign_keys=[account_id],
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    __table_args__ = (
        UniqueConstraint("account_id", "stream", "period", name="uq_obligation_account_stream_period"),
        CheckConstraint("base_amount >= 0", name="ck_obligation_base_non_negative"),
        CheckConstraint("penalty_amount >= 0", name="ck_obligation_penalty_non_negative"),
        CheckConstraint("base_paid >= 0 AND base_paid <= base_amount", name="ck_obligation_base_paid"),
        CheckConstraint(
            "penalty_paid >= 0 AND penalty_paid <= penalty_amount", name="ck_obligation_penalty_paid"
        ),
        Index("idx_obligation_account_status", "account_id", "status"),
    )

    @property
    def owed_total(self) -> int:
        return self.base_amount + self.penalty_amount

    @property
    def paid_total(self) -> int:
        return self.base_paid + self.penalty_paid

    def __repr__(self) -> str:
        return (
            f"<Obligation(id={self.id}, account_id={self.account_id}, stream={self.stream}, "
            f"period={self.period}, base={self.base_amount}, penalty={self.penalty_amount}, "
            f"paid={self.paid_total}, status={self.status}, version={self.version})>"
        )


__all__ = ["Obligation", "ObligationStatus", "ObligationStream", "status_for"]

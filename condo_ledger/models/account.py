"""Account ORM model for billable units and their credit balance."""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from condo_ledger.models import Base, BaseModel


class Account(Base, BaseModel):
    """Model representing a billable unit.

    Holds the unit's credit balance (unapplied funds, integer minor units) and
    the per-account penalty policy. The credit balance is only ever changed by
    the payment recorder or the reversal coordinator, inside the same database
    transaction that updates the affected obligations.

    ``version`` is an optimistic concurrency token. It is managed explicitly
    (``version_id_generator=False``): writers bump it, and SQLAlchemy adds the
    previous value to the UPDATE's WHERE clause so a concurrent writer fails
    with ``StaleDataError`` instead of overwriting.
    """

    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Unit name or number (e.g., 'Unit 101')",
    )

    credit_balance: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Unapplied funds in minor units (signed)",
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
        comment="Optimistic concurrency token, bumped on every commit/reversal",
    )

    grace_period_days: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10,
        comment="Days after the due date before penalties start",
    )

    penalty_rate_percent: Mapped[Decimal] = mapped_column(
        Numeric(6, 3),
        nullable=False,
        default=Decimal("5"),
        comment="Monthly compounding penalty rate, in percent",
    )

    # Relationships
    obligations: Mapped[list["Obligation"]] = relationship(  # noqa: F821
        "Obligation",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="Obligation.id",
    )

    __mapper_args__ = {
        "version_id_col": version,
        "version_id_generator": False,
    }

    __table_args__ = (
        CheckConstraint("grace_period_days >= 0", name="ck_account_grace_non_negative"),
        CheckConstraint("penalty_rate_percent >= 0", name="ck_account_rate_non_negative"),
        Index("idx_account_name", "name"),
    )

    def __repr__(self) -> str:
        return (
            f"<Account(id={self.id}, name={self.name!r}, "
            f"credit_balance={self.credit_balance}, version={self.version})>"
        )


__all__ = ["Account"]

"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from condo_ledger.models.account import Account  # noqa: E402
from condo_ledger.models.audit_log import AuditLog  # noqa: E402
from condo_ledger.models.credit_ledger import CreditLedgerEntry, CreditSource  # noqa: E402
from condo_ledger.models.obligation import (  # noqa: E402
    Obligation,
    ObligationStatus,
    ObligationStream,
    status_for,
)
from condo_ledger.models.payment_transaction import (  # noqa: E402
    AllocationRecord,
    TransactionRecord,
)

__all__ = [
    "Base",
    "BaseModel",
    "Account",
    "AuditLog",
    "AllocationRecord",
    "CreditLedgerEntry",
    "CreditSource",
    "Obligation",
    "ObligationStatus",
    "ObligationStream",
    "TransactionRecord",
    "status_for",
]

"""Audit log model for tracking payment lifecycle events."""

from typing import Any

from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column

from condo_ledger.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for payment commits and reversals.

    Records what (action) happened to which entity (entity_type, entity_id)
    with an optional snapshot of the amounts involved (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(index=False)
    """Entity type being audited: "payment_transaction"."""

    entity_id: Mapped[int] = mapped_column(index=False)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(index=False)
    """Action performed: "commit", "reverse"."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"amount": 95000, "net_credit_delta": 0}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]

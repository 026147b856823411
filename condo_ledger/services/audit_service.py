"""Audit service for logging payment lifecycle events."""

from sqlalchemy.orm import Session

from condo_ledger.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries inside the
    caller's database transaction.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("payment_transaction")
            entity_id: Primary key of the entity
            action: Action performed ("commit", "reverse")
            changes: Optional JSON snapshot of the amounts involved

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes,
        )
        db.add(audit)
        return audit


__all__ = ["AuditService"]

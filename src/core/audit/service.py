from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Ledger audit actions."""

    CREATE_INVOICE = "invoice.create"
    GENERATE_MONTHLY = "invoice.generate_monthly"
    GENERATE_SCHEDULED = "invoice.generate_scheduled"
    ADJUST_INVOICE = "invoice.adjust"
    REFRESH_STATUS = "invoice.refresh_status"
    MARK_OVERDUE = "invoice.mark_overdue"
    CREATE_PAYMENT = "payment.create"
    APPLY_CREDIT = "payment.apply_credit"
    ALLOCATE_PAYMENT = "payment.allocate"
    REFUND_PAYMENT = "payment.refund"
    CREATE_SCHEDULE = "schedule.create"


class AuditService:
    """Service for creating audit logs within one tenant."""

    def __init__(self, db: AsyncSession, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        actor: str | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        audit_log = AuditLog(
            tenant_id=self.tenant_id,
            actor=actor,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Audit entries for one record, oldest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(
                AuditLog.tenant_id == self.tenant_id,
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
            )
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        return list(result.scalars().all())

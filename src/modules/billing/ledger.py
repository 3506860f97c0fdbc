"""Tenant-scoped persistence for invoices, payments, allocations and adjustments."""

from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents import DocumentNumberGenerator
from src.modules.billing.models import BillingSchedule
from src.modules.invoices.models import (
    OUTSTANDING_STATUSES,
    Invoice,
    InvoiceAdjustment,
    InvoiceStatus,
    InvoiceType,
)
from src.modules.payments.models import Payment, PaymentAllocation, PaymentMethod
from src.modules.students.models import Student


class LedgerStore:
    """
    Every query here is filtered by tenant_id. Row locks (FOR UPDATE) are
    taken where a caller reads a balance it is about to change.
    """

    def __init__(self, db: AsyncSession, tenant_id: str):
        self.db = db
        self.tenant_id = tenant_id
        self.numbers = DocumentNumberGenerator(db, tenant_id)

    # --- Unit of work ---

    def add(self, obj: Any) -> None:
        self.db.add(obj)

    async def flush(self) -> None:
        await self.db.flush()

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    # --- Students ---

    async def lock_student(self, student_id: int) -> Student | None:
        """
        Lock the student row. Operations that read or spend a student's credit
        take this lock first so they serialize per student.
        """
        result = await self.db.execute(
            select(Student)
            .where(Student.id == student_id, Student.tenant_id == self.tenant_id)
            .with_for_update()
        )
        return result.scalar_one_or_none()

    # --- Invoices ---

    async def get_invoice(self, invoice_id: int, for_update: bool = False) -> Invoice | None:
        stmt = select(Invoice).where(
            Invoice.id == invoice_id, Invoice.tenant_id == self.tenant_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_outstanding_invoices(
        self, student_id: int, for_update: bool = True
    ) -> list[Invoice]:
        """Unpaid invoices of a student, oldest issue date first."""
        stmt = (
            select(Invoice)
            .where(
                Invoice.tenant_id == self.tenant_id,
                Invoice.student_id == student_id,
                Invoice.status.in_(OUTSTANDING_STATUSES),
                Invoice.balance_due > 0,
            )
            .order_by(Invoice.issue_date, Invoice.invoice_number, Invoice.id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_period_invoice(self, student_id: int, period_start: date) -> Invoice | None:
        """The monthly run's invoice for a period. Scheduled invoices do not count."""
        result = await self.db.execute(
            select(Invoice).where(
                Invoice.tenant_id == self.tenant_id,
                Invoice.student_id == student_id,
                Invoice.billing_period_start == period_start,
                Invoice.invoice_type == InvoiceType.MONTHLY.value,
                Invoice.billing_schedule_id.is_(None),
            )
        )
        return result.scalars().first()

    async def find_schedule_invoice(
        self, schedule_id: int, period_start: date
    ) -> Invoice | None:
        result = await self.db.execute(
            select(Invoice).where(
                Invoice.tenant_id == self.tenant_id,
                Invoice.billing_schedule_id == schedule_id,
                Invoice.billing_period_start == period_start,
            )
        )
        return result.scalars().first()

    async def list_invoices(
        self,
        student_id: int | None = None,
        status: str | None = None,
        invoice_type: str | None = None,
    ) -> list[Invoice]:
        stmt = select(Invoice).where(Invoice.tenant_id == self.tenant_id)
        if student_id is not None:
            stmt = stmt.where(Invoice.student_id == student_id)
        if status:
            stmt = stmt.where(Invoice.status == status)
        if invoice_type:
            stmt = stmt.where(Invoice.invoice_type == invoice_type)
        stmt = stmt.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_overdue_candidates(self, as_of: date) -> list[Invoice]:
        """Unpaid invoices with nothing paid whose due date has passed."""
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.tenant_id == self.tenant_id,
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.due_date < as_of,
                Invoice.balance_due > 0,
            )
            .order_by(Invoice.due_date, Invoice.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    # --- Payments ---

    async def get_payment(self, payment_id: int, for_update: bool = False) -> Payment | None:
        stmt = select(Payment).where(
            Payment.id == payment_id, Payment.tenant_id == self.tenant_id
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_student_payments(self, student_id: int) -> list[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.tenant_id == self.tenant_id, Payment.student_id == student_id)
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
        )
        return list(result.scalars().all())

    async def sum_money_received(self, student_id: int) -> Decimal:
        """Real money received: completed, non-refunded, non-credit payments."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.tenant_id == self.tenant_id,
                Payment.student_id == student_id,
                Payment.is_refunded.is_(False),
                Payment.payment_method != PaymentMethod.CREDIT.value,
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def sum_student_allocations(self, student_id: int) -> Decimal:
        """Everything allocated from the student's payments, credit applications included."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(PaymentAllocation.amount), 0))
            .join(Payment, Payment.id == PaymentAllocation.payment_id)
            .where(
                PaymentAllocation.tenant_id == self.tenant_id,
                Payment.tenant_id == self.tenant_id,
                Payment.student_id == student_id,
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def sum_payment_allocations(self, payment_id: int) -> Decimal:
        result = await self.db.execute(
            select(func.coalesce(func.sum(PaymentAllocation.amount), 0)).where(
                PaymentAllocation.tenant_id == self.tenant_id,
                PaymentAllocation.payment_id == payment_id,
            )
        )
        return Decimal(str(result.scalar() or 0))

    # --- Ledger views ---

    def _student_allocations_query(self, student_id: int) -> Select:
        return (
            select(
                PaymentAllocation.id,
                PaymentAllocation.payment_id,
                PaymentAllocation.invoice_id,
                PaymentAllocation.amount,
                PaymentAllocation.allocated_at,
                Payment.payment_date,
                Payment.payment_method,
                Payment.receipt_number,
                Invoice.invoice_number,
            )
            .join(Payment, Payment.id == PaymentAllocation.payment_id)
            .join(Invoice, Invoice.id == PaymentAllocation.invoice_id)
            .where(
                PaymentAllocation.tenant_id == self.tenant_id,
                Payment.tenant_id == self.tenant_id,
                Invoice.tenant_id == self.tenant_id,
                Payment.student_id == student_id,
            )
        )

    async def list_student_allocations(self, student_id: int) -> list[dict]:
        """Allocations joined with payment and invoice metadata, newest first."""
        result = await self.db.execute(
            self._student_allocations_query(student_id).order_by(
                Payment.payment_date.desc(), PaymentAllocation.id.desc()
            )
        )
        return [dict(row._mapping) for row in result.all()]

    async def list_student_adjustments(self, student_id: int) -> list[dict]:
        """Adjustments joined with invoice numbers, newest first."""
        result = await self.db.execute(
            select(
                InvoiceAdjustment.id,
                InvoiceAdjustment.invoice_id,
                InvoiceAdjustment.adjustment_type,
                InvoiceAdjustment.amount,
                InvoiceAdjustment.total_before,
                InvoiceAdjustment.total_after,
                InvoiceAdjustment.reason,
                InvoiceAdjustment.notes,
                InvoiceAdjustment.applied_by,
                InvoiceAdjustment.applied_at,
                Invoice.invoice_number,
            )
            .join(Invoice, Invoice.id == InvoiceAdjustment.invoice_id)
            .where(
                InvoiceAdjustment.tenant_id == self.tenant_id,
                Invoice.tenant_id == self.tenant_id,
                Invoice.student_id == student_id,
            )
            .order_by(InvoiceAdjustment.applied_at.desc(), InvoiceAdjustment.id.desc())
        )
        return [dict(row._mapping) for row in result.all()]

    # --- Schedules ---

    async def get_due_schedules(self, target: date) -> list[BillingSchedule]:
        result = await self.db.execute(
            select(BillingSchedule)
            .where(
                BillingSchedule.tenant_id == self.tenant_id,
                BillingSchedule.is_active.is_(True),
                BillingSchedule.next_billing_date <= target,
            )
            .order_by(BillingSchedule.next_billing_date, BillingSchedule.id)
            .with_for_update()
        )
        return list(result.scalars().all())

    async def get_scheduled_enrollment_ids(self) -> set[int]:
        """Enrollments billed by an active schedule instead of the monthly run."""
        result = await self.db.execute(
            select(BillingSchedule.enrollment_id).where(
                BillingSchedule.tenant_id == self.tenant_id,
                BillingSchedule.is_active.is_(True),
                BillingSchedule.enrollment_id.is_not(None),
            )
        )
        return set(result.scalars().all())

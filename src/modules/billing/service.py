"""Service for Billing module: invoicing, payments, adjustments and student ledgers."""

import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit import AuditAction, AuditService
from src.core.config import settings
from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.modules.billing.adjustments import AdjustmentEngine, append_note
from src.modules.billing.allocator import CreditAllocator
from src.modules.billing.ledger import LedgerStore
from src.modules.billing.models import BillingFrequency, BillingSchedule
from src.modules.billing.proration import add_months, calculate_prorated_fee, month_bounds
from src.modules.billing.schemas import (
    AdjustmentRecordResponse,
    AdjustmentRequest,
    AdjustmentResult,
    AdvancePaymentResult,
    AllocationItem,
    AllocationResponse,
    BillingScheduleCreate,
    InvoiceCreate,
    InvoiceResponse,
    InvoiceStatusResult,
    LedgerAdjustmentEntry,
    LedgerAllocationEntry,
    LedgerSummary,
    PartialPaymentResult,
    PaymentMeta,
    PaymentResponse,
    RefundRequest,
    StatementEntry,
    StudentLedger,
    StudentStatement,
    UpdatedInvoiceSummary,
)
from src.modules.invoices.models import Invoice, InvoiceType
from src.modules.invoices.status import derive_invoice_status, recalculate_invoice
from src.modules.payments.models import Payment, PaymentMethod, PaymentStatus
from src.modules.students.directory import SqlStudentDirectory, StudentDirectory
from src.shared.utils.money import ZERO, round_money, sum_money, to_money

logger = logging.getLogger(__name__)


class BillingService:
    """
    Billing orchestration for one tenant.

    Every mutating operation runs in a single transaction: it commits once at
    the end and rolls back on any error, so a payment is never stored without
    its allocations. Integrity violations (duplicate numbers, a concurrent
    duplicate monthly invoice, a negative balance) become a retryable
    ConflictError.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        directory: StudentDirectory,
        today: Callable[[], date] = date.today,
        system_actor: str | None = None,
    ):
        self.ledger = ledger
        self.directory = directory
        self.today = today
        self.system_actor = system_actor or settings.billing_system_actor
        self.audit = AuditService(ledger.db, ledger.tenant_id)
        self.allocator = CreditAllocator(ledger, today)
        self.adjuster = AdjustmentEngine(ledger, today)

    @classmethod
    def for_tenant(
        cls,
        db: AsyncSession,
        tenant_id: str,
        today: Callable[[], date] = date.today,
    ) -> "BillingService":
        """Service wired to the SQL ledger and directory of one tenant."""
        return cls(LedgerStore(db, tenant_id), SqlStudentDirectory(db, tenant_id), today=today)

    @asynccontextmanager
    async def _transaction(self, operation: str):
        try:
            yield
            await self.ledger.commit()
        except IntegrityError as e:
            await self.ledger.rollback()
            logger.error("Integrity violation during %s: %s", operation, e.orig)
            raise ConflictError(
                f"Concurrent update detected during {operation}, please retry",
                details={"operation": operation},
            ) from e
        except Exception:
            await self.ledger.rollback()
            raise

    # --- Monthly invoicing ---

    async def generate_monthly_invoices(self, target_date: date | None = None) -> list[Invoice]:
        """
        Bill every student with active enrollments for the calendar month of
        target_date. Students already billed for that month are skipped, so the
        run can be repeated safely. Enrollments with an active billing schedule
        are left to that schedule.
        """
        billing_date = target_date or self.today()
        period_start, period_end = month_bounds(billing_date)

        scheduled = await self.ledger.get_scheduled_enrollment_ids()
        fees_by_student: dict[int, list[Decimal]] = defaultdict(list)
        for fee in await self.directory.list_active_enrollments():
            if fee.enrollment_id in scheduled:
                continue
            fees_by_student[fee.student_id].append(fee.base_fee)

        created: list[Invoice] = []
        skipped = 0
        async with self._transaction("monthly invoicing"):
            for student_id, fees in fees_by_student.items():
                if await self.ledger.find_period_invoice(student_id, period_start):
                    skipped += 1
                    continue

                total_fee = sum_money(fees)
                if total_fee <= ZERO:
                    skipped += 1
                    continue

                invoice = await self._issue_invoice_with_credit(
                    student_id=student_id,
                    amount=total_fee,
                    invoice_type=InvoiceType.MONTHLY,
                    period_start=period_start,
                    period_end=period_end,
                    issue_date=billing_date,
                )
                await self.audit.log(
                    action=AuditAction.GENERATE_MONTHLY,
                    entity_type="Invoice",
                    entity_id=invoice.id,
                    actor=self.system_actor,
                    entity_identifier=invoice.invoice_number,
                    new_values={"student_id": student_id, "total": str(invoice.total)},
                )
                created.append(invoice)

        logger.info(
            "Monthly invoicing for %s: %d created, %d skipped",
            period_start.strftime("%Y-%m"),
            len(created),
            skipped,
        )
        return created

    async def _issue_invoice_with_credit(
        self,
        student_id: int,
        amount: Decimal,
        invoice_type: InvoiceType,
        period_start: date,
        period_end: date,
        issue_date: date,
        notes: str | None = None,
        billing_schedule_id: int | None = None,
    ) -> Invoice:
        """
        Create a system invoice, offsetting it with the student's unallocated
        credit. The credit used is booked in `adjustments` and explained by a
        synthetic credit payment allocated to the invoice.
        """
        await self.ledger.lock_student(student_id)
        credit = await self._credit(student_id)
        credit_used = min(credit, amount)
        if credit_used > ZERO:
            notes = append_note(
                notes, f"Applied student credit: {settings.currency_code} {credit_used}"
            )

        invoice = Invoice(
            tenant_id=self.ledger.tenant_id,
            invoice_number=await self.ledger.numbers.invoice_number(issue_date),
            student_id=student_id,
            invoice_type=invoice_type.value,
            billing_period_start=period_start,
            billing_period_end=period_end,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=settings.invoice_due_days),
            subtotal=amount,
            discount=ZERO,
            late_fee=ZERO,
            adjustments=credit_used,
            amount_paid=ZERO,
            notes=notes,
            created_by=self.system_actor,
            billing_schedule_id=billing_schedule_id,
        )
        recalculate_invoice(invoice, self.today())
        self.ledger.add(invoice)
        await self.ledger.flush()

        if credit_used > ZERO:
            await self._apply_credit(invoice, credit_used)
        return invoice

    async def _apply_credit(self, invoice: Invoice, amount: Decimal) -> Payment:
        payment = Payment(
            tenant_id=self.ledger.tenant_id,
            receipt_number=await self.ledger.numbers.receipt_number(
                invoice.issue_date, invoice.invoice_number
            ),
            student_id=invoice.student_id,
            amount=amount,
            payment_method=PaymentMethod.CREDIT.value,
            payment_date=invoice.issue_date,
            status=PaymentStatus.COMPLETED.value,
            received_by=self.system_actor,
            notes="Applied student credit balance",
            is_refunded=False,
        )
        self.ledger.add(payment)
        await self.ledger.flush()
        await self.allocator.allocate_to_invoice(payment, invoice, amount)

        await self.audit.log(
            action=AuditAction.APPLY_CREDIT,
            entity_type="Payment",
            entity_id=payment.id,
            actor=self.system_actor,
            entity_identifier=payment.receipt_number,
            new_values={"invoice_id": invoice.id, "amount": str(amount)},
        )
        return payment

    # --- Payments ---

    async def process_advance_payment(
        self, student_id: int, amount: Any, meta: PaymentMeta
    ) -> AdvancePaymentResult:
        """
        Record a payment and spread it over the student's outstanding invoices,
        oldest issue date first. Whatever is left becomes student credit.
        """
        amount = self._positive_money(amount)
        async with self._transaction("advance payment"):
            await self._require_student(student_id)
            invoices = await self.ledger.get_outstanding_invoices(student_id)
            anchor = invoices[0].invoice_number if invoices else None

            payment = await self._create_payment(student_id, amount, meta, anchor)
            lines, remaining = await self.allocator.allocate_oldest_first(payment, invoices)

            await self.audit.log(
                action=AuditAction.CREATE_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                actor=meta.received_by,
                entity_identifier=payment.receipt_number,
                new_values={
                    "student_id": student_id,
                    "amount": str(amount),
                    "allocations": [
                        {"invoice_id": line.invoice_id, "amount": str(line.amount)}
                        for line in lines
                    ],
                    "remaining_credit": str(remaining),
                },
            )

        logger.info(
            "Advance payment %s of %s for student %s processed",
            payment.receipt_number,
            amount,
            student_id,
        )
        return AdvancePaymentResult(
            payment=PaymentResponse.model_validate(payment),
            allocations=[
                AllocationResponse(
                    invoice_id=line.invoice_id,
                    invoice_number=line.invoice_number,
                    amount=line.amount,
                )
                for line in lines
            ],
            remaining_credit=remaining,
        )

    async def process_partial_payment(
        self, invoice_id: int, amount: Any, meta: PaymentMeta
    ) -> PartialPaymentResult:
        """Pay part (or all) of one invoice. Amounts above its balance are rejected."""
        amount = self._positive_money(amount)
        async with self._transaction("partial payment"):
            invoice = await self._get_invoice(invoice_id, for_update=True)
            if amount > invoice.balance_due:
                logger.warning(
                    "Rejected payment of %s on invoice %s with balance %s",
                    amount,
                    invoice.invoice_number,
                    invoice.balance_due,
                )
                raise ValidationError(
                    f"Payment amount {amount} exceeds invoice balance {invoice.balance_due}",
                    field="amount",
                )

            payment = await self._create_payment(
                invoice.student_id, amount, meta, invoice.invoice_number
            )
            await self.allocator.allocate_to_invoice(payment, invoice, amount)

            await self.audit.log(
                action=AuditAction.CREATE_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                actor=meta.received_by,
                entity_identifier=payment.receipt_number,
                new_values={"invoice_id": invoice.id, "amount": str(amount)},
            )

        logger.info(
            "Partial payment %s of %s on invoice %s, balance now %s",
            payment.receipt_number,
            amount,
            invoice.invoice_number,
            invoice.balance_due,
        )
        return PartialPaymentResult(
            payment=PaymentResponse.model_validate(payment),
            invoice=InvoiceResponse.model_validate(invoice),
            new_balance=invoice.balance_due,
        )

    async def allocate_payment(
        self, payment_id: int, allocations: list[AllocationItem], allocated_by: str
    ) -> list[AllocationResponse]:
        """Apply the unallocated part of an existing payment to chosen invoices."""
        invoice_ids = [item.invoice_id for item in allocations]
        if len(set(invoice_ids)) != len(invoice_ids):
            raise ValidationError("Each invoice can appear only once", field="allocations")

        async with self._transaction("payment allocation"):
            payment = await self._get_payment(payment_id, for_update=True)
            if payment.is_refunded or payment.is_credit_application:
                raise ValidationError("Payment cannot be allocated")

            await self.ledger.lock_student(payment.student_id)
            allocated = await self.ledger.sum_payment_allocations(payment.id)
            available = min(
                round_money(Decimal(payment.amount) - allocated),
                await self._credit(payment.student_id),
            )
            requested = sum_money(item.amount for item in allocations)
            if requested > available:
                logger.warning(
                    "Rejected allocation of %s from payment %s, only %s unallocated",
                    requested,
                    payment.receipt_number,
                    available,
                )
                raise ValidationError(
                    f"Allocation of {requested} exceeds unallocated amount {available}",
                    field="allocations",
                )

            results: list[AllocationResponse] = []
            for item in allocations:
                invoice = await self._get_invoice(item.invoice_id, for_update=True)
                if invoice.student_id != payment.student_id:
                    raise ValidationError("Invoice does not belong to this student")
                if item.amount > invoice.balance_due:
                    raise ValidationError(
                        f"Allocation of {item.amount} exceeds balance {invoice.balance_due} "
                        f"of invoice {invoice.invoice_number}",
                        field="allocations",
                    )
                await self.allocator.allocate_to_invoice(payment, invoice, item.amount)
                results.append(
                    AllocationResponse(
                        invoice_id=invoice.id,
                        invoice_number=invoice.invoice_number,
                        amount=round_money(item.amount),
                    )
                )

            await self.audit.log(
                action=AuditAction.ALLOCATE_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                actor=allocated_by,
                entity_identifier=payment.receipt_number,
                new_values={
                    "allocations": [
                        {"invoice_id": r.invoice_id, "amount": str(r.amount)} for r in results
                    ]
                },
            )

        logger.info("Payment %s allocated to %d invoice(s)", payment.receipt_number, len(results))
        return results

    async def refund_payment(self, payment_id: int, data: RefundRequest) -> Payment:
        """Flag an unallocated payment as refunded; it no longer counts toward credit."""
        async with self._transaction("payment refund"):
            payment = await self._get_payment(payment_id, for_update=True)
            if payment.is_refunded:
                raise ValidationError("Payment is already refunded")
            if payment.is_credit_application:
                raise ValidationError("Credit applications cannot be refunded")

            await self.ledger.lock_student(payment.student_id)
            if await self.ledger.sum_payment_allocations(payment.id) > ZERO:
                raise ValidationError("Only unallocated payments can be refunded")
            if await self._credit(payment.student_id) < payment.amount:
                raise ValidationError("Payment has already been applied as student credit")

            payment.is_refunded = True
            payment.status = PaymentStatus.REFUNDED.value
            payment.refunded_at = datetime.now(timezone.utc)
            payment.refunded_by = data.refunded_by
            payment.notes = append_note(payment.notes, f"Refund: {data.reason}")
            await self.ledger.flush()

            await self.audit.log(
                action=AuditAction.REFUND_PAYMENT,
                entity_type="Payment",
                entity_id=payment.id,
                actor=data.refunded_by,
                entity_identifier=payment.receipt_number,
                old_values={"is_refunded": False},
                new_values={"is_refunded": True},
                comment=data.reason,
            )

        logger.info("Payment %s refunded", payment.receipt_number)
        return payment

    async def _create_payment(
        self, student_id: int, amount: Decimal, meta: PaymentMeta, anchor: str | None
    ) -> Payment:
        payment_date = meta.payment_date or self.today()
        payment = Payment(
            tenant_id=self.ledger.tenant_id,
            receipt_number=await self.ledger.numbers.receipt_number(payment_date, anchor),
            student_id=student_id,
            amount=amount,
            payment_method=meta.payment_method.value,
            payment_date=payment_date,
            transaction_number=meta.transaction_number,
            status=PaymentStatus.COMPLETED.value,
            notes=meta.notes,
            received_by=meta.received_by,
            is_refunded=False,
        )
        self.ledger.add(payment)
        await self.ledger.flush()
        return payment

    # --- Invoices ---

    async def generate_prorated_invoice(
        self,
        student_id: int,
        enrollment_date: date,
        is_full_month: bool = False,
    ) -> Invoice:
        """Invoice the rest of the enrollment month (or the full month fee)."""
        async with self._transaction("pro-rated invoice"):
            await self._require_student(student_id)
            fees = await self.directory.get_active_enrollments(student_id)
            if not fees:
                raise ValidationError("Student has no active enrollments", field="student_id")

            proration = calculate_prorated_fee(
                [fee.base_fee for fee in fees], enrollment_date, is_full_month
            )
            issue_date = self.today()
            invoice = Invoice(
                tenant_id=self.ledger.tenant_id,
                invoice_number=await self.ledger.numbers.invoice_number(issue_date),
                student_id=student_id,
                invoice_type=(
                    InvoiceType.MONTHLY.value if is_full_month else InvoiceType.PRORATED.value
                ),
                billing_period_start=enrollment_date,
                billing_period_end=month_bounds(enrollment_date)[1],
                issue_date=issue_date,
                due_date=issue_date + timedelta(days=settings.invoice_due_days),
                subtotal=proration.full_fee,
                discount=ZERO,
                late_fee=ZERO,
                adjustments=proration.reduction,
                amount_paid=ZERO,
                notes=proration.notes,
                created_by=self.system_actor,
            )
            recalculate_invoice(invoice, issue_date)
            self.ledger.add(invoice)
            await self.ledger.flush()

            await self.audit.log(
                action=AuditAction.CREATE_INVOICE,
                entity_type="Invoice",
                entity_id=invoice.id,
                actor=self.system_actor,
                entity_identifier=invoice.invoice_number,
                new_values={
                    "student_id": student_id,
                    "invoice_type": invoice.invoice_type,
                    "total": str(invoice.total),
                },
                comment=proration.notes,
            )

        logger.info(
            "Pro-rated invoice %s for student %s: %s",
            invoice.invoice_number,
            student_id,
            invoice.total,
        )
        return invoice

    async def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Create a custom, multi-month or correcting adjustment invoice."""
        async with self._transaction("invoice creation"):
            await self._require_student(data.student_id)
            if data.parent_invoice_id is not None:
                parent = await self._get_invoice(data.parent_invoice_id)
                if parent.student_id != data.student_id:
                    raise ValidationError(
                        "Parent invoice belongs to another student", field="parent_invoice_id"
                    )

            issue_date = data.issue_date or self.today()
            due_date = data.due_date or issue_date + timedelta(days=settings.invoice_due_days)
            if due_date < issue_date:
                raise ValidationError("Due date cannot be before issue date", field="due_date")

            invoice = Invoice(
                tenant_id=self.ledger.tenant_id,
                invoice_number=await self.ledger.numbers.invoice_number(issue_date),
                student_id=data.student_id,
                invoice_type=data.invoice_type.value,
                billing_period_start=data.billing_period_start,
                billing_period_end=data.billing_period_end,
                issue_date=issue_date,
                due_date=due_date,
                subtotal=round_money(data.subtotal),
                discount=round_money(data.discount),
                late_fee=ZERO,
                adjustments=ZERO,
                amount_paid=ZERO,
                parent_invoice_id=data.parent_invoice_id,
                notes=data.notes,
                created_by=data.created_by,
            )
            recalculate_invoice(invoice, self.today())
            self.ledger.add(invoice)
            await self.ledger.flush()

            await self.audit.log(
                action=AuditAction.CREATE_INVOICE,
                entity_type="Invoice",
                entity_id=invoice.id,
                actor=data.created_by,
                entity_identifier=invoice.invoice_number,
                new_values={
                    "student_id": data.student_id,
                    "invoice_type": invoice.invoice_type,
                    "total": str(invoice.total),
                },
            )

        logger.info("Invoice %s created for student %s", invoice.invoice_number, data.student_id)
        return invoice

    async def apply_invoice_adjustment(
        self, invoice_id: int, data: AdjustmentRequest
    ) -> AdjustmentResult:
        """Apply a discount, late fee, write-off, refund or manual edit to an invoice."""
        async with self._transaction("invoice adjustment"):
            invoice = await self._get_invoice(invoice_id, for_update=True)
            old_values = {
                "total": str(invoice.total),
                "balance_due": str(invoice.balance_due),
                "status": invoice.status,
            }
            outcome = await self.adjuster.apply(
                invoice,
                data.adjustment_type,
                data.amount,
                data.reason,
                data.applied_by,
                data.notes,
            )
            await self.audit.log(
                action=AuditAction.ADJUST_INVOICE,
                entity_type="Invoice",
                entity_id=invoice.id,
                actor=data.applied_by,
                entity_identifier=invoice.invoice_number,
                old_values=old_values,
                new_values={
                    "adjustment_type": data.adjustment_type.value,
                    "total": str(outcome.new_total),
                    "balance_due": str(outcome.new_balance_due),
                    "status": outcome.new_status,
                },
                comment=outcome.record.reason,
            )

        return AdjustmentResult(
            adjustment_record=AdjustmentRecordResponse.model_validate(outcome.record),
            updated_invoice=UpdatedInvoiceSummary(
                new_total=outcome.new_total,
                new_balance_due=outcome.new_balance_due,
                new_status=outcome.new_status,
            ),
        )

    async def refresh_invoice_status(self, invoice_id: int) -> InvoiceStatusResult:
        """Re-derive an invoice's status (overdue included) from its amounts and today."""
        async with self._transaction("invoice status refresh"):
            invoice = await self._get_invoice(invoice_id, for_update=True)
            old_status = invoice.status
            invoice.status = derive_invoice_status(
                Decimal(invoice.total),
                Decimal(invoice.amount_paid),
                invoice.due_date,
                self.today(),
            ).value
            if invoice.status != old_status:
                await self.ledger.flush()
                await self.audit.log(
                    action=AuditAction.REFRESH_STATUS,
                    entity_type="Invoice",
                    entity_id=invoice.id,
                    actor=self.system_actor,
                    entity_identifier=invoice.invoice_number,
                    old_values={"status": old_status},
                    new_values={"status": invoice.status},
                )

        return InvoiceStatusResult(
            invoice_id=invoice.id, status=invoice.status, balance=invoice.balance_due
        )

    async def mark_overdue_invoices(self, as_of: date | None = None) -> int:
        """Flag every unpaid invoice past its due date as overdue. Returns how many changed."""
        as_of = as_of or self.today()
        updated = 0
        async with self._transaction("overdue marking"):
            for invoice in await self.ledger.get_overdue_candidates(as_of):
                new_status = derive_invoice_status(
                    Decimal(invoice.total), Decimal(invoice.amount_paid), invoice.due_date, as_of
                ).value
                if new_status == invoice.status:
                    continue
                await self.audit.log(
                    action=AuditAction.MARK_OVERDUE,
                    entity_type="Invoice",
                    entity_id=invoice.id,
                    actor=self.system_actor,
                    entity_identifier=invoice.invoice_number,
                    old_values={"status": invoice.status},
                    new_values={"status": new_status},
                )
                invoice.status = new_status
                updated += 1
            await self.ledger.flush()

        logger.info("Marked %d invoice(s) overdue as of %s", updated, as_of)
        return updated

    async def get_invoice(self, invoice_id: int) -> Invoice:
        return await self._get_invoice(invoice_id)

    async def get_invoice_balance(self, invoice_id: int) -> Decimal:
        invoice = await self._get_invoice(invoice_id)
        return Decimal(invoice.balance_due)

    async def list_invoices(
        self,
        student_id: int | None = None,
        status: str | None = None,
        invoice_type: str | None = None,
    ) -> list[Invoice]:
        return await self.ledger.list_invoices(student_id, status, invoice_type)

    # --- Billing schedules ---

    async def create_billing_schedule(self, data: BillingScheduleCreate) -> BillingSchedule:
        """Register a recurring invoice for a student."""
        async with self._transaction("billing schedule creation"):
            await self._require_student(data.student_id)
            if data.enrollment_id is not None:
                enrollments = await self.directory.get_active_enrollments(data.student_id)
                if data.enrollment_id not in {fee.enrollment_id for fee in enrollments}:
                    raise ValidationError(
                        "Enrollment is not an active enrollment of this student",
                        field="enrollment_id",
                    )

            schedule = BillingSchedule(
                tenant_id=self.ledger.tenant_id,
                student_id=data.student_id,
                enrollment_id=data.enrollment_id,
                amount=round_money(data.amount),
                frequency=data.frequency.value,
                next_billing_date=data.next_billing_date,
                is_active=True,
                created_by=data.created_by,
            )
            self.ledger.add(schedule)
            await self.ledger.flush()

            await self.audit.log(
                action=AuditAction.CREATE_SCHEDULE,
                entity_type="BillingSchedule",
                entity_id=schedule.id,
                actor=data.created_by,
                new_values={
                    "student_id": data.student_id,
                    "amount": str(schedule.amount),
                    "frequency": schedule.frequency,
                    "next_billing_date": schedule.next_billing_date.isoformat(),
                },
            )

        return schedule

    async def generate_scheduled_invoices(self, target_date: date | None = None) -> list[Invoice]:
        """
        Invoice every active schedule due on or before target_date, one period
        per schedule per run, and move its next billing date forward.
        """
        target = target_date or self.today()
        created: list[Invoice] = []
        async with self._transaction("scheduled invoicing"):
            for schedule in await self.ledger.get_due_schedules(target):
                frequency = BillingFrequency(schedule.frequency)
                period_start = schedule.next_billing_date
                next_date = add_months(period_start, frequency.months)
                invoice_type = (
                    InvoiceType.MONTHLY
                    if frequency == BillingFrequency.MONTHLY
                    else InvoiceType.MULTI_MONTH
                )

                existing = await self.ledger.find_schedule_invoice(schedule.id, period_start)
                if existing is None:
                    invoice = await self._issue_invoice_with_credit(
                        student_id=schedule.student_id,
                        amount=Decimal(schedule.amount),
                        invoice_type=invoice_type,
                        period_start=period_start,
                        period_end=next_date - timedelta(days=1),
                        issue_date=target,
                        notes=f"Scheduled {frequency.value} billing",
                        billing_schedule_id=schedule.id,
                    )
                    await self.audit.log(
                        action=AuditAction.GENERATE_SCHEDULED,
                        entity_type="Invoice",
                        entity_id=invoice.id,
                        actor=self.system_actor,
                        entity_identifier=invoice.invoice_number,
                        new_values={"schedule_id": schedule.id, "total": str(invoice.total)},
                    )
                    created.append(invoice)

                schedule.next_billing_date = next_date
            await self.ledger.flush()

        logger.info("Scheduled invoicing as of %s: %d created", target, len(created))
        return created

    # --- Ledger views ---

    async def get_student_credit(self, student_id: int) -> Decimal:
        """Money received from the student that is not allocated to any invoice."""
        return await self._credit(student_id)

    async def get_student_ledger(self, student_id: int) -> StudentLedger:
        """All invoices, payments, allocations and adjustments of a student, with totals."""
        invoices = await self.ledger.list_invoices(student_id=student_id)
        payments = await self.ledger.list_student_payments(student_id)
        allocations = await self.ledger.list_student_allocations(student_id)
        adjustments = await self.ledger.list_student_adjustments(student_id)

        summary = LedgerSummary(
            total_invoiced=sum_money(Decimal(inv.total) for inv in invoices),
            total_paid=sum_money(
                Decimal(p.amount)
                for p in payments
                if not p.is_refunded and not p.is_credit_application
            ),
            total_outstanding=sum_money(Decimal(inv.balance_due) for inv in invoices),
            credit_balance=await self._credit(student_id),
        )
        return StudentLedger(
            student_id=student_id,
            summary=summary,
            invoices=[InvoiceResponse.model_validate(inv) for inv in invoices],
            payments=[PaymentResponse.model_validate(p) for p in payments],
            allocations=[LedgerAllocationEntry.model_validate(row) for row in allocations],
            adjustments=[LedgerAdjustmentEntry.model_validate(row) for row in adjustments],
        )

    async def get_student_statement(self, student_id: int) -> StudentStatement:
        """
        Chronological statement: invoices are debits, money received is a
        credit, refunds are debits again. Credit applications are left out
        since the invoice total already reflects them.
        """
        items: list[tuple[date, int, int, StatementEntry]] = []
        for invoice in await self.ledger.list_invoices(student_id=student_id):
            items.append(
                (
                    invoice.issue_date,
                    0,
                    invoice.id,
                    StatementEntry(
                        entry_date=invoice.issue_date,
                        entry_type="invoice",
                        reference=invoice.invoice_number,
                        description=f"Invoice ({invoice.invoice_type})",
                        debit=Decimal(invoice.total),
                        balance=ZERO,
                    ),
                )
            )
        for payment in await self.ledger.list_student_payments(student_id):
            if payment.is_credit_application:
                continue
            items.append(
                (
                    payment.payment_date,
                    1,
                    payment.id,
                    StatementEntry(
                        entry_date=payment.payment_date,
                        entry_type="payment",
                        reference=payment.receipt_number,
                        description=f"Payment - {payment.payment_method.upper()}",
                        credit=Decimal(payment.amount),
                        balance=ZERO,
                    ),
                )
            )
            if payment.is_refunded:
                refund_date = (
                    payment.refunded_at.date() if payment.refunded_at else payment.payment_date
                )
                items.append(
                    (
                        refund_date,
                        2,
                        payment.id,
                        StatementEntry(
                            entry_date=refund_date,
                            entry_type="refund",
                            reference=payment.receipt_number,
                            description="Refund",
                            debit=Decimal(payment.amount),
                            balance=ZERO,
                        ),
                    )
                )

        items.sort(key=lambda item: item[:3])

        entries: list[StatementEntry] = []
        running = ZERO
        total_debits = ZERO
        total_credits = ZERO
        for _, _, _, entry in items:
            if entry.debit is not None:
                running += entry.debit
                total_debits += entry.debit
            if entry.credit is not None:
                running -= entry.credit
                total_credits += entry.credit
            entries.append(entry.model_copy(update={"balance": round_money(running)}))

        return StudentStatement(
            student_id=student_id,
            total_debits=round_money(total_debits),
            total_credits=round_money(total_credits),
            closing_balance=round_money(running),
            entries=entries,
        )

    # --- Helpers ---

    async def _credit(self, student_id: int) -> Decimal:
        received = await self.ledger.sum_money_received(student_id)
        allocated = await self.ledger.sum_student_allocations(student_id)
        return max(ZERO, round_money(received - allocated))

    async def _require_student(self, student_id: int) -> None:
        if not await self.directory.student_exists(student_id):
            raise NotFoundError("Student", student_id)
        await self.ledger.lock_student(student_id)

    async def _get_invoice(self, invoice_id: int, for_update: bool = False) -> Invoice:
        invoice = await self.ledger.get_invoice(invoice_id, for_update=for_update)
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _get_payment(self, payment_id: int, for_update: bool = False) -> Payment:
        payment = await self.ledger.get_payment(payment_id, for_update=for_update)
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    @staticmethod
    def _positive_money(value: Any, field: str = "amount") -> Decimal:
        try:
            amount = to_money(value)
        except ValueError as e:
            raise ValidationError(str(e), field=field) from None
        if amount <= ZERO:
            raise ValidationError("Amount must be positive", field=field)
        return amount

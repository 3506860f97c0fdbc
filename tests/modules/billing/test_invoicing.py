"""Tests for invoice generation: monthly runs, pro-ration, manual invoices, schedules."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaValidationError

from src.core.audit import AuditAction, AuditService
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.billing.models import BillingFrequency
from src.modules.billing.schemas import BillingScheduleCreate, InvoiceCreate, PaymentMeta
from src.modules.invoices.models import InvoiceStatus, InvoiceType
from src.modules.payments.models import PaymentMethod

FEB_1 = date(2026, 2, 1)


def cash() -> PaymentMeta:
    return PaymentMeta(payment_method=PaymentMethod.CASH, received_by="bursar")


class TestMonthlyInvoicing:
    """Tests for the monthly billing run."""

    async def _setup_test_data(self, student_factory) -> dict:
        both = await student_factory("STU-001", ["5000", "3000"])
        single = await student_factory("STU-002", ["2000"])
        dropped = await student_factory("STU-003", ["4000"], enrollment_active=False)
        free = await student_factory("STU-004", ["0"])
        return {
            "both": both.id,
            "single": single.id,
            "dropped": dropped.id,
            "free": free.id,
        }

    async def test_one_invoice_per_enrolled_student(self, student_factory, make_service):
        data = await self._setup_test_data(student_factory)
        service = make_service(today=FEB_1)

        invoices = await service.generate_monthly_invoices(FEB_1)

        by_student = {inv.student_id: inv for inv in invoices}
        assert set(by_student) == {data["both"], data["single"]}

        invoice = by_student[data["both"]]
        assert invoice.invoice_number == "INV-2026020001"
        assert invoice.invoice_type == InvoiceType.MONTHLY.value
        assert invoice.status == InvoiceStatus.SENT.value
        assert invoice.subtotal == Decimal("8000.00")
        assert invoice.total == Decimal("8000.00")
        assert invoice.balance_due == Decimal("8000.00")
        assert invoice.billing_period_start == date(2026, 2, 1)
        assert invoice.billing_period_end == date(2026, 2, 28)
        assert invoice.due_date == date(2026, 2, 8)
        assert invoice.created_by == "system:billing"
        assert by_student[data["single"]].total == Decimal("2000.00")

    async def test_rerun_is_idempotent(self, student_factory, make_service):
        await self._setup_test_data(student_factory)
        service = make_service(today=FEB_1)

        first = await service.generate_monthly_invoices(FEB_1)
        second = await service.generate_monthly_invoices(date(2026, 2, 20))

        assert len(first) == 2
        assert second == []
        assert len(await service.list_invoices(invoice_type=InvoiceType.MONTHLY.value)) == 2

        march = await service.generate_monthly_invoices(date(2026, 3, 1))
        assert len(march) == 2

    async def test_applies_student_credit(self, student_factory, make_service):
        student = await student_factory("STU-001", ["8000"])
        student_id = student.id
        service = make_service(today=date(2026, 1, 20))
        await service.process_advance_payment(student_id, Decimal("3000"), cash())

        service = make_service(today=FEB_1)
        [invoice] = await service.generate_monthly_invoices(FEB_1)

        assert invoice.subtotal == Decimal("8000.00")
        assert invoice.adjustments == Decimal("3000.00")
        assert invoice.total == Decimal("5000.00")
        assert invoice.amount_paid == Decimal("0.00")
        assert invoice.balance_due == Decimal("5000.00")
        assert invoice.status == InvoiceStatus.SENT.value
        assert "Applied student credit: Rs. 3000.00" in invoice.notes
        assert await service.get_student_credit(student_id) == Decimal("0.00")

        payments = await service.ledger.list_student_payments(student_id)
        credit = [p for p in payments if p.payment_method == PaymentMethod.CREDIT.value]
        assert len(credit) == 1
        assert credit[0].amount == Decimal("3000.00")
        assert credit[0].receipt_number == "RCP-INV-2026020001-01"

        allocations = await service.ledger.list_student_allocations(student_id)
        assert [(a["invoice_id"], a["amount"]) for a in allocations] == [
            (invoice.id, Decimal("3000.00"))
        ]

    async def test_credit_larger_than_fee(self, student_factory, make_service):
        student = await student_factory("STU-001", ["8000"])
        service = make_service(today=date(2026, 1, 20))
        await service.process_advance_payment(student.id, Decimal("10000"), cash())

        service = make_service(today=FEB_1)
        [invoice] = await service.generate_monthly_invoices(FEB_1)

        assert invoice.total == Decimal("0.00")
        assert invoice.balance_due == Decimal("0.00")
        assert invoice.status == InvoiceStatus.PAID.value
        assert await service.get_student_credit(student.id) == Decimal("2000.00")

    async def test_generation_is_audited(self, student_factory, make_service, db_session):
        await student_factory("STU-001", ["1000"])
        service = make_service(today=FEB_1)
        [invoice] = await service.generate_monthly_invoices(FEB_1)

        logs = await AuditService(db_session, "greenwood").list_for_entity("Invoice", invoice.id)
        assert [log.action for log in logs] == [AuditAction.GENERATE_MONTHLY.value]
        assert logs[0].actor == "system:billing"


class TestProratedInvoice:
    """Tests for mid-month enrollment invoices."""

    async def test_last_day_of_month(self, student_factory, make_service):
        student = await student_factory("STU-001", ["8000"])
        service = make_service(today=date(2026, 4, 30))

        invoice = await service.generate_prorated_invoice(student.id, date(2026, 4, 30))

        assert invoice.invoice_type == InvoiceType.PRORATED.value
        assert invoice.subtotal == Decimal("8000.00")
        assert invoice.total == Decimal("267.00")
        assert invoice.adjustments == Decimal("7733.00")
        assert invoice.billing_period_start == date(2026, 4, 30)
        assert invoice.billing_period_end == date(2026, 4, 30)
        assert invoice.notes == "Pro-rated fee for 1 days of 30 total days"

    async def test_full_month_flag(self, student_factory, make_service):
        student = await student_factory("STU-001", ["5000", "3000"])
        service = make_service(today=date(2026, 4, 16))

        invoice = await service.generate_prorated_invoice(
            student.id, date(2026, 4, 16), is_full_month=True
        )

        assert invoice.invoice_type == InvoiceType.MONTHLY.value
        assert invoice.total == Decimal("8000.00")
        assert invoice.notes == "Mid-month enrollment - full month fee"

    async def test_first_day_charges_full_fee(self, student_factory, make_service):
        student = await student_factory("STU-001", ["8000"])
        service = make_service(today=date(2026, 4, 1))

        invoice = await service.generate_prorated_invoice(student.id, date(2026, 4, 1))

        assert invoice.total == Decimal("8000.00")
        assert invoice.adjustments == Decimal("0.00")

    async def test_requires_enrollment(self, student_factory, make_service):
        student = await student_factory("STU-001", [])
        service = make_service()

        with pytest.raises(ValidationError):
            await service.generate_prorated_invoice(student.id, date(2026, 1, 15))

    async def test_unknown_student(self, make_service):
        service = make_service()
        with pytest.raises(NotFoundError):
            await service.generate_prorated_invoice(12345, date(2026, 1, 15))


class TestCreateInvoice:
    """Tests for manually created invoices."""

    def _payload(self, student_id: int, **overrides) -> InvoiceCreate:
        values = {
            "student_id": student_id,
            "invoice_type": InvoiceType.CUSTOM,
            "billing_period_start": date(2026, 1, 1),
            "billing_period_end": date(2026, 1, 31),
            "subtotal": Decimal("2500"),
            "created_by": "bursar",
        }
        values.update(overrides)
        return InvoiceCreate(**values)

    async def test_create_with_discount(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service()

        invoice = await service.create_invoice(
            self._payload(student.id, discount=Decimal("500"), notes="Exam fee")
        )

        assert invoice.invoice_number == "INV-2026010001"
        assert invoice.total == Decimal("2000.00")
        assert invoice.balance_due == Decimal("2000.00")
        assert invoice.issue_date == date(2026, 1, 1)
        assert invoice.due_date == date(2026, 1, 8)
        assert invoice.status == InvoiceStatus.SENT.value

    async def test_adjustment_invoice_references_parent(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service()
        parent = await service.create_invoice(self._payload(student.id))

        child = await service.create_invoice(
            self._payload(
                student.id,
                invoice_type=InvoiceType.ADJUSTMENT,
                parent_invoice_id=parent.id,
                subtotal=Decimal("300"),
            )
        )
        assert child.parent_invoice_id == parent.id

    async def test_parent_of_other_student_rejected(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        other = await student_factory("STU-002", ["1000"])
        service = make_service()
        parent = await service.create_invoice(self._payload(other.id))

        with pytest.raises(ValidationError):
            await service.create_invoice(
                self._payload(
                    student.id,
                    invoice_type=InvoiceType.ADJUSTMENT,
                    parent_invoice_id=parent.id,
                )
            )

    async def test_due_date_before_issue_date(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service()

        with pytest.raises(ValidationError):
            await service.create_invoice(
                self._payload(
                    student.id, issue_date=date(2026, 1, 10), due_date=date(2026, 1, 5)
                )
            )

    def test_generated_types_rejected(self):
        with pytest.raises(SchemaValidationError):
            self._payload(1, invoice_type=InvoiceType.MONTHLY)
        with pytest.raises(SchemaValidationError):
            self._payload(1, discount=Decimal("3000"))
        with pytest.raises(SchemaValidationError):
            self._payload(1, parent_invoice_id=5)


class TestInvoiceStatus:
    """Tests for status refresh and overdue marking."""

    async def test_refresh_marks_overdue(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service()
        invoice = await service.create_invoice(
            InvoiceCreate(
                student_id=student.id,
                billing_period_start=date(2026, 1, 1),
                billing_period_end=date(2026, 1, 31),
                issue_date=date(2026, 1, 5),
                subtotal=Decimal("1000"),
                created_by="bursar",
            )
        )
        assert invoice.status == InvoiceStatus.SENT.value

        result = await make_service(today=date(2026, 2, 1)).refresh_invoice_status(invoice.id)

        assert result.status == InvoiceStatus.OVERDUE.value
        assert result.balance == Decimal("1000.00")

    async def test_mark_overdue(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service()
        ids = []
        for subtotal in ("1000", "2000", "300"):
            invoice = await service.create_invoice(
                InvoiceCreate(
                    student_id=student.id,
                    billing_period_start=date(2026, 1, 1),
                    billing_period_end=date(2026, 1, 31),
                    issue_date=date(2026, 1, 5),
                    subtotal=Decimal(subtotal),
                    created_by="bursar",
                )
            )
            ids.append(invoice.id)
        await service.process_partial_payment(ids[1], Decimal("500"), cash())
        await service.process_partial_payment(ids[2], Decimal("300"), cash())

        later = make_service(today=date(2026, 2, 1))
        assert await later.mark_overdue_invoices() == 1
        assert await later.mark_overdue_invoices() == 0

        statuses = [(await later.get_invoice(i)).status for i in ids]
        assert statuses == [
            InvoiceStatus.OVERDUE.value,
            InvoiceStatus.PARTIAL.value,
            InvoiceStatus.PAID.value,
        ]

    async def test_invoice_balance(self, student_factory, make_service):
        await student_factory("STU-001", ["1000"])
        service = make_service(today=FEB_1)
        [invoice] = await service.generate_monthly_invoices(FEB_1)

        assert await service.get_invoice_balance(invoice.id) == Decimal("1000.00")
        with pytest.raises(NotFoundError):
            await service.get_invoice_balance(invoice.id + 100)


class TestBillingSchedules:
    """Tests for recurring billing schedules."""

    async def test_quarterly_schedule(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        service = make_service(today=date(2026, 1, 15))
        schedule = await service.create_billing_schedule(
            BillingScheduleCreate(
                student_id=student.id,
                amount=Decimal("15000"),
                frequency=BillingFrequency.QUARTERLY,
                next_billing_date=date(2026, 1, 1),
                created_by="bursar",
            )
        )

        [invoice] = await service.generate_scheduled_invoices()

        assert invoice.invoice_type == InvoiceType.MULTI_MONTH.value
        assert invoice.total == Decimal("15000.00")
        assert invoice.billing_period_start == date(2026, 1, 1)
        assert invoice.billing_period_end == date(2026, 3, 31)
        assert invoice.issue_date == date(2026, 1, 15)
        assert schedule.next_billing_date == date(2026, 4, 1)

        assert await service.generate_scheduled_invoices() == []

        [second] = await service.generate_scheduled_invoices(date(2026, 4, 2))
        assert second.billing_period_start == date(2026, 4, 1)
        assert second.billing_period_end == date(2026, 6, 30)

    async def test_monthly_schedule_produces_monthly_invoice(
        self, student_factory, make_service
    ):
        student = await student_factory("STU-001", ["1000"])
        enrollment = (await make_service().directory.get_active_enrollments(student.id))[0]
        service = make_service(today=FEB_1)
        await service.create_billing_schedule(
            BillingScheduleCreate(
                student_id=student.id,
                enrollment_id=enrollment.enrollment_id,
                amount=Decimal("1000"),
                next_billing_date=FEB_1,
                created_by="bursar",
            )
        )

        [invoice] = await service.generate_scheduled_invoices()
        assert invoice.invoice_type == InvoiceType.MONTHLY.value
        assert invoice.billing_period_end == date(2026, 2, 28)
        assert invoice.billing_schedule_id is not None

        # The only enrollment is billed by its schedule, so the monthly run has nothing to bill
        assert await service.generate_monthly_invoices(FEB_1) == []

    async def _schedule_enrollments(self, service, student_id: int, fees: list[str]) -> list:
        enrollments = await service.directory.get_active_enrollments(student_id)
        by_fee = {fee.base_fee: fee.enrollment_id for fee in enrollments}
        schedules = []
        for fee in fees:
            schedules.append(
                await service.create_billing_schedule(
                    BillingScheduleCreate(
                        student_id=student_id,
                        enrollment_id=by_fee[Decimal(fee)],
                        amount=Decimal(fee),
                        next_billing_date=FEB_1,
                        created_by="bursar",
                    )
                )
            )
        return schedules

    async def test_each_schedule_bills_its_own_invoice(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000", "2000"])
        service = make_service(today=FEB_1)
        schedules = await self._schedule_enrollments(service, student.id, ["1000", "2000"])

        invoices = await service.generate_scheduled_invoices()

        assert sorted(invoice.total for invoice in invoices) == [
            Decimal("1000.00"),
            Decimal("2000.00"),
        ]
        assert {invoice.billing_schedule_id for invoice in invoices} == {
            schedule.id for schedule in schedules
        }
        assert all(schedule.next_billing_date == date(2026, 3, 1) for schedule in schedules)
        assert await service.generate_scheduled_invoices() == []

    async def test_monthly_run_bills_unscheduled_enrollments(
        self, student_factory, make_service
    ):
        student = await student_factory("STU-001", ["1000", "2000"])
        service = make_service(today=FEB_1)
        await self._schedule_enrollments(service, student.id, ["1000"])

        [scheduled] = await service.generate_scheduled_invoices()
        [monthly] = await service.generate_monthly_invoices(FEB_1)

        assert scheduled.total == Decimal("1000.00")
        assert monthly.total == Decimal("2000.00")
        assert monthly.billing_schedule_id is None
        february = await service.list_invoices(student_id=student.id)
        assert sum(invoice.total for invoice in february) == Decimal("3000.00")

        assert await service.generate_monthly_invoices(FEB_1) == []

    async def test_rejects_foreign_enrollment(self, student_factory, make_service):
        student = await student_factory("STU-001", ["1000"])
        other = await student_factory("STU-002", ["1000"])
        enrollment = (await make_service().directory.get_active_enrollments(other.id))[0]
        service = make_service()

        with pytest.raises(ValidationError):
            await service.create_billing_schedule(
                BillingScheduleCreate(
                    student_id=student.id,
                    enrollment_id=enrollment.enrollment_id,
                    amount=Decimal("1000"),
                    next_billing_date=FEB_1,
                    created_by="bursar",
                )
            )

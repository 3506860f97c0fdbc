"""Tests for manual invoice adjustments."""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaValidationError

from src.core.audit import AuditAction, AuditService
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.billing.schemas import AdjustmentRequest, InvoiceCreate, PaymentMeta
from src.modules.invoices.models import AdjustmentType, InvoiceStatus
from src.modules.payments.models import PaymentMethod


def adjustment(
    adjustment_type: AdjustmentType, amount: str, reason: str = "Approved"
) -> AdjustmentRequest:
    return AdjustmentRequest(
        adjustment_type=adjustment_type,
        amount=Decimal(amount),
        reason=reason,
        applied_by="principal",
    )


class TestInvoiceAdjustments:
    """Tests for BillingService.apply_invoice_adjustment."""

    async def _setup_test_data(self, student_factory, service, subtotal: str = "8000") -> int:
        student = await student_factory("STU-001", ["8000"])
        invoice = await service.create_invoice(
            InvoiceCreate(
                student_id=student.id,
                billing_period_start=date(2026, 1, 1),
                billing_period_end=date(2026, 1, 31),
                subtotal=Decimal(subtotal),
                created_by="bursar",
            )
        )
        return invoice.id

    async def test_discount(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.DISCOUNT, "1000", "Sibling discount")
        )

        assert result.updated_invoice.new_total == Decimal("7000.00")
        assert result.updated_invoice.new_balance_due == Decimal("7000.00")
        assert result.updated_invoice.new_status == InvoiceStatus.SENT.value

        record = result.adjustment_record
        assert record.adjustment_type == AdjustmentType.DISCOUNT.value
        assert record.amount == Decimal("1000.00")
        assert record.total_before == Decimal("8000.00")
        assert record.total_after == Decimal("7000.00")
        assert record.reason == "Sibling discount"
        assert record.applied_by == "principal"

        invoice = await service.get_invoice(invoice_id)
        assert "Sibling discount" in invoice.notes

    async def test_late_fee_on_paid_invoice(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service, subtotal="7000")
        await service.process_partial_payment(
            invoice_id,
            Decimal("7000"),
            PaymentMeta(payment_method=PaymentMethod.CASH, received_by="bursar"),
        )

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.LATE_FEE, "500", "Paid after due date")
        )

        assert result.updated_invoice.new_total == Decimal("7500.00")
        assert result.updated_invoice.new_balance_due == Decimal("500.00")
        assert result.updated_invoice.new_status == InvoiceStatus.PARTIAL.value
        invoice = await service.get_invoice(invoice_id)
        assert invoice.late_fee == Decimal("500.00")

    async def test_refund_reduces_total(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.REFUND, "1500", "Term fee refunded")
        )

        assert result.updated_invoice.new_total == Decimal("6500.00")
        assert result.updated_invoice.new_balance_due == Decimal("6500.00")
        assert result.adjustment_record.adjustment_type == AdjustmentType.REFUND.value
        assert result.adjustment_record.amount == Decimal("1500.00")
        invoice = await service.get_invoice(invoice_id)
        assert invoice.adjustments == Decimal("1500.00")
        assert invoice.late_fee == Decimal("0.00")

    async def test_discount_below_amount_paid_keeps_paid(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service, subtotal="7000")
        await service.process_partial_payment(
            invoice_id,
            Decimal("5000"),
            PaymentMeta(payment_method=PaymentMethod.CASH, received_by="bursar"),
        )

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.DISCOUNT, "3000", "Scholarship")
        )

        assert result.updated_invoice.new_total == Decimal("4000.00")
        assert result.updated_invoice.new_balance_due == Decimal("0.00")
        assert result.updated_invoice.new_status == InvoiceStatus.PAID.value
        invoice = await service.get_invoice(invoice_id)
        assert invoice.amount_paid == Decimal("5000.00")

    async def test_manual_edit_sets_new_total(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.MANUAL_EDIT, "6000", "Fee agreed with parent")
        )

        assert result.updated_invoice.new_total == Decimal("6000.00")
        assert result.adjustment_record.amount == Decimal("2000.00")
        assert result.adjustment_record.total_before == Decimal("8000.00")
        assert result.adjustment_record.total_after == Decimal("6000.00")

        raised = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.MANUAL_EDIT, "6500", "Correction")
        )
        assert raised.updated_invoice.new_total == Decimal("6500.00")
        assert raised.adjustment_record.amount == Decimal("500.00")

    async def test_manual_edit_without_change(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        with pytest.raises(ValidationError):
            await service.apply_invoice_adjustment(
                invoice_id, adjustment(AdjustmentType.MANUAL_EDIT, "8000", "No-op")
            )

    async def test_writeoff_cannot_exceed_total(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        with pytest.raises(ValidationError):
            await service.apply_invoice_adjustment(
                invoice_id, adjustment(AdjustmentType.WRITEOFF, "9000")
            )

        invoice = await service.get_invoice(invoice_id)
        assert invoice.total == Decimal("8000.00")

    async def test_full_writeoff_marks_paid(self, student_factory, make_service):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)

        result = await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.WRITEOFF, "8000", "Bad debt")
        )

        assert result.updated_invoice.new_total == Decimal("0.00")
        assert result.updated_invoice.new_status == InvoiceStatus.PAID.value

    async def test_adjustment_is_recorded(self, student_factory, make_service, db_session):
        service = make_service()
        invoice_id = await self._setup_test_data(student_factory, service)
        await service.apply_invoice_adjustment(
            invoice_id, adjustment(AdjustmentType.DISCOUNT, "250")
        )

        logs = await AuditService(db_session, "greenwood").list_for_entity("Invoice", invoice_id)
        actions = [log.action for log in logs]
        assert AuditAction.ADJUST_INVOICE.value in actions

        invoice = await service.get_invoice(invoice_id)
        ledger = await service.get_student_ledger(invoice.student_id)
        assert [a.amount for a in ledger.adjustments] == [Decimal("250.00")]

    async def test_unknown_invoice(self, make_service):
        service = make_service()
        with pytest.raises(NotFoundError):
            await service.apply_invoice_adjustment(
                77, adjustment(AdjustmentType.DISCOUNT, "10")
            )

    def test_reason_is_required(self):
        with pytest.raises(SchemaValidationError):
            adjustment(AdjustmentType.DISCOUNT, "100", reason="   ")

    def test_amount_must_be_positive(self):
        with pytest.raises(SchemaValidationError):
            adjustment(AdjustmentType.DISCOUNT, "0")

        edit = adjustment(AdjustmentType.MANUAL_EDIT, "0")
        assert edit.amount == Decimal("0")

"""Pydantic schemas for Billing module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator, model_validator

from src.modules.billing.models import BillingFrequency
from src.modules.invoices.models import AdjustmentType, InvoiceType
from src.modules.payments.models import PaymentMethod
from src.shared.schemas.base import BaseSchema, PositiveMoney


# --- Requests ---


class PaymentMeta(BaseSchema):
    """Payment details supplied by the cashier. Bank transfers need a transaction number."""

    payment_method: PaymentMethod
    payment_date: date | None = None
    transaction_number: str | None = Field(None, max_length=100)
    received_by: str = Field(..., min_length=1, max_length=100)
    notes: str | None = None

    @field_validator("payment_method")
    @classmethod
    def reject_credit_method(cls, v: PaymentMethod) -> PaymentMethod:
        if v == PaymentMethod.CREDIT:
            raise ValueError("credit is reserved for system credit applications")
        return v

    @model_validator(mode="after")
    def require_transaction_number(self):
        if self.payment_method == PaymentMethod.BANK_TRANSFER and not (
            self.transaction_number and self.transaction_number.strip()
        ):
            raise ValueError("transaction_number is required for bank transfers")
        return self


class AdvancePaymentRequest(PaymentMeta):
    student_id: int
    amount: PositiveMoney


class PartialPaymentRequest(PaymentMeta):
    invoice_id: int
    amount: PositiveMoney


class GenerateMonthlyRequest(BaseSchema):
    target_date: date | None = None


class ProratedInvoiceRequest(BaseSchema):
    student_id: int
    enrollment_date: date
    is_full_month: bool = False


class AdjustmentRequest(BaseSchema):
    """
    Manual adjustment. For manual_edit the amount is the new invoice total;
    for every other type it is the (positive) size of the change.
    """

    adjustment_type: AdjustmentType
    amount: Decimal = Field(..., ge=0, max_digits=15, decimal_places=2)
    reason: str = Field(..., max_length=1000)
    applied_by: str = Field(..., min_length=1, max_length=100)
    notes: str | None = None

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("reason is required")
        return v

    @model_validator(mode="after")
    def amount_positive_unless_edit(self):
        if self.adjustment_type != AdjustmentType.MANUAL_EDIT and self.amount <= 0:
            raise ValueError("amount must be positive")
        return self


class InvoiceCreate(BaseSchema):
    """Manually created invoice (custom, multi-month or correcting adjustment)."""

    student_id: int
    invoice_type: InvoiceType = InvoiceType.CUSTOM
    billing_period_start: date
    billing_period_end: date
    issue_date: date | None = None
    due_date: date | None = None
    subtotal: PositiveMoney
    discount: Decimal = Field(Decimal("0.00"), ge=0, max_digits=15, decimal_places=2)
    parent_invoice_id: int | None = None
    notes: str | None = None
    created_by: str = Field(..., min_length=1, max_length=100)

    @field_validator("invoice_type")
    @classmethod
    def manual_types_only(cls, v: InvoiceType) -> InvoiceType:
        if v in (InvoiceType.MONTHLY, InvoiceType.PRORATED):
            raise ValueError("monthly and prorated invoices are generated by billing runs")
        return v

    @model_validator(mode="after")
    def check_period_and_discount(self):
        if self.billing_period_end < self.billing_period_start:
            raise ValueError("billing_period_end must not be before billing_period_start")
        if self.discount > self.subtotal:
            raise ValueError("discount cannot exceed subtotal")
        if self.parent_invoice_id is not None and self.invoice_type != InvoiceType.ADJUSTMENT:
            raise ValueError("only adjustment invoices can reference a parent invoice")
        return self


class AllocationItem(BaseSchema):
    invoice_id: int
    amount: PositiveMoney


class AllocatePaymentRequest(BaseSchema):
    allocations: list[AllocationItem] = Field(..., min_length=1)
    allocated_by: str = Field(..., min_length=1, max_length=100)


class RefundRequest(BaseSchema):
    refunded_by: str = Field(..., min_length=1, max_length=100)
    reason: str = Field(..., min_length=1, max_length=1000)


class MarkOverdueRequest(BaseSchema):
    as_of: date | None = None


class BillingScheduleCreate(BaseSchema):
    student_id: int
    enrollment_id: int | None = None
    amount: PositiveMoney
    frequency: BillingFrequency = BillingFrequency.MONTHLY
    next_billing_date: date
    created_by: str = Field(..., min_length=1, max_length=100)


class GenerateScheduledRequest(BaseSchema):
    target_date: date | None = None


# --- Responses ---


class InvoiceResponse(BaseSchema):
    id: int
    invoice_number: str
    student_id: int
    invoice_type: str
    status: str
    billing_period_start: date
    billing_period_end: date
    issue_date: date
    due_date: date
    subtotal: Decimal
    discount: Decimal
    late_fee: Decimal
    adjustments: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    parent_invoice_id: int | None = None
    billing_schedule_id: int | None = None
    notes: str | None = None
    created_by: str


class PaymentResponse(BaseSchema):
    id: int
    receipt_number: str
    student_id: int
    amount: Decimal
    payment_method: str
    payment_date: date
    transaction_number: str | None = None
    status: str
    notes: str | None = None
    received_by: str
    is_refunded: bool
    refunded_at: datetime | None = None
    refunded_by: str | None = None


class AllocationResponse(BaseSchema):
    invoice_id: int
    invoice_number: str
    amount: Decimal


class AdvancePaymentResult(BaseSchema):
    payment: PaymentResponse
    allocations: list[AllocationResponse]
    remaining_credit: Decimal


class PartialPaymentResult(BaseSchema):
    payment: PaymentResponse
    invoice: InvoiceResponse
    new_balance: Decimal


class AdjustmentRecordResponse(BaseSchema):
    id: int
    invoice_id: int
    adjustment_type: str
    amount: Decimal
    total_before: Decimal
    total_after: Decimal
    reason: str
    notes: str | None = None
    applied_by: str
    applied_at: datetime


class UpdatedInvoiceSummary(BaseSchema):
    new_total: Decimal
    new_balance_due: Decimal
    new_status: str


class AdjustmentResult(BaseSchema):
    adjustment_record: AdjustmentRecordResponse
    updated_invoice: UpdatedInvoiceSummary


class LedgerSummary(BaseSchema):
    total_invoiced: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    credit_balance: Decimal


class LedgerAllocationEntry(BaseSchema):
    id: int
    payment_id: int
    invoice_id: int
    amount: Decimal
    allocated_at: datetime
    payment_date: date
    payment_method: str
    receipt_number: str
    invoice_number: str


class LedgerAdjustmentEntry(BaseSchema):
    id: int
    invoice_id: int
    invoice_number: str
    adjustment_type: str
    amount: Decimal
    total_before: Decimal
    total_after: Decimal
    reason: str
    notes: str | None = None
    applied_by: str
    applied_at: datetime


class StudentLedger(BaseSchema):
    student_id: int
    summary: LedgerSummary
    invoices: list[InvoiceResponse]
    payments: list[PaymentResponse]
    allocations: list[LedgerAllocationEntry]
    adjustments: list[LedgerAdjustmentEntry]


class StudentCreditResponse(BaseSchema):
    student_id: int
    credit_balance: Decimal


class InvoiceStatusResult(BaseSchema):
    invoice_id: int
    status: str
    balance: Decimal


class InvoiceBalanceResponse(BaseSchema):
    invoice_id: int
    balance_due: Decimal


class MarkOverdueResult(BaseSchema):
    as_of: date
    updated: int


class StatementEntry(BaseSchema):
    """One line of a student statement. Balance > 0 means the student owes money."""

    entry_date: date
    entry_type: str  # invoice | payment | refund
    reference: str
    description: str
    debit: Decimal | None = None
    credit: Decimal | None = None
    balance: Decimal


class StudentStatement(BaseSchema):
    student_id: int
    total_debits: Decimal
    total_credits: Decimal
    closing_balance: Decimal
    entries: list[StatementEntry]


class BillingScheduleResponse(BaseSchema):
    id: int
    student_id: int
    enrollment_id: int | None = None
    amount: Decimal
    frequency: str
    next_billing_date: date
    is_active: bool
    created_by: str

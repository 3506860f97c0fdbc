"""API endpoints for Billing module."""

from fastapi import APIRouter, Depends, Query, status

from src.modules.billing.dependencies import get_billing_service
from src.modules.billing.schemas import (
    AdjustmentRequest,
    AdjustmentResult,
    AdvancePaymentRequest,
    AdvancePaymentResult,
    AllocatePaymentRequest,
    AllocationResponse,
    BillingScheduleCreate,
    BillingScheduleResponse,
    GenerateMonthlyRequest,
    GenerateScheduledRequest,
    InvoiceBalanceResponse,
    InvoiceCreate,
    InvoiceResponse,
    InvoiceStatusResult,
    MarkOverdueRequest,
    MarkOverdueResult,
    PartialPaymentRequest,
    PartialPaymentResult,
    PaymentResponse,
    ProratedInvoiceRequest,
    RefundRequest,
    StudentCreditResponse,
    StudentLedger,
    StudentStatement,
)
from src.modules.billing.service import BillingService
from src.modules.invoices.models import InvoiceStatus, InvoiceType
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/billing", tags=["Billing"])


# --- Invoicing ---


@router.post(
    "/generate-monthly",
    response_model=ApiResponse[list[InvoiceResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def generate_monthly_invoices(
    data: GenerateMonthlyRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Generate monthly invoices for every enrolled student (safe to re-run)."""
    invoices = await service.generate_monthly_invoices(data.target_date)
    return ApiResponse(
        data=[InvoiceResponse.model_validate(inv) for inv in invoices],
        message=f"Generated {len(invoices)} monthly invoices",
    )


@router.post(
    "/prorated-invoice",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def generate_prorated_invoice(
    data: ProratedInvoiceRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Invoice a mid-month enrollment."""
    invoice = await service.generate_prorated_invoice(
        data.student_id, data.enrollment_date, data.is_full_month
    )
    return ApiResponse(
        data=InvoiceResponse.model_validate(invoice),
        message="Pro-rated invoice generated",
    )


@router.post(
    "/invoices",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    data: InvoiceCreate,
    service: BillingService = Depends(get_billing_service),
):
    """Create a custom, multi-month or adjustment invoice."""
    invoice = await service.create_invoice(data)
    return ApiResponse(
        data=InvoiceResponse.model_validate(invoice),
        message="Invoice created successfully",
    )


@router.get(
    "/invoices",
    response_model=ApiResponse[list[InvoiceResponse]],
)
async def list_invoices(
    student_id: int | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    invoice_type: InvoiceType | None = Query(None),
    service: BillingService = Depends(get_billing_service),
):
    """List invoices, newest first."""
    invoices = await service.list_invoices(
        student_id=student_id,
        status=status.value if status else None,
        invoice_type=invoice_type.value if invoice_type else None,
    )
    return ApiResponse(data=[InvoiceResponse.model_validate(inv) for inv in invoices])


@router.get(
    "/invoices/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(
    invoice_id: int,
    service: BillingService = Depends(get_billing_service),
):
    invoice = await service.get_invoice(invoice_id)
    return ApiResponse(data=InvoiceResponse.model_validate(invoice))


@router.get(
    "/invoices/{invoice_id}/balance",
    response_model=ApiResponse[InvoiceBalanceResponse],
)
async def get_invoice_balance(
    invoice_id: int,
    service: BillingService = Depends(get_billing_service),
):
    balance = await service.get_invoice_balance(invoice_id)
    return ApiResponse(data=InvoiceBalanceResponse(invoice_id=invoice_id, balance_due=balance))


@router.post(
    "/invoices/{invoice_id}/adjustments",
    response_model=ApiResponse[AdjustmentResult],
    status_code=status.HTTP_201_CREATED,
)
async def apply_invoice_adjustment(
    invoice_id: int,
    data: AdjustmentRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Apply a discount, late fee, write-off, refund or manual edit."""
    result = await service.apply_invoice_adjustment(invoice_id, data)
    return ApiResponse(data=result, message="Adjustment applied")


@router.post(
    "/invoices/{invoice_id}/refresh-status",
    response_model=ApiResponse[InvoiceStatusResult],
)
async def refresh_invoice_status(
    invoice_id: int,
    service: BillingService = Depends(get_billing_service),
):
    result = await service.refresh_invoice_status(invoice_id)
    return ApiResponse(data=result)


@router.post(
    "/mark-overdue",
    response_model=ApiResponse[MarkOverdueResult],
)
async def mark_overdue_invoices(
    data: MarkOverdueRequest,
    service: BillingService = Depends(get_billing_service),
):
    as_of = data.as_of or service.today()
    updated = await service.mark_overdue_invoices(as_of)
    return ApiResponse(
        data=MarkOverdueResult(as_of=as_of, updated=updated),
        message=f"{updated} invoices marked overdue",
    )


# --- Payments ---


@router.post(
    "/advance-payment",
    response_model=ApiResponse[AdvancePaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def process_advance_payment(
    data: AdvancePaymentRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Record a payment and allocate it to outstanding invoices, oldest first."""
    result = await service.process_advance_payment(data.student_id, data.amount, data)
    return ApiResponse(data=result, message="Payment processed successfully")


@router.post(
    "/partial-payment",
    response_model=ApiResponse[PartialPaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def process_partial_payment(
    data: PartialPaymentRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Record a payment against one invoice."""
    result = await service.process_partial_payment(data.invoice_id, data.amount, data)
    return ApiResponse(data=result, message="Payment processed successfully")


@router.post(
    "/payments/{payment_id}/allocations",
    response_model=ApiResponse[list[AllocationResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def allocate_payment(
    payment_id: int,
    data: AllocatePaymentRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Allocate the unallocated part of a payment to chosen invoices."""
    results = await service.allocate_payment(payment_id, data.allocations, data.allocated_by)
    return ApiResponse(data=results, message="Payment allocated")


@router.post(
    "/payments/{payment_id}/refund",
    response_model=ApiResponse[PaymentResponse],
)
async def refund_payment(
    payment_id: int,
    data: RefundRequest,
    service: BillingService = Depends(get_billing_service),
):
    payment = await service.refund_payment(payment_id, data)
    return ApiResponse(data=PaymentResponse.model_validate(payment), message="Payment refunded")


# --- Students ---


@router.get(
    "/students/{student_id}/credit",
    response_model=ApiResponse[StudentCreditResponse],
)
async def get_student_credit(
    student_id: int,
    service: BillingService = Depends(get_billing_service),
):
    credit = await service.get_student_credit(student_id)
    return ApiResponse(data=StudentCreditResponse(student_id=student_id, credit_balance=credit))


@router.get(
    "/students/{student_id}/ledger",
    response_model=ApiResponse[StudentLedger],
)
async def get_student_ledger(
    student_id: int,
    service: BillingService = Depends(get_billing_service),
):
    """Invoices, payments, allocations, adjustments and totals of a student."""
    ledger = await service.get_student_ledger(student_id)
    return ApiResponse(data=ledger)


@router.get(
    "/students/{student_id}/statement",
    response_model=ApiResponse[StudentStatement],
)
async def get_student_statement(
    student_id: int,
    service: BillingService = Depends(get_billing_service),
):
    statement = await service.get_student_statement(student_id)
    return ApiResponse(data=statement)


# --- Schedules ---


@router.post(
    "/schedules",
    response_model=ApiResponse[BillingScheduleResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_billing_schedule(
    data: BillingScheduleCreate,
    service: BillingService = Depends(get_billing_service),
):
    schedule = await service.create_billing_schedule(data)
    return ApiResponse(
        data=BillingScheduleResponse.model_validate(schedule),
        message="Billing schedule created",
    )


@router.post(
    "/schedules/generate",
    response_model=ApiResponse[list[InvoiceResponse]],
    status_code=status.HTTP_201_CREATED,
)
async def generate_scheduled_invoices(
    data: GenerateScheduledRequest,
    service: BillingService = Depends(get_billing_service),
):
    """Invoice every billing schedule that is due."""
    invoices = await service.generate_scheduled_invoices(data.target_date)
    return ApiResponse(
        data=[InvoiceResponse.model_validate(inv) for inv in invoices],
        message=f"Generated {len(invoices)} scheduled invoices",
    )

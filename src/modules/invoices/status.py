"""Single place where invoice amounts and status are derived."""

from datetime import date
from decimal import Decimal

from src.core.exceptions import ConflictError
from src.modules.invoices.models import Invoice, InvoiceStatus
from src.shared.utils.money import ZERO, round_money


def derive_invoice_status(
    total: Decimal, amount_paid: Decimal, due_date: date | None, today: date
) -> InvoiceStatus:
    """
    Derive invoice status from its amounts.

    paid     balance <= 0
    partial  something paid and balance > 0
    overdue  nothing paid and due date passed
    sent     otherwise
    """
    balance = total - amount_paid
    if balance <= ZERO:
        return InvoiceStatus.PAID
    if amount_paid > ZERO:
        return InvoiceStatus.PARTIAL
    if due_date is not None and due_date < today:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.SENT


def recalculate_invoice(invoice: Invoice, today: date) -> None:
    """Recompute total, balance_due and status from the stored components."""
    invoice.total = round_money(
        Decimal(invoice.subtotal)
        - Decimal(invoice.discount)
        + Decimal(invoice.late_fee)
        - Decimal(invoice.adjustments)
    )
    invoice.balance_due = max(ZERO, round_money(invoice.total - Decimal(invoice.amount_paid)))
    invoice.status = derive_invoice_status(
        invoice.total, Decimal(invoice.amount_paid), invoice.due_date, today
    ).value


def apply_payment_to_invoice(invoice: Invoice, amount: Decimal, today: date) -> None:
    """
    Record money against an invoice that is already locked for update.

    Paying more than the balance means two writers raced past the balance
    check; surface it as a retryable conflict instead of storing it.
    """
    if amount > invoice.balance_due:
        raise ConflictError(
            f"Allocation of {amount} exceeds balance {invoice.balance_due} "
            f"of invoice {invoice.invoice_number}",
            details={"invoice_id": invoice.id},
        )
    invoice.amount_paid = round_money(Decimal(invoice.amount_paid) + amount)
    recalculate_invoice(invoice, today)

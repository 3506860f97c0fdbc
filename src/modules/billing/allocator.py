"""Distribution of payments over a student's outstanding invoices."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Sequence

from src.modules.billing.ledger import LedgerStore
from src.modules.invoices.models import Invoice
from src.modules.invoices.status import apply_payment_to_invoice
from src.modules.payments.models import Payment, PaymentAllocation
from src.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationLine:
    invoice_id: int
    invoice_number: str
    amount: Decimal


def plan_allocations(
    amount: Decimal, invoices: Sequence[Invoice]
) -> tuple[list[AllocationLine], Decimal]:
    """
    Split `amount` over invoices in the given order, each taking at most its
    balance. Returns the planned lines and what is left over.
    """
    remaining = round_money(amount)
    lines: list[AllocationLine] = []
    for invoice in invoices:
        if remaining <= ZERO:
            break
        balance = Decimal(invoice.balance_due)
        if balance <= ZERO:
            continue
        portion = min(remaining, balance)
        lines.append(AllocationLine(invoice.id, invoice.invoice_number, portion))
        remaining = round_money(remaining - portion)
    return lines, remaining


class CreditAllocator:
    """Writes allocations and keeps the paid/balance/status fields of invoices in step."""

    def __init__(self, ledger: LedgerStore, today: Callable[[], date]):
        self.ledger = ledger
        self.today = today

    async def allocate_to_invoice(
        self, payment: Payment, invoice: Invoice, amount: Decimal
    ) -> PaymentAllocation:
        """
        Apply part of a payment to one invoice (already locked by the caller).

        Credit applications only explain a reduction already booked in the
        invoice's adjustments, so they leave amount_paid alone.
        """
        allocation = PaymentAllocation(
            tenant_id=self.ledger.tenant_id,
            payment_id=payment.id,
            invoice_id=invoice.id,
            amount=round_money(amount),
            allocated_at=datetime.now(timezone.utc),
        )
        if not payment.is_credit_application:
            apply_payment_to_invoice(invoice, allocation.amount, self.today())
        self.ledger.add(allocation)
        await self.ledger.flush()
        return allocation

    async def allocate_oldest_first(
        self, payment: Payment, invoices: Sequence[Invoice]
    ) -> tuple[list[AllocationLine], Decimal]:
        """Allocate the whole payment oldest invoice first; the rest stays as credit."""
        lines, remaining = plan_allocations(Decimal(payment.amount), invoices)
        by_id = {invoice.id: invoice for invoice in invoices}
        for line in lines:
            await self.allocate_to_invoice(payment, by_id[line.invoice_id], line.amount)

        logger.info(
            "Payment %s allocated to %d invoice(s), %s left as credit",
            payment.receipt_number,
            len(lines),
            remaining,
        )
        return lines, remaining

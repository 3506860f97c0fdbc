"""Manual invoice adjustments (discounts, late fees, write-offs, refunds, edits)."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable

from src.core.exceptions import ValidationError
from src.modules.billing.ledger import LedgerStore
from src.modules.invoices.models import AdjustmentType, Invoice, InvoiceAdjustment
from src.modules.invoices.status import recalculate_invoice
from src.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)

# Types that take value off the invoice and accumulate in `adjustments`
REDUCING_TYPES = (
    AdjustmentType.DISCOUNT,
    AdjustmentType.WRITEOFF,
    AdjustmentType.REFUND,
)


@dataclass(frozen=True)
class AdjustmentOutcome:
    record: InvoiceAdjustment
    new_total: Decimal
    new_balance_due: Decimal
    new_status: str


def append_note(existing: str | None, text: str) -> str:
    return f"{existing}\n{text}" if existing else text


class AdjustmentEngine:
    """
    Sign rules:
        discount, writeoff, refund   total -= amount, adjustments += amount
        late_fee                     total += amount, late_fee += amount
        manual_edit                  amount is the new total; adjustments absorb the delta
    """

    def __init__(self, ledger: LedgerStore, today: Callable[[], date]):
        self.ledger = ledger
        self.today = today

    async def apply(
        self,
        invoice: Invoice,
        adjustment_type: AdjustmentType,
        amount: Decimal,
        reason: str,
        applied_by: str,
        notes: str | None = None,
    ) -> AdjustmentOutcome:
        """Apply an adjustment to a locked invoice and record it."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Adjustment reason is required", field="reason")

        amount = round_money(amount)
        total_before = Decimal(invoice.total)

        if adjustment_type == AdjustmentType.MANUAL_EDIT:
            if amount < ZERO:
                raise ValidationError("New total cannot be negative", field="amount")
            delta = round_money(amount - total_before)
            if delta == ZERO:
                raise ValidationError(
                    "Manual edit does not change the invoice total", field="amount"
                )
            invoice.adjustments = round_money(Decimal(invoice.adjustments) - delta)
            magnitude = abs(delta)
        else:
            if amount <= ZERO:
                raise ValidationError("Adjustment amount must be positive", field="amount")
            if adjustment_type in REDUCING_TYPES:
                if amount > total_before:
                    raise ValidationError(
                        f"{adjustment_type.value} of {amount} exceeds invoice total {total_before}",
                        field="amount",
                    )
                invoice.adjustments = round_money(Decimal(invoice.adjustments) + amount)
            else:
                invoice.late_fee = round_money(Decimal(invoice.late_fee) + amount)
            magnitude = amount

        recalculate_invoice(invoice, self.today())
        invoice.notes = append_note(invoice.notes, reason)

        record = InvoiceAdjustment(
            tenant_id=self.ledger.tenant_id,
            invoice_id=invoice.id,
            adjustment_type=adjustment_type.value,
            amount=magnitude,
            total_before=total_before,
            total_after=invoice.total,
            reason=reason,
            notes=notes,
            applied_by=applied_by,
            applied_at=datetime.now(timezone.utc),
        )
        self.ledger.add(record)
        await self.ledger.flush()

        logger.info(
            "Applied %s of %s to invoice %s: total %s -> %s",
            adjustment_type.value,
            magnitude,
            invoice.invoice_number,
            total_before,
            invoice.total,
        )
        return AdjustmentOutcome(
            record=record,
            new_total=invoice.total,
            new_balance_due=invoice.balance_due,
            new_status=invoice.status,
        )

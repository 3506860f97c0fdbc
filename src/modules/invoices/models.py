"""Invoice and InvoiceAdjustment models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, TenantMixin


class InvoiceType(StrEnum):
    """Invoice type enumeration."""

    MONTHLY = "monthly"
    PRORATED = "prorated"
    CUSTOM = "custom"
    MULTI_MONTH = "multi_month"
    ADJUSTMENT = "adjustment"


class InvoiceStatus(StrEnum):
    """Invoice status enumeration. Always derived from the amounts, never set directly."""

    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


OUTSTANDING_STATUSES = (
    InvoiceStatus.SENT.value,
    InvoiceStatus.PARTIAL.value,
    InvoiceStatus.OVERDUE.value,
)


class AdjustmentType(StrEnum):
    """Manual invoice adjustment types."""

    DISCOUNT = "discount"
    LATE_FEE = "late_fee"
    MANUAL_EDIT = "manual_edit"
    REFUND = "refund"
    WRITEOFF = "writeoff"


class Invoice(TenantMixin, Base):
    """
    Billing obligation of one student for one period.

    total = subtotal - discount + late_fee - adjustments
    balance_due = total - amount_paid (never negative)
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        CheckConstraint("balance_due >= 0", name="ck_invoices_balance_due_non_negative"),
        Index(
            "uq_invoices_monthly_period",
            "tenant_id",
            "student_id",
            "billing_period_start",
            unique=True,
            postgresql_where=text("invoice_type = 'monthly' AND billing_schedule_id IS NULL"),
            sqlite_where=text("invoice_type = 'monthly' AND billing_schedule_id IS NULL"),
        ),
        Index(
            "uq_invoices_schedule_period",
            "billing_schedule_id",
            "billing_period_start",
            unique=True,
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    invoice_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )  # monthly | prorated | custom | multi_month | adjustment
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.SENT.value, index=True
    )

    # Dates
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Amounts (Decimal with 2 decimal places)
    subtotal: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    discount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    late_fee: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    # Cumulative value removed after issuance (credit, pro-ration, discounts, write-offs)
    adjustments: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    total: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    balance_due: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    parent_invoice_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=True
    )

    # Set on invoices raised by a recurring billing schedule
    billing_schedule_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("billing_schedules.id"), nullable=True
    )

    # Metadata
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    adjustment_records: Mapped[list["InvoiceAdjustment"]] = relationship(
        "InvoiceAdjustment", back_populates="invoice"
    )


class InvoiceAdjustment(TenantMixin, Base):
    """Immutable audit record of a manual change to an invoice."""

    __tablename__ = "invoice_adjustments"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=False, index=True
    )

    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Always a positive magnitude; the type decides the direction
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_before: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_after: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    applied_by: Mapped[str] = mapped_column(String(100), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="adjustment_records")

"""Recurring billing schedules."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import Base, BigIntPK, TenantMixin


class BillingFrequency(StrEnum):
    """How often a schedule bills, in months."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]


class BillingSchedule(TenantMixin, Base):
    """Recurring invoice definition for one student (optionally tied to one enrollment)."""

    __tablename__ = "billing_schedules"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_billing_schedules_amount_positive"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    enrollment_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("enrollments.id"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BillingFrequency.MONTHLY.value
    )
    next_billing_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

"""Pro-rated first-period fees for enrollments starting mid-month."""

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from src.shared.utils.money import ZERO, round_money, round_whole, sum_money


@dataclass(frozen=True)
class ProrationResult:
    full_fee: Decimal
    fee: Decimal
    remaining_days: int
    days_in_month: int
    notes: str

    @property
    def reduction(self) -> Decimal:
        return round_money(self.full_fee - self.fee)


def days_in_month(on: date) -> int:
    return calendar.monthrange(on.year, on.month)[1]


def month_bounds(on: date) -> tuple[date, date]:
    """First and last day of the calendar month containing `on`."""
    return on.replace(day=1), on.replace(day=days_in_month(on))


def calculate_prorated_fee(
    base_fees: Iterable[Decimal], effective_date: date, is_full_month: bool
) -> ProrationResult:
    """
    Fee due for the first (partial) month of an enrollment.

    remaining_days counts the effective date itself, so enrolling on the last
    day of the month still bills one day. The pro-rated fee is rounded to a
    whole currency unit.
    """
    full_fee = sum_money(base_fees)
    total_days = days_in_month(effective_date)
    remaining_days = total_days - effective_date.day + 1

    if is_full_month:
        return ProrationResult(
            full_fee=full_fee,
            fee=full_fee,
            remaining_days=remaining_days,
            days_in_month=total_days,
            notes="Mid-month enrollment - full month fee",
        )

    fee = round_whole(full_fee * remaining_days / total_days) if full_fee > ZERO else ZERO
    return ProrationResult(
        full_fee=full_fee,
        fee=fee,
        remaining_days=remaining_days,
        days_in_month=total_days,
        notes=f"Pro-rated fee for {remaining_days} days of {total_days} total days",
    )


def add_months(on: date, months: int) -> date:
    """Same day `months` later, clamped to the last day of the target month."""
    month_index = on.month - 1 + months
    year = on.year + month_index // 12
    month = month_index % 12 + 1
    day = min(on.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)

"""Tests for pro-ration and calendar helpers."""

from datetime import date
from decimal import Decimal

from src.modules.billing.proration import (
    add_months,
    calculate_prorated_fee,
    days_in_month,
    month_bounds,
)


class TestCalculateProratedFee:
    """Tests for calculate_prorated_fee."""

    def test_first_day_is_full_fee(self):
        result = calculate_prorated_fee([Decimal("8000")], date(2026, 4, 1), False)

        assert result.fee == Decimal("8000.00")
        assert result.remaining_days == 30
        assert result.reduction == Decimal("0.00")

    def test_last_day_bills_one_day(self):
        result = calculate_prorated_fee([Decimal("8000")], date(2026, 4, 30), False)

        assert result.remaining_days == 1
        assert result.days_in_month == 30
        assert result.fee == Decimal("267.00")
        assert result.reduction == Decimal("7733.00")
        assert result.notes == "Pro-rated fee for 1 days of 30 total days"

    def test_mid_month_sums_all_subjects(self):
        # 16 of 31 days in January: 8000 * 16 / 31 = 4129.03
        result = calculate_prorated_fee(
            [Decimal("5000"), Decimal("3000")], date(2026, 1, 16), False
        )

        assert result.full_fee == Decimal("8000.00")
        assert result.remaining_days == 16
        assert result.fee == Decimal("4129.00")

    def test_full_month_flag_ignores_date(self):
        result = calculate_prorated_fee([Decimal("8000")], date(2026, 4, 20), True)

        assert result.fee == Decimal("8000.00")
        assert result.reduction == Decimal("0.00")
        assert result.notes == "Mid-month enrollment - full month fee"

    def test_no_fees(self):
        result = calculate_prorated_fee([], date(2026, 4, 20), False)
        assert result.fee == Decimal("0.00")


class TestCalendarHelpers:
    def test_days_in_month(self):
        assert days_in_month(date(2026, 2, 10)) == 28
        assert days_in_month(date(2028, 2, 10)) == 29
        assert days_in_month(date(2026, 12, 31)) == 31

    def test_month_bounds(self):
        assert month_bounds(date(2026, 2, 14)) == (date(2026, 2, 1), date(2026, 2, 28))

    def test_add_months_clamps_day(self):
        assert add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
        assert add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)
        assert add_months(date(2026, 1, 1), 12) == date(2027, 1, 1)

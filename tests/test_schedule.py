"""
Test suite for schedule generation

Tests flat-interest installment splitting, remainder absorption, due date
offsets per frequency and the installment rounding helpers.
"""

import pytest
from datetime import date
from decimal import Decimal

from field_collections.currency import Money, Currency
from field_collections.exceptions import InvalidLoanTerms
from field_collections.schedule import (
    PaymentFrequency, RoundingDirection, due_date_for, generate_schedule,
    rounding_increment, suggest_rounded_rate
)

from conftest import ars


class TestGenerateSchedule:
    """Test schedule generation"""

    def test_reference_example(self):
        """Test 50,000 at 20% over 6 monthly installments"""
        schedule = generate_schedule(ars("50000"), Decimal("0.20"), 6,
                                     PaymentFrequency.MONTHLY, date(2024, 1, 15))

        assert len(schedule) == 6
        assert [row.payment_number for row in schedule] == [1, 2, 3, 4, 5, 6]
        assert all(row.total_amount_due == ars("10000") for row in schedule)
        assert [row.due_date for row in schedule] == [
            date(2024, 1, 15), date(2024, 2, 15), date(2024, 3, 15),
            date(2024, 4, 15), date(2024, 5, 15), date(2024, 6, 15)
        ]

    def test_final_installment_absorbs_remainder(self):
        """Test that rounding leftovers land on the last installment"""
        schedule = generate_schedule(ars("1000"), Decimal("0.10"), 3,
                                     PaymentFrequency.WEEKLY, date(2024, 1, 1))

        assert [row.total_amount_due for row in schedule] == [ars("366.66"), ars("366.66"), ars("366.68")]
        assert [row.principal_portion for row in schedule] == [ars("333.33"), ars("333.33"), ars("333.34")]

    @pytest.mark.parametrize("principal,rate,count", [
        ("50000", "0.20", 6),
        ("1000", "0.10", 3),
        ("12345.67", "0.315", 7),
        ("100", "0", 30),
        ("99999.99", "1.5", 11),
    ])
    def test_sums_are_exact(self, principal, rate, count):
        """Test that the schedule sums exactly to the loan totals"""
        principal_money = ars(principal)
        schedule = generate_schedule(principal_money, Decimal(rate), count,
                                     PaymentFrequency.DAILY, date(2024, 1, 1))

        total = Money.sum((row.total_amount_due for row in schedule), Currency.ARS)
        principal_total = Money.sum((row.principal_portion for row in schedule), Currency.ARS)

        assert total == principal_money * (Decimal("1") + Decimal(rate))
        assert principal_total == principal_money

    def test_interest_portion(self):
        """Test interest portion is total due minus principal portion"""
        schedule = generate_schedule(ars("50000"), Decimal("0.20"), 6,
                                     PaymentFrequency.MONTHLY, date(2024, 1, 15))

        assert schedule[0].interest_portion == ars("10000") - ars("8333.33")

    def test_invalid_terms(self):
        """Test rejection of non-positive principal or installment count"""
        with pytest.raises(InvalidLoanTerms):
            generate_schedule(ars("0"), Decimal("0.2"), 6, PaymentFrequency.MONTHLY, date(2024, 1, 1))

        with pytest.raises(InvalidLoanTerms):
            generate_schedule(ars("1000"), Decimal("0.2"), 0, PaymentFrequency.MONTHLY, date(2024, 1, 1))

        with pytest.raises(InvalidLoanTerms):
            generate_schedule(ars("1000"), Decimal("-0.1"), 3, PaymentFrequency.MONTHLY, date(2024, 1, 1))

    def test_principal_below_one_unit_per_installment(self):
        """Test that no installment may round down to zero"""
        with pytest.raises(InvalidLoanTerms, match="cannot be split"):
            generate_schedule(ars("0.05"), Decimal("0"), 6, PaymentFrequency.MONTHLY, date(2024, 1, 1))

        schedule = generate_schedule(ars("0.06"), Decimal("0"), 6, PaymentFrequency.MONTHLY,
                                     date(2024, 1, 1))
        assert all(row.total_amount_due == ars("0.01") for row in schedule)


class TestDueDates:
    """Test due date offsets"""

    def test_daily_weekly_biweekly(self):
        """Test day-based frequencies"""
        start = date(2024, 1, 1)

        assert due_date_for(start, PaymentFrequency.DAILY, 3) == date(2024, 1, 3)
        assert due_date_for(start, PaymentFrequency.WEEKLY, 3) == date(2024, 1, 15)
        assert due_date_for(start, PaymentFrequency.BIWEEKLY, 3) == date(2024, 1, 29)

    def test_monthly_clamps_to_month_end(self):
        """Test that monthly due dates clamp to shorter months"""
        start = date(2024, 1, 31)

        assert due_date_for(start, PaymentFrequency.MONTHLY, 1) == date(2024, 1, 31)
        assert due_date_for(start, PaymentFrequency.MONTHLY, 2) == date(2024, 2, 29)
        assert due_date_for(start, PaymentFrequency.MONTHLY, 3) == date(2024, 3, 31)
        assert due_date_for(start, PaymentFrequency.MONTHLY, 4) == date(2024, 4, 30)
        assert due_date_for(start, PaymentFrequency.MONTHLY, 13) == date(2025, 1, 31)


class TestRounding:
    """Test installment rounding helpers"""

    def test_rounding_increment(self):
        """Test increments by installment magnitude"""
        assert rounding_increment(Decimal("26800")) == Decimal("1000")
        assert rounding_increment(Decimal("5400")) == Decimal("500")
        assert rounding_increment(Decimal("1200")) == Decimal("100")
        assert rounding_increment(Decimal("640")) == Decimal("50")
        assert rounding_increment(Decimal("120")) == Decimal("10")
        assert rounding_increment(Decimal("35")) == Decimal("1")

    def test_round_up(self):
        """Test 100,000 at 34% in 5 rounds up to 27,000 per installment"""
        result = suggest_rounded_rate(Decimal("100000"), Decimal("0.34"), 5, RoundingDirection.UP)

        assert result.installment_amount == Decimal("27000")
        assert result.interest_rate == Decimal("0.35")
        assert result.total_amount == Decimal("135000")

    def test_round_down(self):
        """Test 100,000 at 34% in 5 rounds down to 26,000 per installment"""
        result = suggest_rounded_rate(Decimal("100000"), Decimal("0.34"), 5, RoundingDirection.DOWN)

        assert result.installment_amount == Decimal("26000")
        assert result.interest_rate == Decimal("0.3")

    def test_already_round_moves_to_next_step(self):
        """Test that an already round installment still moves a full step"""
        result = suggest_rounded_rate(Decimal("100000"), Decimal("0.35"), 5, RoundingDirection.UP)

        assert result.installment_amount == Decimal("28000")

    def test_rate_never_negative(self):
        """Test that rounding down below the principal floors the rate at zero"""
        result = suggest_rounded_rate(Decimal("1050"), Decimal("0"), 1, RoundingDirection.DOWN)

        assert result.installment_amount == Decimal("1000")
        assert result.interest_rate == Decimal("0")

    def test_round_down_to_zero(self):
        """Test that rounding down to nothing yields no suggestion"""
        assert suggest_rounded_rate(Decimal("1"), Decimal("0"), 1, RoundingDirection.DOWN) is None

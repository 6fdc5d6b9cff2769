"""
Repayment Schedule Module

Pure schedule generation for flat-interest loans: the total amount
(principal plus simple interest) is split into equal installments and any
rounding remainder is absorbed by the final installment, so the schedule
sums exactly to the loan totals in the currency's smallest unit.
"""

from decimal import Decimal, ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR
from datetime import date, timedelta
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .currency import Money
from .exceptions import InvalidLoanTerms
from .timeutils import add_months


class PaymentFrequency(Enum):
    """Payment frequency options"""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class RoundingDirection(Enum):
    UP = "UP"
    DOWN = "DOWN"


@dataclass(frozen=True)
class ScheduledInstallment:
    """One row of a generated schedule"""
    payment_number: int
    due_date: date
    principal_portion: Money
    total_amount_due: Money

    @property
    def interest_portion(self) -> Money:
        return self.total_amount_due - self.principal_portion


@dataclass(frozen=True)
class RoundedRate:
    """Result of rounding an installment to a "nice" amount"""
    interest_rate: Decimal
    installment_amount: Decimal
    total_amount: Decimal


def due_date_for(start_date: date, frequency: PaymentFrequency, payment_number: int) -> date:
    """Due date of installment ``payment_number`` (1-based)"""
    offset = payment_number - 1
    if frequency == PaymentFrequency.DAILY:
        return start_date + timedelta(days=offset)
    elif frequency == PaymentFrequency.WEEKLY:
        return start_date + timedelta(days=7 * offset)
    elif frequency == PaymentFrequency.BIWEEKLY:
        return start_date + timedelta(days=14 * offset)
    elif frequency == PaymentFrequency.MONTHLY:
        # Offset from start_date, not the previous due date (Jan 31 -> Feb 29 -> Mar 31)
        return add_months(start_date, offset)
    raise InvalidLoanTerms(f"Unsupported payment frequency: {frequency}")


def validate_terms(principal: Money, base_interest_rate: Decimal,
                   total_installments: int) -> None:
    """
    Raises:
        InvalidLoanTerms: If principal <= 0, rate < 0, installments <= 0 or the
            principal is smaller than one currency unit per installment
    """
    if not isinstance(total_installments, int) or isinstance(total_installments, bool) \
            or total_installments <= 0:
        raise InvalidLoanTerms(
            f"Total installments must be a positive integer, got {total_installments!r}",
            total_installments=total_installments
        )
    if not principal.is_positive():
        raise InvalidLoanTerms(
            f"Principal must be positive, got {principal.to_string()}",
            principal=principal.amount
        )
    if principal.amount < principal.currency.unit * total_installments:
        raise InvalidLoanTerms(
            f"Principal {principal.to_string()} cannot be split into "
            f"{total_installments} installments of at least {principal.currency.unit}",
            principal=principal.amount, total_installments=total_installments
        )
    if Decimal(str(base_interest_rate)) < 0:
        raise InvalidLoanTerms(
            f"Interest rate cannot be negative, got {base_interest_rate}",
            base_interest_rate=base_interest_rate
        )


def total_amount_for(principal: Money, base_interest_rate: Decimal) -> Money:
    """principal * (1 + rate), rounded to the currency unit"""
    return principal * (Decimal('1') + Decimal(str(base_interest_rate)))


def generate_schedule(
    principal: Money,
    base_interest_rate: Decimal,
    total_installments: int,
    frequency: PaymentFrequency,
    start_date: date
) -> List[ScheduledInstallment]:
    """
    Generate the ordered installment list for a loan.

    Args:
        principal: Amount lent
        base_interest_rate: Flat rate as a fraction (0.20 for 20%)
        total_installments: Number of installments
        frequency: Spacing between due dates
        start_date: Due date of the first installment

    Returns:
        Installments numbered 1..total_installments

    Raises:
        InvalidLoanTerms: If the terms are not valid
    """
    validate_terms(principal, base_interest_rate, total_installments)

    currency = principal.currency
    unit = currency.unit
    total_amount = total_amount_for(principal, base_interest_rate)
    count = Decimal(total_installments)

    # Regular shares are truncated; the final installment takes the remainder
    regular_total = Money((total_amount.amount / count).quantize(unit, rounding=ROUND_DOWN), currency)
    regular_principal = Money((principal.amount / count).quantize(unit, rounding=ROUND_DOWN), currency)

    schedule = []
    for payment_number in range(1, total_installments + 1):
        if payment_number == total_installments:
            already = total_installments - 1
            principal_portion = principal - regular_principal * already
            total_due = total_amount - regular_total * already
        else:
            principal_portion = regular_principal
            total_due = regular_total

        schedule.append(ScheduledInstallment(
            payment_number=payment_number,
            due_date=due_date_for(start_date, frequency, payment_number),
            principal_portion=principal_portion,
            total_amount_due=total_due
        ))

    return schedule


def rounding_increment(installment_amount: Decimal) -> Decimal:
    """
    Step used to round an installment to a "nice" amount:
    26,800 -> 1,000; 5,400 -> 500; 1,200 -> 100.
    """
    if installment_amount >= 10000:
        return Decimal('1000')
    if installment_amount >= 5000:
        return Decimal('500')
    if installment_amount >= 1000:
        return Decimal('100')
    if installment_amount >= 500:
        return Decimal('50')
    if installment_amount >= 100:
        return Decimal('10')
    return Decimal('1')


def suggest_rounded_rate(
    principal: Decimal,
    base_interest_rate: Decimal,
    total_installments: int,
    direction: RoundingDirection = RoundingDirection.UP
) -> Optional[RoundedRate]:
    """
    Find the interest rate that turns the installment into the next (UP) or
    previous (DOWN) round amount. Works backwards from the target installment:
    rate = target * n / principal - 1, floored at zero.

    Returns None when rounding DOWN would reach zero.
    """
    principal = Decimal(str(principal))
    if principal <= 0 or total_installments <= 0:
        raise InvalidLoanTerms("Principal and installments must be positive")

    count = Decimal(total_installments)
    current = principal * (Decimal('1') + Decimal(str(base_interest_rate))) / count
    increment = rounding_increment(current)

    cent = Decimal('0.01')
    if direction == RoundingDirection.UP:
        target = ((current + cent) / increment).to_integral_value(rounding=ROUND_CEILING) * increment
    else:
        target = ((current - cent) / increment).to_integral_value(rounding=ROUND_FLOOR) * increment
        if target <= 0:
            return None

    required = max(Decimal('0'), target * count / principal - Decimal('1'))
    return RoundedRate(
        interest_rate=required,
        installment_amount=target,
        total_amount=target * count
    )

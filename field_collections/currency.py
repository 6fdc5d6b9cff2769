"""
Money Module

Currency codes and an immutable Money value with proper Decimal precision.
NEVER uses float for monetary values. No conversion between currencies is
performed anywhere in the collections core.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union

from .exceptions import CurrencyMismatch, InvalidAmount

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes handled by the back office, with precision"""
    ARS = ("ARS", 2)  # Argentine Peso, 2 decimal places
    USD = ("USD", 2)  # US Dollar, 2 decimal places

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @property
    def unit(self) -> Decimal:
        """Smallest representable amount in this currency"""
        return Decimal('0.1') ** self.precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        try:
            return cls[code.upper()]
        except KeyError:
            raise InvalidAmount(f"Unsupported currency '{code}'", currency=code)


AmountLike = Union[Decimal, int, str]


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    Amounts are rounded half-up to the currency's smallest unit.
    """
    amount: Decimal
    currency: Currency

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            try:
                object.__setattr__(self, 'amount', Decimal(str(self.amount)))
            except InvalidOperation:
                raise InvalidAmount(f"Cannot convert '{self.amount}' to Decimal")

        if not self.amount.is_finite():
            raise InvalidAmount("Amount must be a finite number")

        rounded = self.amount.quantize(self.currency.unit, rounding=ROUND_HALF_UP)
        object.__setattr__(self, 'amount', rounded)

    @classmethod
    def zero(cls, currency: Currency) -> 'Money':
        return cls(Decimal('0'), currency)

    @classmethod
    def sum(cls, values: Iterable['Money'], currency: Currency) -> 'Money':
        total = cls.zero(currency)
        for value in values:
            total = total + value
        return total

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot {verb} Money and {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatch(
                f"Cannot {verb} {self.currency.code} and {other.currency.code}",
                left=self.currency.code, right=other.currency.code
            )

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: AmountLike) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __abs__(self) -> 'Money':
        return Money(abs(self.amount), self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        """Check if amount is exactly zero"""
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        """Check if amount is positive"""
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        """Check if amount is negative"""
        return self.amount < Decimal('0')

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


def to_money(value: Union[Money, AmountLike], currency: Currency) -> Money:
    """
    Coerce a raw amount into Money in the given currency.

    Raises:
        CurrencyMismatch: If value is Money in another currency
        InvalidAmount: If value cannot be parsed
    """
    if isinstance(value, Money):
        if value.currency != currency:
            raise CurrencyMismatch(
                f"Expected {currency.code} amount, got {value.currency.code}",
                expected=currency.code, actual=value.currency.code
            )
        return value
    if isinstance(value, float):
        raise InvalidAmount("Float amounts are not accepted; use Decimal or str")
    return Money(value, currency)


def require_positive(money: Money, **context) -> Money:
    """Reject zero and negative amounts"""
    if not money.is_positive():
        raise InvalidAmount(f"Amount must be positive, got {money.to_string()}",
                            amount=money.amount, **context)
    return money

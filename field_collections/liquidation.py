"""
Liquidation Module

Settlement figures for collectors, computed from wallet ledger history and
route expenses. Installment state is never consulted: the ledger is the
single source of truth for what was collected and what was reversed.
"""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from .config import get_config
from .currency import Money, Currency
from .exceptions import InvalidPercentage, ValidationError
from .routes import ExpenseCategory, RouteManager, RouteStatus
from .timeutils import TimezoneLike, operational_date, range_bounds, week_bounds
from .wallets import TransactionType, WalletLedger, WalletTransaction


@dataclass
class CollectionsSummary:
    """Net collections of one collector over an inclusive date range"""
    collector_id: str
    start_date: date
    end_date: date
    start_at: datetime
    end_at: datetime
    gross_amount: Money
    reset_amount: Money
    payment_count: int
    reset_count: int

    @property
    def total_amount(self) -> Money:
        return self.gross_amount - self.reset_amount

    @property
    def total_collections(self) -> int:
        return self.payment_count - self.reset_count


@dataclass
class DailySummary:
    """One collector's day: money in, money out, and what is left"""
    collector_id: str
    day: date
    collected: Money
    resets: Money
    loaned: Money
    withdrawn: Money
    expenses_by_category: Dict[ExpenseCategory, Money]
    route_id: Optional[str] = None
    route_status: Optional[RouteStatus] = None

    @property
    def gross_collected(self) -> Money:
        return self.collected + self.resets

    @property
    def total_expenses(self) -> Money:
        return Money.sum(self.expenses_by_category.values(), self.collected.currency)

    @property
    def net(self) -> Money:
        return self.collected - self.total_expenses - self.loaned - self.withdrawn


@dataclass
class PeriodReport:
    """Collector report over a period with commission applied"""
    summary: CollectionsSummary
    withdrawn: Money
    expenses_by_category: Dict[ExpenseCategory, Money]
    commission_percentage: Decimal
    commission: Money
    routes_closed: int = 0
    routes_open: int = 0
    daily: List[DailySummary] = field(default_factory=list)

    @property
    def total_expenses(self) -> Money:
        return Money.sum(self.expenses_by_category.values(), self.commission.currency)

    @property
    def net_before_commission(self) -> Money:
        return self.summary.total_amount - self.total_expenses

    @property
    def net_after_commission(self) -> Money:
        return self.net_before_commission - self.commission


def calculate_commission(total_amount: Union[Money, Decimal],
                         percentage: Union[Decimal, str, int]) -> Union[Money, Decimal]:
    """
    commission = total_amount * percentage / 100

    Raises:
        InvalidPercentage: If percentage is outside 0..100
    """
    try:
        percentage = Decimal(str(percentage))
    except ArithmeticError:
        raise InvalidPercentage(f"Invalid percentage '{percentage}'", percentage=percentage)
    if not percentage.is_finite() or percentage < 0 or percentage > 100:
        raise InvalidPercentage(
            f"Commission percentage must be between 0 and 100, got {percentage}",
            percentage=percentage
        )

    if isinstance(total_amount, Money):
        return total_amount * (percentage / Decimal('100'))
    return (Decimal(str(total_amount)) * percentage / Decimal('100')).quantize(
        Decimal('0.01'), rounding=ROUND_HALF_UP
    )


class LiquidationCalculator:
    """
    Reads ledger history and routes to produce collector settlements
    """

    def __init__(
        self,
        wallet_ledger: WalletLedger,
        route_manager: RouteManager,
        timezone: TimezoneLike = None,
        default_currency: Optional[Currency] = None,
        default_commission_percentage: Union[Decimal, str, None] = None
    ):
        self.wallets = wallet_ledger
        self.routes = route_manager
        self.timezone = timezone
        settings = get_config()
        self.default_currency = default_currency or Currency.from_code(settings.default_currency)
        if default_commission_percentage is None:
            default_commission_percentage = settings.default_commission_percentage
        self.default_commission_percentage = Decimal(str(default_commission_percentage))

    def get_collections_summary(
        self,
        collector_id: str,
        start_date: date,
        end_date: date,
        currency: Optional[Currency] = None
    ) -> CollectionsSummary:
        """
        Sum LOAN_PAYMENT credits net of PAYMENT_RESET debits for a collector
        over start_date..end_date inclusive (operational days).
        """
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date",
                                  start_date=start_date, end_date=end_date)
        currency = currency or self.default_currency
        start_at, end_at = range_bounds(start_date, end_date, self.timezone)

        payments = self._transactions(collector_id, currency, start_at, end_at,
                                      [TransactionType.LOAN_PAYMENT])
        resets = self._transactions(collector_id, currency, start_at, end_at,
                                    [TransactionType.PAYMENT_RESET])

        return CollectionsSummary(
            collector_id=collector_id,
            start_date=start_date,
            end_date=end_date,
            start_at=start_at,
            end_at=end_at,
            gross_amount=Money.sum((t.amount for t in payments), currency),
            reset_amount=Money.sum((t.amount for t in resets), currency),
            payment_count=len(payments),
            reset_count=len(resets)
        )

    def daily_summary(self, collector_id: str, day: date,
                      currency: Optional[Currency] = None) -> DailySummary:
        currency = currency or self.default_currency
        start_at, end_at = range_bounds(day, day, self.timezone)
        transactions = self._transactions(collector_id, currency, start_at, end_at)

        def total(transaction_type: TransactionType) -> Money:
            return Money.sum((t.amount for t in transactions
                              if t.transaction_type == transaction_type), currency)

        route = self.routes.get_route_for_date(collector_id, day)
        expenses = (route.expenses_by_category() if route and route.currency == currency
                    else {category: Money.zero(currency) for category in ExpenseCategory})

        return DailySummary(
            collector_id=collector_id,
            day=day,
            collected=total(TransactionType.LOAN_PAYMENT) - total(TransactionType.PAYMENT_RESET),
            resets=total(TransactionType.PAYMENT_RESET),
            loaned=total(TransactionType.LOAN_DISBURSEMENT),
            withdrawn=total(TransactionType.WITHDRAWAL),
            expenses_by_category=expenses,
            route_id=route.id if route else None,
            route_status=route.status if route else None
        )

    def period_report(
        self,
        collector_id: str,
        now: datetime,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        commission_percentage: Union[Decimal, str, None] = None,
        currency: Optional[Currency] = None,
        include_daily: bool = False
    ) -> PeriodReport:
        """
        Collector report for a period, by default the Monday..Sunday week
        containing today.

        Raises:
            InvalidPercentage: If the commission percentage is outside 0..100
        """
        currency = currency or self.default_currency
        if start_date is None or end_date is None:
            week_start, week_end = week_bounds(operational_date(now, self.timezone))
            start_date = start_date or week_start
            end_date = end_date or week_end
        if commission_percentage is None:
            commission_percentage = self.default_commission_percentage
        percentage = Decimal(str(commission_percentage))

        summary = self.get_collections_summary(collector_id, start_date, end_date, currency)
        commission = calculate_commission(summary.total_amount, percentage)
        withdrawals = self._transactions(collector_id, currency, summary.start_at, summary.end_at,
                                         [TransactionType.WITHDRAWAL])

        expenses = {category: Money.zero(currency) for category in ExpenseCategory}
        routes = self.routes.list_routes(collector_id=collector_id, date_from=start_date,
                                         date_to=end_date)
        for route in routes:
            if route.currency != currency:
                continue
            for category, amount in route.expenses_by_category().items():
                expenses[category] = expenses[category] + amount

        daily = []
        if include_daily:
            day = start_date
            while day <= end_date:
                daily.append(self.daily_summary(collector_id, day, currency))
                day = date.fromordinal(day.toordinal() + 1)

        return PeriodReport(
            summary=summary,
            withdrawn=Money.sum((t.amount for t in withdrawals), currency),
            expenses_by_category=expenses,
            commission_percentage=percentage,
            commission=commission,
            routes_closed=sum(1 for r in routes if r.status == RouteStatus.CLOSED),
            routes_open=sum(1 for r in routes if r.status == RouteStatus.OPEN),
            daily=daily
        )

    def _transactions(
        self,
        collector_id: str,
        currency: Currency,
        start_at: datetime,
        end_at: datetime,
        types: Optional[List[TransactionType]] = None
    ) -> List[WalletTransaction]:
        wallet = self.wallets.find_wallet(collector_id, currency)
        if not wallet:
            return []
        return self.wallets.transactions_between([wallet.id], start_at, end_at, types)

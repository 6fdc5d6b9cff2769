"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from datetime import date
from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field

from ..currency import Money, Currency
from ..installments import Installment, PaymentHistoryEntry, derive_status
from ..liquidation import CollectionsSummary, DailySummary, PeriodReport
from ..loans import Loan
from ..routes import CollectionRoute, RouteExpense
from ..wallets import Wallet, WalletTransaction


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (ARS, USD)")

    def to_money(self) -> Money:
        return Money(Decimal(self.amount), Currency.from_code(self.currency))

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


def money_dict(money: Money) -> Dict[str, str]:
    return MoneyModel.from_money(money).model_dump()


# Loan schemas
class CreateLoanRequest(BaseModel):
    client_id: str
    principal: str = Field(..., description="Decimal amount as string")
    base_interest_rate: str = Field(..., description="Flat rate as a fraction, e.g. 0.20")
    penalty_interest_rate: str = "0"
    total_installments: int
    frequency: str = Field(..., description="DAILY, WEEKLY, BIWEEKLY or MONTHLY")
    start_date: date
    currency: Optional[str] = None
    lender_wallet_id: Optional[str] = None
    activate: bool = False
    occurred_at: Optional[str] = None  # ISO-8601 instant


class LoanTransitionRequest(BaseModel):
    lender_wallet_id: Optional[str] = None
    occurred_at: Optional[str] = None


class RoundingRequest(BaseModel):
    principal: str
    base_interest_rate: str
    total_installments: int
    direction: str = "UP"


# Payment schemas
class RecordPaymentRequest(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    collector_id: Optional[str] = None  # defaults to the acting identity
    note: str = ""
    expected_version: Optional[int] = None
    occurred_at: Optional[str] = None


class ResetPaymentRequest(BaseModel):
    expected_version: Optional[int] = None
    occurred_at: Optional[str] = None


# Wallet schemas
class CreateWalletRequest(BaseModel):
    owner_id: str
    currency: Optional[str] = None
    occurred_at: Optional[str] = None


class WalletMovementRequest(BaseModel):
    amount: str
    description: str = ""
    occurred_at: Optional[str] = None


class TransferRequest(BaseModel):
    from_wallet_id: str
    to_wallet_id: str
    amount: str
    description: str = ""
    occurred_at: Optional[str] = None


# Route schemas
class ExpenseRequest(BaseModel):
    category: str = Field(..., description="COMBUSTIBLE, CONSUMO, REPARACIONES or OTROS")
    amount: str
    description: str = ""
    occurred_at: Optional[str] = None


class UpdateExpenseRequest(BaseModel):
    category: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    occurred_at: Optional[str] = None


class CloseRouteRequest(BaseModel):
    notes: Optional[str] = None
    occurred_at: Optional[str] = None


class ReorderRequest(BaseModel):
    installment_ids: List[str]
    occurred_at: Optional[str] = None


# Liquidation schemas
class CommissionRequest(BaseModel):
    total_amount: str
    percentage: str


# Response builders

def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "client_id": loan.client_id,
        "status": loan.status.value,
        "principal": money_dict(loan.principal),
        "total_amount": money_dict(loan.total_amount),
        "base_interest_rate": str(loan.base_interest_rate),
        "penalty_interest_rate": str(loan.penalty_interest_rate),
        "frequency": loan.frequency.value,
        "total_installments": loan.total_installments,
        "start_date": loan.start_date.isoformat(),
        "lender_wallet_id": loan.lender_wallet_id,
        "created_at": loan.created_at.isoformat(),
        "version": loan.version
    }


def installment_response(installment: Installment, today: date) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "payment_number": installment.payment_number,
        "due_date": installment.due_date.isoformat(),
        "status": derive_status(installment, today).value,
        "principal_portion": money_dict(installment.principal_portion),
        "total_amount_due": money_dict(installment.total_amount_due),
        "paid_amount": money_dict(installment.paid_amount),
        "remaining_amount": money_dict(installment.remaining_amount),
        "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
        "version": installment.version
    }


def payment_history_response(entry: PaymentHistoryEntry) -> Dict[str, Any]:
    return {
        "payment_id": entry.payment.id,
        "amount": money_dict(entry.payment.amount),
        "occurred_at": entry.payment.occurred_at.isoformat(),
        "collector_id": entry.payment.collector_id,
        "note": entry.payment.note,
        "paid_amount_after": money_dict(entry.paid_amount_after),
        "reversed": entry.is_reversed,
        "reversed_at": entry.reversal.occurred_at.isoformat() if entry.reversal else None
    }


def wallet_response(wallet: Wallet) -> Dict[str, Any]:
    return {
        "id": wallet.id,
        "owner_id": wallet.owner_id,
        "balance": money_dict(wallet.balance),
        "transaction_count": wallet.transaction_count,
        "version": wallet.version
    }


def transaction_response(transaction: WalletTransaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "wallet_id": transaction.wallet_id,
        "sequence": transaction.sequence,
        "type": transaction.transaction_type.value,
        "amount": money_dict(transaction.amount),
        "signed_amount": money_dict(transaction.signed_amount),
        "balance_before": money_dict(transaction.balance_before),
        "balance_after": money_dict(transaction.balance_after),
        "occurred_at": transaction.occurred_at.isoformat(),
        "description": transaction.description,
        "related_installment_id": transaction.related_installment_id,
        "transfer_id": transaction.transfer_id
    }


def expense_response(expense: RouteExpense) -> Dict[str, Any]:
    return {
        "id": expense.id,
        "category": expense.category.value,
        "amount": money_dict(expense.amount),
        "description": expense.description,
        "created_at": expense.created_at.isoformat()
    }


def route_response(route: CollectionRoute) -> Dict[str, Any]:
    return {
        "id": route.id,
        "collector_id": route.collector_id,
        "route_date": route.route_date.isoformat(),
        "status": route.status.value,
        "items": [
            {
                "installment_id": item.installment_id,
                "loan_id": item.loan_id,
                "position": item.position,
                "amount_collected": money_dict(item.amount_collected)
            }
            for item in route.items
        ],
        "expenses": [expense_response(expense) for expense in route.expenses],
        "collected_by_currency": [money_dict(amount)
                                  for amount in route.collected_by_currency().values()],
        "total_collected": money_dict(route.total_collected),
        "total_expenses": money_dict(route.total_expenses),
        "net_amount": money_dict(route.net_amount),
        "notes": route.notes,
        "closed_at": route.closed_at.isoformat() if route.closed_at else None,
        "version": route.version
    }


def summary_response(summary: CollectionsSummary) -> Dict[str, Any]:
    return {
        "collector_id": summary.collector_id,
        "start_date": summary.start_date.isoformat(),
        "end_date": summary.end_date.isoformat(),
        "start_at": summary.start_at.isoformat(),
        "end_at": summary.end_at.isoformat(),
        "total_amount": money_dict(summary.total_amount),
        "gross_amount": money_dict(summary.gross_amount),
        "reset_amount": money_dict(summary.reset_amount),
        "total_collections": summary.total_collections
    }


def daily_summary_response(summary: DailySummary) -> Dict[str, Any]:
    return {
        "collector_id": summary.collector_id,
        "day": summary.day.isoformat(),
        "gross_collected": money_dict(summary.gross_collected),
        "resets": money_dict(summary.resets),
        "collected": money_dict(summary.collected),
        "loaned": money_dict(summary.loaned),
        "withdrawn": money_dict(summary.withdrawn),
        "expenses": {category.value: money_dict(amount)
                     for category, amount in summary.expenses_by_category.items()},
        "total_expenses": money_dict(summary.total_expenses),
        "net": money_dict(summary.net),
        "route_id": summary.route_id,
        "route_status": summary.route_status.value if summary.route_status else None
    }


def period_report_response(report: PeriodReport) -> Dict[str, Any]:
    return {
        "summary": summary_response(report.summary),
        "withdrawn": money_dict(report.withdrawn),
        "expenses": {category.value: money_dict(amount)
                     for category, amount in report.expenses_by_category.items()},
        "total_expenses": money_dict(report.total_expenses),
        "commission": {
            "percentage": str(report.commission_percentage),
            "base": money_dict(report.summary.total_amount),
            "amount": money_dict(report.commission)
        },
        "net_before_commission": money_dict(report.net_before_commission),
        "net_after_commission": money_dict(report.net_after_commission),
        "routes_closed": report.routes_closed,
        "routes_open": report.routes_open,
        "daily": [daily_summary_response(day) for day in report.daily]
    }

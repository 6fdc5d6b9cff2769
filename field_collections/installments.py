"""
Installment State Machine

Governs one installment's lifecycle under payment and reset events. The
installment record carries its append-only payment events and reversal
markers; paid_amount is the fold of those events. PENDING vs OVERDUE is
never stored: it is derived from (due_date, today, paid_amount) on read.

Every accepted payment credits the collector's wallet and books the
contribution on the collector's route for that operational day. A reset
undoes exactly the latest unreversed payment, within the reset window,
with an exactly mirrored PAYMENT_RESET debit.
"""

from decimal import Decimal
from datetime import date, datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union, TYPE_CHECKING
import uuid

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency, to_money, require_positive
from .exceptions import (
    EntityNotFound, InstallmentAlreadyPaid, NothingToReset, OutOfOrderPayment,
    OverpaymentError, ResetWindowExpired, StaleState
)
from .logging_config import get_logger, log_action
from .schedule import ScheduledInstallment
from .storage import StorageInterface, StorageRecord
from .timeutils import TimezoneLike, operational_date, require_aware, to_utc
from .wallets import TransactionType

if TYPE_CHECKING:
    from .loans import LoanManager
    from .routes import RouteManager
    from .wallets import WalletLedger


INSTALLMENTS_TABLE = "installments"


class InstallmentStatus(Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


@dataclass(frozen=True)
class PaymentEvent:
    """One recorded payment; never modified once appended"""
    id: str
    amount: Money
    occurred_at: datetime
    collector_id: str
    route_date: date
    wallet_id: str
    wallet_transaction_id: str
    paid_before: Money
    note: str = ""


@dataclass(frozen=True)
class PaymentReversal:
    """Marks a payment as undone by a reset"""
    id: str
    payment_id: str
    amount: Money
    occurred_at: datetime
    wallet_transaction_id: str


@dataclass
class PaymentHistoryEntry:
    payment: PaymentEvent
    reversal: Optional[PaymentReversal]
    paid_amount_after: Money

    @property
    def is_reversed(self) -> bool:
        return self.reversal is not None


@dataclass
class Installment(StorageRecord):
    """One scheduled repayment unit of a loan"""
    loan_id: str
    payment_number: int
    principal_portion: Money
    total_amount_due: Money
    due_date: date
    paid_amount: Money
    paid_at: Optional[datetime] = None
    payments: List[PaymentEvent] = field(default_factory=list)
    reversals: List[PaymentReversal] = field(default_factory=list)
    version: int = 0

    @property
    def currency(self) -> Currency:
        return self.total_amount_due.currency

    @property
    def remaining_amount(self) -> Money:
        return self.total_amount_due - self.paid_amount

    @property
    def is_paid(self) -> bool:
        return self.paid_amount == self.total_amount_due

    @property
    def has_payment(self) -> bool:
        return self.latest_active_payment() is not None

    def reversed_payment_ids(self) -> set:
        return {reversal.payment_id for reversal in self.reversals}

    def active_payments(self) -> List[PaymentEvent]:
        reversed_ids = self.reversed_payment_ids()
        return [payment for payment in self.payments if payment.id not in reversed_ids]

    def latest_active_payment(self) -> Optional[PaymentEvent]:
        active = self.active_payments()
        return active[-1] if active else None

    def status(self, today: date) -> InstallmentStatus:
        return derive_status(self, today)


def derive_status(installment: Installment, today: date) -> InstallmentStatus:
    """
    PAID when fully paid, PARTIAL when partly paid (even if overdue),
    OVERDUE when unpaid and due strictly before today, PENDING otherwise.
    """
    if installment.paid_amount == installment.total_amount_due:
        return InstallmentStatus.PAID
    if installment.paid_amount.is_positive():
        return InstallmentStatus.PARTIAL
    if installment.due_date < today:
        return InstallmentStatus.OVERDUE
    return InstallmentStatus.PENDING


def settlement_status(installment: Installment) -> InstallmentStatus:
    """The date-independent part of the status, which is what gets persisted"""
    return derive_status(installment, date.min)


def build_installments(loan_id: str, schedule: List[ScheduledInstallment],
                       now: datetime) -> List[Installment]:
    """Fresh, unpaid installments for a generated schedule"""
    return [
        Installment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            payment_number=row.payment_number,
            principal_portion=row.principal_portion,
            total_amount_due=row.total_amount_due,
            due_date=row.due_date,
            paid_amount=Money.zero(row.total_amount_due.currency)
        )
        for row in schedule
    ]


def installment_to_dict(installment: Installment) -> Dict:
    currency = installment.currency
    return {
        "id": installment.id,
        "created_at": installment.created_at.isoformat(),
        "updated_at": installment.updated_at.isoformat(),
        "loan_id": installment.loan_id,
        "payment_number": installment.payment_number,
        "currency": currency.code,
        "principal_portion": str(installment.principal_portion.amount),
        "total_amount_due": str(installment.total_amount_due.amount),
        "due_date": installment.due_date.isoformat(),
        "paid_amount": str(installment.paid_amount.amount),
        "status": settlement_status(installment).value,
        "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
        "payments": [
            {
                "id": payment.id,
                "amount": str(payment.amount.amount),
                "occurred_at": payment.occurred_at.isoformat(),
                "collector_id": payment.collector_id,
                "route_date": payment.route_date.isoformat(),
                "wallet_id": payment.wallet_id,
                "wallet_transaction_id": payment.wallet_transaction_id,
                "paid_before": str(payment.paid_before.amount),
                "note": payment.note
            }
            for payment in installment.payments
        ],
        "reversals": [
            {
                "id": reversal.id,
                "payment_id": reversal.payment_id,
                "amount": str(reversal.amount.amount),
                "occurred_at": reversal.occurred_at.isoformat(),
                "wallet_transaction_id": reversal.wallet_transaction_id
            }
            for reversal in installment.reversals
        ],
        "version": installment.version
    }


def installment_from_dict(data: Dict) -> Installment:
    currency = Currency[data['currency']]

    def money(value: str) -> Money:
        return Money(Decimal(value), currency)

    return Installment(
        id=data['id'],
        created_at=datetime.fromisoformat(data['created_at']),
        updated_at=datetime.fromisoformat(data['updated_at']),
        loan_id=data['loan_id'],
        payment_number=data['payment_number'],
        principal_portion=money(data['principal_portion']),
        total_amount_due=money(data['total_amount_due']),
        due_date=date.fromisoformat(data['due_date']),
        paid_amount=money(data['paid_amount']),
        paid_at=datetime.fromisoformat(data['paid_at']) if data.get('paid_at') else None,
        payments=[
            PaymentEvent(
                id=p['id'],
                amount=money(p['amount']),
                occurred_at=datetime.fromisoformat(p['occurred_at']),
                collector_id=p['collector_id'],
                route_date=date.fromisoformat(p['route_date']),
                wallet_id=p['wallet_id'],
                wallet_transaction_id=p['wallet_transaction_id'],
                paid_before=money(p['paid_before']),
                note=p.get('note', "")
            )
            for p in data.get('payments', [])
        ],
        reversals=[
            PaymentReversal(
                id=r['id'],
                payment_id=r['payment_id'],
                amount=money(r['amount']),
                occurred_at=datetime.fromisoformat(r['occurred_at']),
                wallet_transaction_id=r['wallet_transaction_id']
            )
            for r in data.get('reversals', [])
        ],
        version=data.get('version', 0)
    )


class InstallmentManager:
    """
    Applies payments and resets to installments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        loan_manager: 'LoanManager',
        wallet_ledger: 'WalletLedger',
        route_manager: 'RouteManager',
        timezone: TimezoneLike = None,
        reset_window_hours: Optional[int] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.loans = loan_manager
        self.wallets = wallet_ledger
        self.routes = route_manager
        self.timezone = timezone
        if reset_window_hours is None:
            reset_window_hours = get_config().reset_window_hours
        self.reset_window = timedelta(hours=reset_window_hours)
        self.table_name = INSTALLMENTS_TABLE
        self.logger = get_logger("field_collections.installments")

    def get_installment(self, installment_id: str) -> Optional[Installment]:
        data = self.storage.load(self.table_name, installment_id)
        return installment_from_dict(data) if data else None

    def require_installment(self, installment_id: str) -> Installment:
        installment = self.get_installment(installment_id)
        if not installment:
            raise EntityNotFound("installment", installment_id)
        return installment

    def get_loan_installments(self, loan_id: str) -> List[Installment]:
        """All installments of a loan ordered by payment number"""
        installments = [installment_from_dict(data) for data in
                        self.storage.find(self.table_name, {"loan_id": loan_id})]
        installments.sort(key=lambda i: i.payment_number)
        return installments

    def get_status(self, installment: Installment, now: datetime) -> InstallmentStatus:
        """Status as of now, with 'today' taken in the operational timezone"""
        return derive_status(installment, operational_date(now, self.timezone))

    def get_due_installments(self, loan_ids: List[str], now: datetime) -> List[Installment]:
        """
        Collectable installments for a set of loans: for each loan the first
        installment that is not PAID, provided it is due on or before today.
        """
        today = operational_date(now, self.timezone)
        due = []
        for loan_id in loan_ids:
            for installment in self.get_loan_installments(loan_id):
                if installment.is_paid:
                    continue
                if installment.due_date <= today:
                    due.append(installment)
                break
        due.sort(key=lambda i: (i.due_date, i.loan_id))
        return due

    def record_payment(
        self,
        installment_id: str,
        amount: Union[Money, Decimal, str],
        now: datetime,
        collector_id: str,
        note: str = "",
        expected_version: Optional[int] = None
    ) -> Installment:
        """
        Record a payment collected in the field.

        Args:
            installment_id: Installment being paid
            amount: Amount received, must be positive
            now: Business instant of the payment
            collector_id: Collector whose wallet is credited
            note: Free-text note stored with the payment event
            expected_version: Version the caller read; a mismatch fails

        Returns:
            The updated installment

        Raises:
            InvalidAmount: If amount is not positive
            InstallmentAlreadyPaid: If the installment is already PAID
            StaleState: If expected_version is outdated
            LoanNotPayable: If the loan does not accept payments
            OutOfOrderPayment: If an earlier installment is not PAID
            OverpaymentError: If amount exceeds the remaining amount due
            RouteClosed: If the collector's route for today is closed
        """
        require_aware(now, "now")

        with self.storage.atomic():
            installment = self.require_installment(installment_id)
            self._check_version(installment, expected_version)
            money = require_positive(to_money(amount, installment.currency),
                                     installment_id=installment_id)

            if installment.is_paid:
                self._warn("Payment rejected: installment already paid", installment, "record_payment")
                raise InstallmentAlreadyPaid(
                    f"Installment {installment_id} is already paid",
                    entity_type="installment", entity_id=installment_id,
                    expected_version=expected_version, actual_version=installment.version
                )

            self.loans.require_payable(installment.loan_id)
            self._check_payment_sequence(installment)

            if money > installment.remaining_amount:
                self._warn("Payment rejected: overpayment", installment, "record_payment")
                raise OverpaymentError(
                    f"Payment {money.to_string()} exceeds remaining "
                    f"{installment.remaining_amount.to_string()} on installment {installment_id}",
                    installment_id=installment_id, amount=money.amount,
                    remaining=installment.remaining_amount.amount
                )

            route_date = operational_date(now, self.timezone)
            self.routes.ensure_open(collector_id, route_date)

            wallet = self.wallets.get_or_create_wallet(collector_id, installment.currency, now)
            transaction = self.wallets.apply_transaction(
                wallet.id, TransactionType.LOAN_PAYMENT, money, now,
                related_installment_id=installment_id,
                description=f"Installment {installment.payment_number} of loan {installment.loan_id}"
            )

            payment = PaymentEvent(
                id=str(uuid.uuid4()),
                amount=money,
                occurred_at=now,
                collector_id=collector_id,
                route_date=route_date,
                wallet_id=wallet.id,
                wallet_transaction_id=transaction.id,
                paid_before=installment.paid_amount,
                note=note
            )
            installment.payments.append(payment)
            installment.paid_amount = installment.paid_amount + money
            if installment.is_paid:
                installment.paid_at = now
            self._save(installment, now)

            self.routes.add_collection(collector_id, route_date, installment_id,
                                       installment.loan_id, money, now)
            self.loans.refresh_completion(installment.loan_id, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RECORDED,
                entity_type="installment",
                entity_id=installment_id,
                metadata={
                    "payment_id": payment.id,
                    "loan_id": installment.loan_id,
                    "amount": money.amount,
                    "paid_amount": installment.paid_amount.amount,
                    "wallet_transaction_id": transaction.id
                },
                actor_id=collector_id,
                occurred_at=now
            )

        log_action(self.logger, "info", "Payment recorded", user_id=collector_id,
                   action="record_payment", resource=f"installment:{installment_id}",
                   extra={"amount": str(money.amount),
                          "paid_amount": str(installment.paid_amount.amount)})
        return installment

    def reset_payment(
        self,
        installment_id: str,
        now: datetime,
        expected_version: Optional[int] = None
    ) -> Installment:
        """
        Undo the latest unreversed payment on an installment.

        paid_amount returns to its value just before that payment, a
        PAYMENT_RESET debit mirrors the original credit on the same wallet,
        and the route contribution is taken back off.

        Raises:
            NothingToReset: If there is no unreversed payment
            ResetWindowExpired: If the payment is older than the reset window
            OutOfOrderPayment: If a later installment of the loan holds a payment
            RouteClosed: If the route of the payment's date is closed
            StaleState: If expected_version is outdated
        """
        require_aware(now, "now")

        with self.storage.atomic():
            installment = self.require_installment(installment_id)
            self._check_version(installment, expected_version)

            payment = installment.latest_active_payment()
            if payment is None:
                self._warn("Reset rejected: no payment", installment, "reset_payment")
                raise NothingToReset(
                    f"Installment {installment_id} has no payment to reset",
                    installment_id=installment_id
                )

            if to_utc(now) - to_utc(payment.occurred_at) > self.reset_window:
                self._warn("Reset rejected: window expired", installment, "reset_payment")
                raise ResetWindowExpired(
                    f"Latest payment on installment {installment_id} was recorded at "
                    f"{payment.occurred_at.isoformat()}, outside the reset window",
                    installment_id=installment_id, payment_id=payment.id,
                    occurred_at=payment.occurred_at.isoformat()
                )

            self._check_reset_sequence(installment)
            self.routes.ensure_open(payment.collector_id, payment.route_date)

            transaction = self.wallets.apply_transaction(
                payment.wallet_id, TransactionType.PAYMENT_RESET, payment.amount, now,
                related_installment_id=installment_id,
                description=f"Reset of payment {payment.id}",
                reverses_transaction_id=payment.wallet_transaction_id
            )

            installment.reversals.append(PaymentReversal(
                id=str(uuid.uuid4()),
                payment_id=payment.id,
                amount=payment.amount,
                occurred_at=now,
                wallet_transaction_id=transaction.id
            ))
            installment.paid_amount = payment.paid_before
            installment.paid_at = None
            self._save(installment, now)

            self.routes.remove_collection(payment.collector_id, payment.route_date,
                                          installment_id, payment.amount, now)
            self.loans.refresh_completion(installment.loan_id, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.PAYMENT_RESET,
                entity_type="installment",
                entity_id=installment_id,
                metadata={
                    "payment_id": payment.id,
                    "loan_id": installment.loan_id,
                    "amount": payment.amount.amount,
                    "paid_amount": installment.paid_amount.amount,
                    "wallet_transaction_id": transaction.id
                },
                actor_id=payment.collector_id,
                occurred_at=now
            )

        log_action(self.logger, "info", "Payment reset", user_id=payment.collector_id,
                   action="reset_payment", resource=f"installment:{installment_id}",
                   extra={"amount": str(payment.amount.amount),
                          "paid_amount": str(installment.paid_amount.amount)})
        return installment

    def get_payment_history(self, installment_id: str) -> List[PaymentHistoryEntry]:
        """Payments in the order they were recorded, with reversal markers"""
        installment = self.require_installment(installment_id)
        reversals = {reversal.payment_id: reversal for reversal in installment.reversals}

        history = []
        for payment in installment.payments:
            reversal = reversals.get(payment.id)
            history.append(PaymentHistoryEntry(
                payment=payment,
                reversal=reversal,
                paid_amount_after=payment.paid_before + payment.amount
            ))
        return history

    def _check_version(self, installment: Installment, expected_version: Optional[int]) -> None:
        if expected_version is not None and installment.version != expected_version:
            raise StaleState(
                f"Installment {installment.id} is at version {installment.version}, "
                f"not {expected_version}",
                entity_type="installment", entity_id=installment.id,
                expected_version=expected_version, actual_version=installment.version
            )

    def _check_payment_sequence(self, installment: Installment) -> None:
        for other in self.get_loan_installments(installment.loan_id):
            if other.payment_number >= installment.payment_number:
                break
            if not other.is_paid:
                self._warn("Payment rejected: out of order", installment, "record_payment")
                raise OutOfOrderPayment(
                    f"Installment {other.payment_number} of loan {installment.loan_id} "
                    f"must be paid before installment {installment.payment_number}",
                    installment_id=installment.id, loan_id=installment.loan_id,
                    blocking_installment_id=other.id
                )

    def _check_reset_sequence(self, installment: Installment) -> None:
        for other in self.get_loan_installments(installment.loan_id):
            if other.payment_number > installment.payment_number and other.has_payment:
                self._warn("Reset rejected: later installment has payments",
                           installment, "reset_payment")
                raise OutOfOrderPayment(
                    f"Installment {other.payment_number} of loan {installment.loan_id} "
                    f"must be reset before installment {installment.payment_number}",
                    installment_id=installment.id, loan_id=installment.loan_id,
                    blocking_installment_id=other.id
                )

    def _save(self, installment: Installment, now: datetime) -> None:
        expected_version = installment.version
        installment.updated_at = now
        installment.version = self.storage.save_versioned(
            self.table_name, installment.id, installment_to_dict(installment), expected_version
        )

    def _warn(self, message: str, installment: Installment, action: str) -> None:
        log_action(self.logger, "warning", message, action=action,
                   resource=f"installment:{installment.id}",
                   extra={"loan_id": installment.loan_id,
                          "payment_number": installment.payment_number})

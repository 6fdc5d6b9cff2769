"""
Loan Management Module

Loan origination and lifecycle. Creating a loan runs the schedule generator
once and persists every installment in the same atomic unit as the loan.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union
import uuid

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency, to_money
from .exceptions import EntityNotFound, InvalidLoanTerms, InvalidStateTransition, LoanNotPayable
from .installments import (
    INSTALLMENTS_TABLE, Installment, InstallmentStatus, build_installments,
    derive_status, installment_from_dict, installment_to_dict
)
from .logging_config import get_logger, log_action
from .schedule import PaymentFrequency, generate_schedule, total_amount_for, validate_terms
from .storage import StorageInterface, StorageRecord
from .timeutils import TimezoneLike, operational_date, require_aware
from .wallets import TransactionType, WalletLedger


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"


ALLOWED_TRANSITIONS = {
    LoanStatus.PENDING: {LoanStatus.APPROVED, LoanStatus.REJECTED, LoanStatus.ACTIVE},
    LoanStatus.APPROVED: {LoanStatus.ACTIVE, LoanStatus.REJECTED},
    LoanStatus.REJECTED: set(),
    LoanStatus.ACTIVE: {LoanStatus.DEFAULTED, LoanStatus.COMPLETED},
    LoanStatus.DEFAULTED: {LoanStatus.COMPLETED, LoanStatus.ACTIVE},
    LoanStatus.COMPLETED: {LoanStatus.ACTIVE},
}

PAYABLE_STATUSES = frozenset({LoanStatus.ACTIVE, LoanStatus.DEFAULTED})


@dataclass
class Loan(StorageRecord):
    """Loan granted to a client"""
    client_id: str
    principal: Money
    base_interest_rate: Decimal
    penalty_interest_rate: Decimal
    frequency: PaymentFrequency
    total_installments: int
    start_date: date
    total_amount: Money
    status: LoanStatus = LoanStatus.PENDING
    lender_wallet_id: Optional[str] = None
    disbursement_transaction_id: Optional[str] = None
    version: int = 0

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_payable(self) -> bool:
        return self.status in PAYABLE_STATUSES


class LoanManager:
    """
    Creates loans and drives their status transitions
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        wallet_ledger: WalletLedger,
        timezone: TimezoneLike = None,
        default_currency: Optional[Currency] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.wallets = wallet_ledger
        self.timezone = timezone
        self.default_currency = default_currency or Currency.from_code(get_config().default_currency)
        self.table_name = "loans"
        self.logger = get_logger("field_collections.loans")

    def create_loan(
        self,
        client_id: str,
        principal: Union[Money, Decimal, str],
        base_interest_rate: Union[Decimal, str],
        total_installments: int,
        frequency: PaymentFrequency,
        start_date: date,
        now: datetime,
        penalty_interest_rate: Union[Decimal, str] = Decimal('0'),
        currency: Optional[Currency] = None,
        lender_wallet_id: Optional[str] = None,
        activate: bool = False
    ) -> Loan:
        """
        Create a loan and its full installment schedule.

        Args:
            client_id: Borrower
            principal: Amount lent
            base_interest_rate: Flat rate as a fraction (0.20 for 20%)
            total_installments: Number of installments
            frequency: Spacing between due dates
            start_date: Due date of the first installment
            now: Business instant of creation
            penalty_interest_rate: Rate applied to late installments (informational)
            currency: Loan currency (configured default when omitted)
            lender_wallet_id: Wallet debited with LOAN_DISBURSEMENT on activation
            activate: Activate (and disburse) immediately

        Returns:
            Created Loan

        Raises:
            InvalidLoanTerms: If the terms are not valid
            InsufficientFunds: If activating and the lender wallet cannot cover the principal
        """
        require_aware(now, "now")
        currency = currency or self.default_currency
        principal_money = to_money(principal, currency)
        try:
            base_rate = Decimal(str(base_interest_rate))
            penalty_rate = Decimal(str(penalty_interest_rate))
        except ArithmeticError:
            raise InvalidLoanTerms("Interest rates must be decimal numbers",
                                   base_interest_rate=base_interest_rate,
                                   penalty_interest_rate=penalty_interest_rate)
        validate_terms(principal_money, base_rate, total_installments)
        if penalty_rate < 0:
            raise InvalidLoanTerms("Penalty interest rate cannot be negative",
                                   penalty_interest_rate=penalty_rate)

        schedule = generate_schedule(principal_money, base_rate, total_installments,
                                     frequency, start_date)

        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            client_id=client_id,
            principal=principal_money,
            base_interest_rate=base_rate,
            penalty_interest_rate=penalty_rate,
            frequency=frequency,
            total_installments=total_installments,
            start_date=start_date,
            total_amount=total_amount_for(principal_money, base_rate),
            lender_wallet_id=lender_wallet_id
        )

        with self.storage.atomic():
            loan.version = self.storage.save_versioned(
                self.table_name, loan.id, self._loan_to_dict(loan), 0
            )
            for installment in build_installments(loan.id, schedule, now):
                installment.version = self.storage.save_versioned(
                    INSTALLMENTS_TABLE, installment.id, installment_to_dict(installment), 0
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_CREATED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={
                    "client_id": client_id,
                    "principal": principal_money.amount,
                    "total_amount": loan.total_amount.amount,
                    "total_installments": total_installments,
                    "frequency": frequency
                },
                occurred_at=now
            )

            if activate:
                loan = self.activate_loan(loan.id, now, lender_wallet_id)

        log_action(self.logger, "info", "Loan created", action="create_loan",
                   resource=f"loan:{loan.id}",
                   extra={"client_id": client_id, "principal": str(principal_money.amount),
                          "installments": total_installments})
        return loan

    def approve_loan(self, loan_id: str, now: datetime) -> Loan:
        return self._transition(loan_id, LoanStatus.APPROVED, now)

    def reject_loan(self, loan_id: str, now: datetime) -> Loan:
        return self._transition(loan_id, LoanStatus.REJECTED, now)

    def activate_loan(self, loan_id: str, now: datetime,
                      lender_wallet_id: Optional[str] = None) -> Loan:
        """
        Activate a pending or approved loan. When a lender wallet is known the
        principal is debited from it as LOAN_DISBURSEMENT in the same unit.
        """
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            wallet_id = lender_wallet_id or loan.lender_wallet_id
            self._check_transition(loan, LoanStatus.ACTIVE)

            if wallet_id:
                transaction = self.wallets.apply_transaction(
                    wallet_id, TransactionType.LOAN_DISBURSEMENT, loan.principal, now,
                    description=f"Disbursement of loan {loan_id}"
                )
                loan.lender_wallet_id = wallet_id
                loan.disbursement_transaction_id = transaction.id

            loan = self._set_status(loan, LoanStatus.ACTIVE, now)
        return loan

    def mark_defaulted(self, loan_id: str, now: datetime) -> Loan:
        return self._transition(loan_id, LoanStatus.DEFAULTED, now)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.table_name, loan_id)
        return self._loan_from_dict(data) if data else None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise EntityNotFound("loan", loan_id)
        return loan

    def get_client_loans(self, client_id: str) -> List[Loan]:
        return [self._loan_from_dict(data)
                for data in self.storage.find(self.table_name, {"client_id": client_id})]

    def get_installments(self, loan_id: str) -> List[Installment]:
        """Installments of a loan ordered by payment number"""
        self.require_loan(loan_id)
        installments = [installment_from_dict(data) for data in
                        self.storage.find(INSTALLMENTS_TABLE, {"loan_id": loan_id})]
        installments.sort(key=lambda i: i.payment_number)
        return installments

    def require_payable(self, loan_id: str) -> Loan:
        """
        Raises:
            LoanNotPayable: If the loan is not ACTIVE or DEFAULTED
        """
        loan = self.require_loan(loan_id)
        if not loan.is_payable:
            log_action(self.logger, "warning", "Payment rejected: loan not payable",
                       action="record_payment", resource=f"loan:{loan_id}",
                       extra={"status": loan.status.value})
            raise LoanNotPayable(
                f"Loan {loan_id} is {loan.status.value} and does not accept payments",
                loan_id=loan_id, status=loan.status.value
            )
        return loan

    def refresh_completion(self, loan_id: str, now: datetime) -> Loan:
        """
        Move the loan to COMPLETED once every installment is paid, and back
        to ACTIVE if a reset reopens one.
        """
        loan = self.require_loan(loan_id)
        all_paid = all(i.is_paid for i in self.get_installments(loan_id))
        if all_paid and loan.status in PAYABLE_STATUSES:
            return self._set_status(loan, LoanStatus.COMPLETED, now)
        if not all_paid and loan.status == LoanStatus.COMPLETED:
            return self._set_status(loan, LoanStatus.ACTIVE, now)
        return loan

    def get_loan_summary(self, loan_id: str, now: datetime) -> Dict:
        """Paid, outstanding and overdue figures for a loan as of now"""
        loan = self.require_loan(loan_id)
        installments = self.get_installments(loan_id)
        today = operational_date(now, self.timezone)

        paid = Money.sum((i.paid_amount for i in installments), loan.currency)
        statuses = [derive_status(i, today) for i in installments]
        next_due = next((i for i in installments if not i.is_paid), None)
        return {
            "loan_id": loan_id,
            "status": loan.status,
            "total_amount": loan.total_amount,
            "paid_amount": paid,
            "outstanding_amount": loan.total_amount - paid,
            "paid_installments": statuses.count(InstallmentStatus.PAID),
            "overdue_installments": statuses.count(InstallmentStatus.OVERDUE),
            "next_due_installment_id": next_due.id if next_due else None,
            "next_due_date": next_due.due_date if next_due else None,
        }

    def _transition(self, loan_id: str, new_status: LoanStatus, now: datetime) -> Loan:
        with self.storage.atomic():
            loan = self.require_loan(loan_id)
            self._check_transition(loan, new_status)
            return self._set_status(loan, new_status, now)

    def _check_transition(self, loan: Loan, new_status: LoanStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[loan.status]:
            raise InvalidStateTransition(
                f"Loan {loan.id} cannot move from {loan.status.value} to {new_status.value}",
                loan_id=loan.id, current_status=loan.status.value,
                requested_status=new_status.value
            )

    def _set_status(self, loan: Loan, new_status: LoanStatus, now: datetime) -> Loan:
        require_aware(now, "now")
        old_status = loan.status
        expected_version = loan.version
        loan.status = new_status
        loan.updated_at = now

        with self.storage.atomic():
            loan.version = self.storage.save_versioned(
                self.table_name, loan.id, self._loan_to_dict(loan), expected_version
            )
            self.audit_trail.log_event(
                event_type=AuditEventType.LOAN_STATUS_CHANGED,
                entity_type="loan",
                entity_id=loan.id,
                metadata={"old_status": old_status, "new_status": new_status},
                occurred_at=now
            )

        log_action(self.logger, "info", "Loan status changed", action="loan_transition",
                   resource=f"loan:{loan.id}",
                   extra={"old_status": old_status.value, "new_status": new_status.value})
        return loan

    def _loan_to_dict(self, loan: Loan) -> Dict:
        return {
            "id": loan.id,
            "created_at": loan.created_at.isoformat(),
            "updated_at": loan.updated_at.isoformat(),
            "client_id": loan.client_id,
            "currency": loan.currency.code,
            "principal": str(loan.principal.amount),
            "base_interest_rate": str(loan.base_interest_rate),
            "penalty_interest_rate": str(loan.penalty_interest_rate),
            "frequency": loan.frequency.value,
            "total_installments": loan.total_installments,
            "start_date": loan.start_date.isoformat(),
            "total_amount": str(loan.total_amount.amount),
            "status": loan.status.value,
            "lender_wallet_id": loan.lender_wallet_id,
            "disbursement_transaction_id": loan.disbursement_transaction_id,
            "version": loan.version
        }

    def _loan_from_dict(self, data: Dict) -> Loan:
        currency = Currency[data['currency']]
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            client_id=data['client_id'],
            principal=Money(Decimal(data['principal']), currency),
            base_interest_rate=Decimal(data['base_interest_rate']),
            penalty_interest_rate=Decimal(data['penalty_interest_rate']),
            frequency=PaymentFrequency(data['frequency']),
            total_installments=data['total_installments'],
            start_date=date.fromisoformat(data['start_date']),
            total_amount=Money(Decimal(data['total_amount']), currency),
            status=LoanStatus(data['status']),
            lender_wallet_id=data.get('lender_wallet_id'),
            disbursement_transaction_id=data.get('disbursement_transaction_id'),
            version=data.get('version', 0)
        )

"""
Wallet Ledger Module

Per-owner wallets with an append-only transaction history. Every transaction
row records balance_before and balance_after; the wallet balance is a
materialized fold over those rows and can be re-verified at any time.
Balance update and row insert always land in one atomic unit.
"""

from decimal import Decimal
from datetime import date, datetime, timedelta
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
import math
import uuid

from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency, to_money, require_positive
from .exceptions import (
    CurrencyMismatch, EntityNotFound, InsufficientFunds, InvalidPagination, ValidationError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .timeutils import TimezoneLike, day_bounds, require_aware, to_utc


class TransactionType(Enum):
    """Kinds of wallet movements"""
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    LOAN_DISBURSEMENT = "LOAN_DISBURSEMENT"
    LOAN_PAYMENT = "LOAN_PAYMENT"
    TRANSFER_TO_MANAGER = "TRANSFER_TO_MANAGER"
    TRANSFER_FROM_SUBADMIN = "TRANSFER_FROM_SUBADMIN"
    PAYMENT_RESET = "PAYMENT_RESET"


CREDIT_TYPES = frozenset({
    TransactionType.DEPOSIT,
    TransactionType.LOAN_PAYMENT,
    TransactionType.TRANSFER_FROM_SUBADMIN,
})

# Debits that may never take a wallet below zero. PAYMENT_RESET is exempt:
# it must mirror the reversed credit exactly.
GUARDED_DEBIT_TYPES = frozenset({
    TransactionType.WITHDRAWAL,
    TransactionType.LOAN_DISBURSEMENT,
    TransactionType.TRANSFER_TO_MANAGER,
})


def signed_amount(transaction_type: TransactionType, amount: Money) -> Money:
    """+amount for credits, -amount for debits"""
    return amount if transaction_type in CREDIT_TYPES else -amount


@dataclass
class Wallet(StorageRecord):
    """Wallet owned by a collector, manager or subadmin"""
    owner_id: str
    currency: Currency
    balance: Money
    transaction_count: int = 0
    version: int = 0


@dataclass
class WalletTransaction(StorageRecord):
    """Immutable ledger row"""
    wallet_id: str
    sequence: int
    transaction_type: TransactionType
    amount: Money
    balance_before: Money
    balance_after: Money
    occurred_at: datetime
    description: str = ""
    related_installment_id: Optional[str] = None
    transfer_id: Optional[str] = None
    reverses_transaction_id: Optional[str] = None

    @property
    def signed_amount(self) -> Money:
        return signed_amount(self.transaction_type, self.amount)


@dataclass
class TransactionPage:
    """One page of a wallet's history, newest first"""
    items: List[WalletTransaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass
class TransferResult:
    """Both legs of a transfer"""
    transfer_id: str
    debit: WalletTransaction
    credit: WalletTransaction


DateOrInstant = Union[date, datetime, None]

_EPSILON = timedelta(microseconds=1)


class WalletLedger:
    """
    Applies signed transactions to wallets and serves their history
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        timezone: TimezoneLike = None,
        default_page_size: int = 20,
        max_page_size: int = 100
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.timezone = timezone
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.wallets_table = "wallets"
        self.transactions_table = "wallet_transactions"
        self.logger = get_logger("field_collections.wallets")

    # Wallets

    def create_wallet(self, owner_id: str, currency: Currency, now: datetime) -> Wallet:
        """
        Create a zero-balance wallet for an owner in one currency.
        Returns the existing wallet if the owner already has one.
        """
        require_aware(now, "now")
        with self.storage.atomic():
            existing = self.find_wallet(owner_id, currency)
            if existing:
                return existing

            wallet = Wallet(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                owner_id=owner_id,
                currency=currency,
                balance=Money.zero(currency)
            )
            wallet.version = self.storage.save_versioned(
                self.wallets_table, wallet.id, self._wallet_to_dict(wallet), 0
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_CREATED,
                entity_type="wallet",
                entity_id=wallet.id,
                metadata={"owner_id": owner_id, "currency": currency.code},
                occurred_at=now
            )
        return wallet

    def get_or_create_wallet(self, owner_id: str, currency: Currency, now: datetime) -> Wallet:
        return self.create_wallet(owner_id, currency, now)

    def get_wallet(self, wallet_id: str) -> Optional[Wallet]:
        data = self.storage.load(self.wallets_table, wallet_id)
        return self._wallet_from_dict(data) if data else None

    def require_wallet(self, wallet_id: str) -> Wallet:
        wallet = self.get_wallet(wallet_id)
        if not wallet:
            raise EntityNotFound("wallet", wallet_id)
        return wallet

    def find_wallet(self, owner_id: str, currency: Currency) -> Optional[Wallet]:
        found = self.storage.find(self.wallets_table,
                                  {"owner_id": owner_id, "currency": currency.code})
        return self._wallet_from_dict(found[0]) if found else None

    def get_owner_wallets(self, owner_id: str) -> List[Wallet]:
        return [self._wallet_from_dict(data)
                for data in self.storage.find(self.wallets_table, {"owner_id": owner_id})]

    def get_balance(self, wallet_id: str) -> Money:
        return self.require_wallet(wallet_id).balance

    # Transactions

    def apply_transaction(
        self,
        wallet_id: str,
        transaction_type: TransactionType,
        amount: Union[Money, Decimal, str],
        now: datetime,
        related_installment_id: Optional[str] = None,
        description: str = "",
        transfer_id: Optional[str] = None,
        reverses_transaction_id: Optional[str] = None
    ) -> WalletTransaction:
        """
        Append one transaction and move the wallet balance by its signed amount.

        Args:
            wallet_id: Wallet to apply to
            transaction_type: Determines the sign of the movement
            amount: Positive magnitude
            now: Business instant of the movement
            related_installment_id: Installment behind a payment or reset

        Returns:
            The persisted WalletTransaction

        Raises:
            InvalidAmount: If amount is not positive
            InsufficientFunds: If a guarded debit would go below zero
        """
        require_aware(now, "now")

        with self.storage.atomic():
            wallet = self.require_wallet(wallet_id)
            money = require_positive(to_money(amount, wallet.currency), wallet_id=wallet_id)

            balance_before = wallet.balance
            balance_after = balance_before + signed_amount(transaction_type, money)

            if transaction_type in GUARDED_DEBIT_TYPES and balance_after.is_negative():
                log_action(self.logger, "warning", "Debit rejected for insufficient funds",
                           action="apply_transaction", resource=f"wallet:{wallet_id}",
                           extra={"type": transaction_type.value, "amount": str(money.amount),
                                  "balance": str(balance_before.amount)})
                raise InsufficientFunds(
                    f"Wallet {wallet_id} balance {balance_before.to_string()} "
                    f"cannot cover {money.to_string()}",
                    wallet_id=wallet_id, balance=balance_before.amount, requested=money.amount
                )

            transaction = WalletTransaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                wallet_id=wallet_id,
                sequence=wallet.transaction_count + 1,
                transaction_type=transaction_type,
                amount=money,
                balance_before=balance_before,
                balance_after=balance_after,
                occurred_at=now,
                description=description,
                related_installment_id=related_installment_id,
                transfer_id=transfer_id,
                reverses_transaction_id=reverses_transaction_id
            )
            # Version 0 -> 1 insert: an existing row can never be overwritten
            self.storage.save_versioned(
                self.transactions_table, transaction.id, self._transaction_to_dict(transaction), 0
            )

            expected_version = wallet.version
            wallet.balance = balance_after
            wallet.transaction_count = transaction.sequence
            wallet.updated_at = now
            wallet.version = self.storage.save_versioned(
                self.wallets_table, wallet.id, self._wallet_to_dict(wallet), expected_version
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.WALLET_TRANSACTION_APPLIED,
                entity_type="wallet",
                entity_id=wallet_id,
                metadata={
                    "transaction_id": transaction.id,
                    "type": transaction_type.value,
                    "amount": money.amount,
                    "balance_before": balance_before.amount,
                    "balance_after": balance_after.amount,
                    "related_installment_id": related_installment_id
                },
                occurred_at=now
            )

        log_action(self.logger, "info", "Wallet transaction applied",
                   action="apply_transaction", resource=f"wallet:{wallet_id}",
                   extra={"type": transaction_type.value, "amount": str(money.amount),
                          "balance_after": str(balance_after.amount)})
        return transaction

    def deposit(self, wallet_id: str, amount: Union[Money, Decimal, str], now: datetime,
                description: str = "") -> WalletTransaction:
        return self.apply_transaction(wallet_id, TransactionType.DEPOSIT, amount, now,
                                      description=description)

    def withdraw(self, wallet_id: str, amount: Union[Money, Decimal, str], now: datetime,
                 description: str = "") -> WalletTransaction:
        """Take money out of a wallet; never overdraws"""
        return self.apply_transaction(wallet_id, TransactionType.WITHDRAWAL, amount, now,
                                      description=description)

    def transfer(
        self,
        from_wallet_id: str,
        to_wallet_id: str,
        amount: Union[Money, Decimal, str],
        now: datetime,
        description: str = ""
    ) -> TransferResult:
        """
        Move money between two wallets as one atomic unit: a
        TRANSFER_TO_MANAGER debit on the source and a TRANSFER_FROM_SUBADMIN
        credit on the destination, linked by a shared transfer_id.

        Raises:
            InsufficientFunds: If the source cannot cover the amount (no leg is kept)
            CurrencyMismatch: If the wallets hold different currencies
        """
        if from_wallet_id == to_wallet_id:
            raise ValidationError("Cannot transfer a wallet to itself", wallet_id=from_wallet_id)

        transfer_id = str(uuid.uuid4())
        with self.storage.atomic():
            source = self.require_wallet(from_wallet_id)
            destination = self.require_wallet(to_wallet_id)
            if source.currency != destination.currency:
                raise CurrencyMismatch(
                    f"Cannot transfer {source.currency.code} to a {destination.currency.code} wallet",
                    from_wallet_id=from_wallet_id, to_wallet_id=to_wallet_id
                )

            debit = self.apply_transaction(
                from_wallet_id, TransactionType.TRANSFER_TO_MANAGER, amount, now,
                description=description, transfer_id=transfer_id
            )
            credit = self.apply_transaction(
                to_wallet_id, TransactionType.TRANSFER_FROM_SUBADMIN, amount, now,
                description=description, transfer_id=transfer_id
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSFER_COMPLETED,
                entity_type="transfer",
                entity_id=transfer_id,
                metadata={
                    "from_wallet_id": from_wallet_id,
                    "to_wallet_id": to_wallet_id,
                    "amount": debit.amount.amount
                },
                occurred_at=now
            )

        return TransferResult(transfer_id=transfer_id, debit=debit, credit=credit)

    def get_transaction(self, transaction_id: str) -> Optional[WalletTransaction]:
        data = self.storage.load(self.transactions_table, transaction_id)
        return self._transaction_from_dict(data) if data else None

    def get_history(self, wallet_id: str) -> List[WalletTransaction]:
        """Full history of a wallet in application order"""
        transactions = [self._transaction_from_dict(data) for data in
                        self.storage.find(self.transactions_table, {"wallet_id": wallet_id})]
        transactions.sort(key=lambda t: t.sequence)
        return transactions

    def get_transactions(
        self,
        wallet_id: str,
        transaction_type: Optional[TransactionType] = None,
        date_from: DateOrInstant = None,
        date_to: DateOrInstant = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> TransactionPage:
        """
        Paginated, filterable history (newest first). Plain dates are whole
        operational days, both ends inclusive.
        """
        limit = limit if limit is not None else self.default_page_size
        if page < 1 or limit < 1 or limit > self.max_page_size:
            raise InvalidPagination(
                f"page must be >= 1 and limit within 1..{self.max_page_size}",
                page=page, limit=limit
            )
        self.require_wallet(wallet_id)

        start, end = self._window(date_from, date_to)
        transactions = self.get_history(wallet_id)
        transactions = [t for t in transactions
                        if (transaction_type is None or t.transaction_type == transaction_type)
                        and (start is None or to_utc(t.occurred_at) >= start)
                        and (end is None or to_utc(t.occurred_at) < end)]
        transactions.reverse()

        offset = (page - 1) * limit
        return TransactionPage(
            items=transactions[offset:offset + limit],
            total=len(transactions),
            page=page,
            limit=limit
        )

    def transactions_between(
        self,
        wallet_ids: List[str],
        start: datetime,
        end: datetime,
        types: Optional[List[TransactionType]] = None
    ) -> List[WalletTransaction]:
        """Transactions of several wallets with start <= occurred_at < end"""
        start, end = to_utc(start), to_utc(end)
        selected = []
        for wallet_id in wallet_ids:
            for transaction in self.get_history(wallet_id):
                if types and transaction.transaction_type not in types:
                    continue
                if start <= to_utc(transaction.occurred_at) < end:
                    selected.append(transaction)
        selected.sort(key=lambda t: (to_utc(t.occurred_at), t.sequence))
        return selected

    def verify_wallet(self, wallet_id: str) -> Dict[str, object]:
        """
        Replay the ledger and check that balance == last balance_after ==
        sum of signed amounts, and that each row chains onto the previous one.
        """
        wallet = self.require_wallet(wallet_id)
        history = self.get_history(wallet_id)

        running = Money.zero(wallet.currency)
        breaks = []
        for transaction in history:
            if transaction.balance_before != running:
                breaks.append(transaction.id)
            running = running + transaction.signed_amount
            if transaction.balance_after != running:
                breaks.append(transaction.id)

        last_after = history[-1].balance_after if history else Money.zero(wallet.currency)
        return {
            "valid": not breaks and wallet.balance == running == last_after,
            "balance": wallet.balance.amount,
            "replayed_balance": running.amount,
            "last_balance_after": last_after.amount,
            "transaction_count": len(history),
            "chain_breaks": breaks
        }

    def _window(self, date_from: DateOrInstant,
                date_to: DateOrInstant) -> Tuple[Optional[datetime], Optional[datetime]]:
        start = end = None
        if date_from is not None:
            if isinstance(date_from, datetime):
                start = to_utc(date_from)
            else:
                start = day_bounds(date_from, self.timezone)[0]
        if date_to is not None:
            if isinstance(date_to, datetime):
                # Instants are inclusive upper bounds; nudge to half-open
                end = to_utc(date_to) + _EPSILON
            else:
                end = day_bounds(date_to, self.timezone)[1]
        return start, end

    # Serialization

    def _wallet_to_dict(self, wallet: Wallet) -> Dict:
        return {
            "id": wallet.id,
            "created_at": wallet.created_at.isoformat(),
            "updated_at": wallet.updated_at.isoformat(),
            "owner_id": wallet.owner_id,
            "currency": wallet.currency.code,
            "balance": str(wallet.balance.amount),
            "transaction_count": wallet.transaction_count,
            "version": wallet.version
        }

    def _wallet_from_dict(self, data: Dict) -> Wallet:
        currency = Currency[data['currency']]
        return Wallet(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            currency=currency,
            balance=Money(Decimal(data['balance']), currency),
            transaction_count=data.get('transaction_count', 0),
            version=data.get('version', 0)
        )

    def _transaction_to_dict(self, transaction: WalletTransaction) -> Dict:
        return {
            "id": transaction.id,
            "created_at": transaction.created_at.isoformat(),
            "updated_at": transaction.updated_at.isoformat(),
            "wallet_id": transaction.wallet_id,
            "sequence": transaction.sequence,
            "transaction_type": transaction.transaction_type.value,
            "currency": transaction.amount.currency.code,
            "amount": str(transaction.amount.amount),
            "balance_before": str(transaction.balance_before.amount),
            "balance_after": str(transaction.balance_after.amount),
            "occurred_at": transaction.occurred_at.isoformat(),
            "description": transaction.description,
            "related_installment_id": transaction.related_installment_id,
            "transfer_id": transaction.transfer_id,
            "reverses_transaction_id": transaction.reverses_transaction_id
        }

    def _transaction_from_dict(self, data: Dict) -> WalletTransaction:
        currency = Currency[data['currency']]
        return WalletTransaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            wallet_id=data['wallet_id'],
            sequence=data['sequence'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Money(Decimal(data['amount']), currency),
            balance_before=Money(Decimal(data['balance_before']), currency),
            balance_after=Money(Decimal(data['balance_after']), currency),
            occurred_at=datetime.fromisoformat(data['occurred_at']),
            description=data.get('description', ""),
            related_installment_id=data.get('related_installment_id'),
            transfer_id=data.get('transfer_id'),
            reverses_transaction_id=data.get('reverses_transaction_id')
        )

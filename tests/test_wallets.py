"""
Test suite for the wallet ledger

Tests signed transaction application, the balance fold invariant, guarded
debits, atomic transfers and paginated history.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from field_collections.currency import Currency
from field_collections.exceptions import (
    CurrencyMismatch, InsufficientFunds, InvalidAmount, InvalidPagination, ValidationError
)
from field_collections.wallets import TransactionType, signed_amount

from conftest import NOW, ars


@pytest.fixture
def ledger(system):
    return system.wallet_ledger


@pytest.fixture
def wallet(ledger):
    return ledger.create_wallet("collector-1", Currency.ARS, NOW)


class TestSignedAmounts:
    """Test sign conventions per transaction type"""

    @pytest.mark.parametrize("transaction_type,sign", [
        (TransactionType.DEPOSIT, 1),
        (TransactionType.LOAN_PAYMENT, 1),
        (TransactionType.TRANSFER_FROM_SUBADMIN, 1),
        (TransactionType.WITHDRAWAL, -1),
        (TransactionType.LOAN_DISBURSEMENT, -1),
        (TransactionType.TRANSFER_TO_MANAGER, -1),
        (TransactionType.PAYMENT_RESET, -1),
    ])
    def test_sign(self, transaction_type, sign):
        """Test that credits are positive and debits negative"""
        assert signed_amount(transaction_type, ars("100")) == ars(100 * sign)


class TestWallets:
    """Test wallet creation and lookup"""

    def test_create_wallet_is_idempotent(self, ledger, wallet):
        """Test that an owner gets one wallet per currency"""
        again = ledger.get_or_create_wallet("collector-1", Currency.ARS, NOW)

        assert again.id == wallet.id
        assert wallet.balance == ars("0")
        assert ledger.find_wallet("collector-1", Currency.ARS).id == wallet.id
        assert ledger.find_wallet("collector-1", Currency.USD) is None


class TestApplyTransaction:
    """Test applying transactions"""

    def test_balance_before_and_after(self, ledger, wallet):
        """Test that each row records the balance transition"""
        first = ledger.deposit(wallet.id, "1000", NOW)
        second = ledger.withdraw(wallet.id, "300", NOW + timedelta(minutes=1))

        assert first.balance_before == ars("0")
        assert first.balance_after == ars("1000")
        assert second.balance_before == ars("1000")
        assert second.balance_after == ars("700")
        assert second.sequence == 2
        assert ledger.get_balance(wallet.id) == ars("700")

    def test_wallet_invariant_holds(self, ledger, wallet):
        """Test balance == last balance_after == sum of signed amounts"""
        ledger.deposit(wallet.id, "1000", NOW)
        ledger.apply_transaction(wallet.id, TransactionType.LOAN_PAYMENT, "2500.50", NOW)
        ledger.withdraw(wallet.id, "1200", NOW)
        ledger.apply_transaction(wallet.id, TransactionType.PAYMENT_RESET, "500.50", NOW)

        history = ledger.get_history(wallet.id)
        signed_total = sum((t.signed_amount.amount for t in history), Decimal("0"))

        assert ledger.get_balance(wallet.id).amount == signed_total == Decimal("1800.00")
        assert history[-1].balance_after == ledger.get_balance(wallet.id)
        assert ledger.verify_wallet(wallet.id)["valid"] is True

    def test_withdrawal_cannot_overdraw(self, ledger, wallet):
        """Test that guarded debits never leave a negative balance"""
        ledger.deposit(wallet.id, "100", NOW)

        with pytest.raises(InsufficientFunds):
            ledger.withdraw(wallet.id, "100.01", NOW)

        assert ledger.get_balance(wallet.id) == ars("100")
        assert len(ledger.get_history(wallet.id)) == 1

    def test_disbursement_cannot_overdraw(self, ledger, wallet):
        """Test that disbursements are guarded too"""
        with pytest.raises(InsufficientFunds):
            ledger.apply_transaction(wallet.id, TransactionType.LOAN_DISBURSEMENT, "1", NOW)

    def test_payment_reset_may_go_negative(self, ledger, wallet):
        """Test that a reset mirror is applied even past zero"""
        ledger.apply_transaction(wallet.id, TransactionType.LOAN_PAYMENT, "1000", NOW)
        ledger.withdraw(wallet.id, "1000", NOW)

        reset = ledger.apply_transaction(wallet.id, TransactionType.PAYMENT_RESET, "1000", NOW)

        assert reset.balance_after == ars("-1000")
        assert ledger.verify_wallet(wallet.id)["valid"] is True

    def test_non_positive_amount_rejected(self, ledger, wallet):
        """Test that amounts must be positive"""
        with pytest.raises(InvalidAmount):
            ledger.deposit(wallet.id, "0", NOW)

        with pytest.raises(InvalidAmount):
            ledger.deposit(wallet.id, "-5", NOW)

    def test_verify_detects_tampered_balance(self, ledger, wallet):
        """Test that a balance out of step with its rows is reported"""
        ledger.deposit(wallet.id, "100", NOW)
        stored = ledger.storage.load(ledger.wallets_table, wallet.id)
        stored["balance"] = "999.00"
        ledger.storage.save(ledger.wallets_table, wallet.id, stored)

        result = ledger.verify_wallet(wallet.id)

        assert result["valid"] is False
        assert result["replayed_balance"] == Decimal("100.00")


class TestTransfers:
    """Test two-leg transfers"""

    def test_transfer_conserves_money(self, ledger, wallet):
        """Test that both legs sum to zero and share a transfer id"""
        manager = ledger.create_wallet("manager-1", Currency.ARS, NOW)
        ledger.deposit(wallet.id, "5000", NOW)

        result = ledger.transfer(wallet.id, manager.id, "3000", NOW)

        assert result.debit.transaction_type == TransactionType.TRANSFER_TO_MANAGER
        assert result.credit.transaction_type == TransactionType.TRANSFER_FROM_SUBADMIN
        assert result.debit.transfer_id == result.credit.transfer_id == result.transfer_id
        assert result.debit.signed_amount + result.credit.signed_amount == ars("0")
        assert ledger.get_balance(wallet.id) == ars("2000")
        assert ledger.get_balance(manager.id) == ars("3000")

    def test_insufficient_transfer_leaves_no_leg(self, ledger, wallet):
        """Test that a failed transfer is invisible on both wallets"""
        manager = ledger.create_wallet("manager-1", Currency.ARS, NOW)
        ledger.deposit(wallet.id, "100", NOW)

        with pytest.raises(InsufficientFunds):
            ledger.transfer(wallet.id, manager.id, "500", NOW)

        assert ledger.get_balance(wallet.id) == ars("100")
        assert ledger.get_balance(manager.id) == ars("0")
        assert ledger.get_history(manager.id) == []
        assert len(ledger.get_history(wallet.id)) == 1

    def test_transfer_between_currencies_rejected(self, ledger, wallet):
        """Test that transfers never convert currencies"""
        usd = ledger.create_wallet("manager-1", Currency.USD, NOW)
        ledger.deposit(wallet.id, "100", NOW)

        with pytest.raises(CurrencyMismatch):
            ledger.transfer(wallet.id, usd.id, "50", NOW)

    def test_transfer_to_self_rejected(self, ledger, wallet):
        with pytest.raises(ValidationError):
            ledger.transfer(wallet.id, wallet.id, "50", NOW)


class TestTransactionHistory:
    """Test paginated, filtered history"""

    def test_pagination_newest_first(self, ledger, wallet):
        """Test page slicing and ordering"""
        for i in range(25):
            ledger.deposit(wallet.id, str(i + 1), NOW + timedelta(minutes=i))

        page1 = ledger.get_transactions(wallet.id, page=1, limit=10)
        page3 = ledger.get_transactions(wallet.id, page=3, limit=10)

        assert page1.total == 25
        assert page1.pages == 3
        assert [t.amount for t in page1.items[:2]] == [ars("25"), ars("24")]
        assert len(page3.items) == 5
        assert page3.items[-1].amount == ars("1")

    def test_filter_by_type(self, ledger, wallet):
        """Test filtering on transaction type"""
        ledger.deposit(wallet.id, "1000", NOW)
        ledger.withdraw(wallet.id, "100", NOW)
        ledger.withdraw(wallet.id, "200", NOW)

        result = ledger.get_transactions(wallet.id, transaction_type=TransactionType.WITHDRAWAL)

        assert result.total == 2
        assert all(t.transaction_type == TransactionType.WITHDRAWAL for t in result.items)

    def test_filter_by_operational_dates(self, ledger, wallet):
        """Test that plain dates select whole operational days"""
        ledger.deposit(wallet.id, "1", NOW - timedelta(days=1))
        ledger.deposit(wallet.id, "2", NOW)
        ledger.deposit(wallet.id, "3", NOW.replace(hour=23, minute=30))
        ledger.deposit(wallet.id, "4", NOW + timedelta(days=1))

        result = ledger.get_transactions(wallet.id, date_from=date(2024, 1, 15),
                                         date_to=date(2024, 1, 15))

        assert sorted(t.amount for t in result.items) == [ars("2"), ars("3")]

    def test_invalid_pagination(self, ledger, wallet):
        """Test rejection of out-of-range page and limit"""
        with pytest.raises(InvalidPagination):
            ledger.get_transactions(wallet.id, page=0)

        with pytest.raises(InvalidPagination):
            ledger.get_transactions(wallet.id, limit=0)

        with pytest.raises(InvalidPagination):
            ledger.get_transactions(wallet.id, limit=101)

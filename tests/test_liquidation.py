"""
Test suite for collector liquidation

Tests commission arithmetic, net collections summaries, daily summaries
and weekly period reports built from ledger history.
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from field_collections.currency import Currency, Money
from field_collections.exceptions import InvalidPercentage, ValidationError
from field_collections.liquidation import calculate_commission
from field_collections.routes import ExpenseCategory, RouteStatus, route_id_for

from conftest import NOW, TODAY, ars


COLLECTOR = "collector-1"


@pytest.fixture
def liquidation(system):
    return system.liquidation


class TestCommission:
    """Test commission arithmetic"""

    def test_commission_on_decimal(self):
        assert calculate_commission(Decimal("150000"), Decimal("10")) == Decimal("15000.00")

    def test_commission_on_money(self):
        assert calculate_commission(ars("150000"), "12.5") == ars("18750")

    def test_commission_bounds(self):
        """Test that 0 and 100 are accepted and anything outside is rejected"""
        assert calculate_commission(Decimal("500"), 0) == Decimal("0.00")
        assert calculate_commission(Decimal("500"), 100) == Decimal("500.00")

        for percentage in ("-1", "101", "abc"):
            with pytest.raises(InvalidPercentage):
                calculate_commission(Decimal("500"), percentage)


class TestCollectionsSummary:
    """Test net collections over a date range"""

    def test_summary_is_net_of_resets(self, system, liquidation, installments):
        """Test that a reset payment counts neither in amount nor in collections"""
        payments = system.installment_manager
        payments.record_payment(installments[0].id, "6000", NOW, COLLECTOR)
        payments.record_payment(installments[0].id, "4000", NOW, COLLECTOR)
        payments.reset_payment(installments[0].id, NOW + timedelta(minutes=10))

        summary = liquidation.get_collections_summary(COLLECTOR, TODAY, TODAY)

        assert summary.gross_amount == ars("10000")
        assert summary.reset_amount == ars("4000")
        assert summary.total_amount == ars("6000")
        assert summary.total_collections == 1

    def test_summary_window_is_inclusive(self, system, liquidation, installments):
        """Test that both edge days count and days outside do not"""
        payments = system.installment_manager
        payments.record_payment(installments[0].id, "1000", NOW, COLLECTOR)
        payments.record_payment(installments[0].id, "2000", NOW + timedelta(days=2), COLLECTOR)
        payments.record_payment(installments[0].id, "3000", NOW + timedelta(days=3), COLLECTOR)

        summary = liquidation.get_collections_summary(COLLECTOR, TODAY, TODAY + timedelta(days=2))

        assert summary.total_amount == ars("3000")
        assert summary.total_collections == 2

    def test_summary_without_wallet(self, liquidation):
        summary = liquidation.get_collections_summary("nobody", TODAY, TODAY)

        assert summary.total_amount == ars("0")
        assert summary.total_collections == 0

    def test_start_after_end(self, liquidation):
        with pytest.raises(ValidationError):
            liquidation.get_collections_summary(COLLECTOR, TODAY, TODAY - timedelta(days=1))


class TestDailySummary:
    """Test the collector's end-of-day figures"""

    def test_daily_summary(self, system, liquidation, installments):
        """Test collected, expenses, withdrawals and net for one day"""
        system.installment_manager.record_payment(installments[0].id, "10000", NOW, COLLECTOR)
        route_id = route_id_for(COLLECTOR, TODAY)
        system.route_manager.add_expense(route_id, ExpenseCategory.COMBUSTIBLE, "1500", NOW)
        wallet = system.wallet_ledger.find_wallet(COLLECTOR, Currency.ARS)
        system.wallet_ledger.withdraw(wallet.id, "2000", NOW)
        system.route_manager.close_route(route_id, NOW + timedelta(hours=8))

        daily = liquidation.daily_summary(COLLECTOR, TODAY)

        assert daily.collected == ars("10000")
        assert daily.withdrawn == ars("2000")
        assert daily.total_expenses == ars("1500")
        assert daily.net == ars("6500")
        assert daily.route_status == RouteStatus.CLOSED

    def test_expenses_stay_in_route_currency(self, system, liquidation, installments):
        """Test that a USD summary ignores the ARS expenses of the day's route"""
        system.installment_manager.record_payment(installments[0].id, "10000", NOW, COLLECTOR)
        system.route_manager.add_expense(route_id_for(COLLECTOR, TODAY),
                                         ExpenseCategory.COMBUSTIBLE, "1500", NOW)

        daily = liquidation.daily_summary(COLLECTOR, TODAY, Currency.USD)
        report = liquidation.period_report(COLLECTOR, NOW, currency=Currency.USD)

        assert daily.total_expenses == Money.zero(Currency.USD)
        assert daily.net == Money.zero(Currency.USD)
        assert report.total_expenses == Money.zero(Currency.USD)

    def test_daily_summary_without_route(self, liquidation):
        daily = liquidation.daily_summary(COLLECTOR, TODAY)

        assert daily.route_id is None
        assert daily.net == ars("0")


class TestPeriodReport:
    """Test weekly collector reports"""

    def test_default_period_is_current_week(self, system, liquidation, installments):
        """Test Monday..Sunday bounds and the configured commission"""
        system.installment_manager.record_payment(installments[0].id, "10000", NOW, COLLECTOR)
        system.route_manager.add_expense(route_id_for(COLLECTOR, TODAY),
                                         ExpenseCategory.CONSUMO, "500", NOW)

        report = liquidation.period_report(COLLECTOR, NOW + timedelta(days=2))

        assert report.summary.start_date == date(2024, 1, 15)
        assert report.summary.end_date == date(2024, 1, 21)
        assert report.commission_percentage == Decimal("10")
        assert report.commission == ars("1000")
        assert report.total_expenses == ars("500")
        assert report.net_before_commission == ars("9500")
        assert report.net_after_commission == ars("8500")
        assert report.routes_open == 1

    def test_explicit_commission_and_daily_rows(self, system, liquidation, installments):
        system.installment_manager.record_payment(installments[0].id, "10000", NOW, COLLECTOR)

        report = liquidation.period_report(COLLECTOR, NOW, start_date=TODAY,
                                           end_date=TODAY + timedelta(days=2),
                                           commission_percentage="15", include_daily=True)

        assert report.commission == ars("1500")
        assert [d.day for d in report.daily] == [TODAY + timedelta(days=n) for n in range(3)]
        assert report.daily[0].collected == ars("10000")

    def test_invalid_commission(self, liquidation):
        with pytest.raises(InvalidPercentage):
            liquidation.period_report(COLLECTOR, NOW, commission_percentage="150")

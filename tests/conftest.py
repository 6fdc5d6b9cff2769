"""
Shared fixtures for the field collections test suite
"""

import pytest
from datetime import date, datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

from field_collections.config import CollectionsConfig
from field_collections.currency import Currency, Money
from field_collections.schedule import PaymentFrequency
from field_collections.storage import InMemoryStorage
from field_collections.system import CollectionsSystem


OPERATIONAL_TZ = ZoneInfo("America/Argentina/Buenos_Aires")

# Monday 2024-01-15, 10:00 in Buenos Aires (13:00 UTC)
NOW = datetime(2024, 1, 15, 10, 0, tzinfo=OPERATIONAL_TZ)
TODAY = date(2024, 1, 15)


def ars(amount) -> Money:
    return Money(Decimal(str(amount)), Currency.ARS)


@pytest.fixture
def settings():
    return CollectionsConfig(
        database_url="memory://",
        operational_timezone="America/Argentina/Buenos_Aires",
        default_currency="ARS",
        reset_window_hours=24,
        default_page_size=20,
        max_page_size=100,
        default_commission_percentage="10",
        enable_audit_logging=True
    )


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def system(storage, settings):
    return CollectionsSystem(storage=storage, settings=settings)


@pytest.fixture
def make_loan(system):
    """Factory for active loans; defaults to 50,000 at 20% in 6 monthly installments"""
    def _make_loan(principal="50000", rate="0.20", installments=6,
                   frequency=PaymentFrequency.MONTHLY, start_date=TODAY,
                   client_id="client-1", activate=True, now=NOW):
        return system.loan_manager.create_loan(
            client_id=client_id,
            principal=principal,
            base_interest_rate=rate,
            total_installments=installments,
            frequency=frequency,
            start_date=start_date,
            now=now,
            activate=activate
        )
    return _make_loan


@pytest.fixture
def loan(make_loan):
    return make_loan()


@pytest.fixture
def installments(system, loan):
    return system.loan_manager.get_installments(loan.id)

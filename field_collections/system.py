"""
Collections System

Wires every component onto one storage backend and one audit trail.
"""

from decimal import Decimal
from typing import Optional

from .audit import AuditTrail
from .config import CollectionsConfig, get_config
from .currency import Currency
from .installments import InstallmentManager
from .liquidation import LiquidationCalculator
from .loans import LoanManager
from .logging_config import get_logger, log_action
from .permissions import AccessPolicy, AllowAllPolicy
from .routes import RouteManager
from .storage import StorageInterface, create_storage
from .timeutils import operational_zone
from .wallets import WalletLedger


class CollectionsSystem:
    """Field collections core with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        settings: Optional[CollectionsConfig] = None,
        access_policy: Optional[AccessPolicy] = None
    ):
        self.settings = settings or get_config()
        self.storage = storage or create_storage(self.settings.database_url)
        self.timezone = operational_zone(self.settings.operational_timezone)
        self.currency = Currency.from_code(self.settings.default_currency)
        self.access_policy = access_policy or AllowAllPolicy()

        self.audit_trail = AuditTrail(self.storage, enabled=self.settings.enable_audit_logging)
        self.wallet_ledger = WalletLedger(
            self.storage, self.audit_trail, self.timezone,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size
        )
        self.route_manager = RouteManager(
            self.storage, self.audit_trail, self.timezone, self.currency
        )
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail, self.wallet_ledger, self.timezone, self.currency
        )
        self.installment_manager = InstallmentManager(
            self.storage, self.audit_trail, self.loan_manager, self.wallet_ledger,
            self.route_manager, self.timezone,
            reset_window_hours=self.settings.reset_window_hours
        )
        self.liquidation = LiquidationCalculator(
            self.wallet_ledger, self.route_manager, self.timezone, self.currency,
            Decimal(self.settings.default_commission_percentage)
        )

        log_action(get_logger("field_collections.system"), "info",
                   "Collections system initialized", action="startup",
                   extra={"database_url": self.settings.database_url,
                          "timezone": self.settings.operational_timezone})

    def close(self) -> None:
        self.storage.close()

"""
Field Collections Core

Financial engine for a field debt-collection back office: repayment
schedules, installment payment state, collector wallet ledgers, daily
collection routes and commission liquidation. All money uses Decimal.
"""

__version__ = "1.0.0"

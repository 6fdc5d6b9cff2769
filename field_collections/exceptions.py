"""
Error Hierarchy

Every failure raised by the collections core is a typed, recoverable
exception carrying a ``context`` dict that names the entities involved.
"""

from typing import Any, Dict, Optional


class CollectionsError(Exception):
    """Base exception for all collections-core errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "detail": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


# Validation errors: rejected at the boundary, no state change

class ValidationError(CollectionsError, ValueError):
    """Raised when input is malformed or out of range."""


class InvalidLoanTerms(ValidationError):
    """Raised when principal or installment count is not positive."""


class InvalidPercentage(ValidationError):
    """Raised when a commission percentage is outside 0..100."""


class InvalidAmount(ValidationError):
    """Raised when a monetary amount is zero, negative or malformed."""


class InvalidTimestamp(ValidationError):
    """Raised when an instant is timezone-naive or unparseable."""


class InvalidRouteOrder(ValidationError):
    """Raised when a reorder request is not a permutation of the route items."""


class InvalidPagination(ValidationError):
    """Raised when page or limit are out of range."""


class EntityNotFound(CollectionsError, LookupError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found",
                         entity_type=entity_type, entity_id=entity_id)
        self.entity_type = entity_type
        self.entity_id = entity_id


# Business-rule violations: the single operation is rejected

class BusinessRuleViolation(CollectionsError):
    """Raised when an operation would break a business rule."""


class OutOfOrderPayment(BusinessRuleViolation):
    """Raised when installments would be paid or reset out of sequence."""


class OverpaymentError(BusinessRuleViolation):
    """Raised when a payment exceeds the remaining amount due."""


class NothingToReset(BusinessRuleViolation):
    """Raised when an installment has no payment left to reverse."""


class ResetWindowExpired(BusinessRuleViolation):
    """Raised when the latest payment is older than the reset window."""


class RouteClosed(BusinessRuleViolation):
    """Raised when a mutation targets a closed collection route."""


class InsufficientFunds(BusinessRuleViolation):
    """Raised when a debit would leave a wallet with a negative balance."""


class LoanNotPayable(BusinessRuleViolation):
    """Raised when a payment targets a loan that is not active."""


class InvalidStateTransition(BusinessRuleViolation):
    """Raised when a lifecycle transition is not allowed."""


class CurrencyMismatch(BusinessRuleViolation):
    """Raised when amounts in different currencies are combined."""


# Concurrency conflicts: caller must re-read and retry

class StaleState(CollectionsError):
    """Raised when a write is based on an outdated version of an entity."""

    def __init__(self, message: str, entity_type: Optional[str] = None,
                 entity_id: Optional[str] = None, expected_version: Optional[int] = None,
                 actual_version: Optional[int] = None, **context: Any):
        super().__init__(message, entity_type=entity_type, entity_id=entity_id,
                         expected_version=expected_version,
                         actual_version=actual_version, **context)
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InstallmentAlreadyPaid(StaleState):
    """Raised when a payment targets an installment that is already fully paid."""


class PermissionDenied(CollectionsError):
    """Raised when the acting identity may not perform an operation."""

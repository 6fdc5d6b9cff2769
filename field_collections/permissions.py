"""
Access Control Seam

The authorization layer supplies the acting identity; this module only
answers "may this actor perform this action on resources owned by X".
Checks are applied at the HTTP boundary, never inside the ledger or the
installment state machine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Set

from .exceptions import PermissionDenied


class Role(Enum):
    """Back-office hierarchy, highest first"""
    ADMIN = "ADMIN"
    SUBADMIN = "SUBADMIN"
    MANAGER = "MANAGER"
    COLLECTOR = "COLLECTOR"


class Action(Enum):
    """Operations exposed to the presentation layer"""
    # Loan actions
    CREATE_LOAN = "create_loan"
    MANAGE_LOAN = "manage_loan"
    VIEW_LOAN = "view_loan"

    # Installment actions
    RECORD_PAYMENT = "record_payment"
    RESET_PAYMENT = "reset_payment"

    # Wallet actions
    VIEW_WALLET = "view_wallet"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    TRANSFER = "transfer"

    # Route actions
    VIEW_ROUTE = "view_route"
    MANAGE_ROUTE = "manage_route"
    CLOSE_ROUTE = "close_route"

    # Reporting
    VIEW_REPORTS = "view_reports"
    VIEW_AUDIT_LOG = "view_audit_log"


# Actions a collector may perform, and only on resources it owns
COLLECTOR_ACTIONS: Set[Action] = {
    Action.VIEW_LOAN,
    Action.RECORD_PAYMENT,
    Action.RESET_PAYMENT,
    Action.VIEW_WALLET,
    Action.WITHDRAW,
    Action.VIEW_ROUTE,
    Action.MANAGE_ROUTE,
    Action.CLOSE_ROUTE,
    Action.VIEW_REPORTS,
}

ROLE_ACTIONS: Dict[Role, Set[Action]] = {
    Role.ADMIN: set(Action),
    Role.SUBADMIN: set(Action),
    Role.MANAGER: set(Action) - {Action.TRANSFER, Action.VIEW_AUDIT_LOG},
    Role.COLLECTOR: COLLECTOR_ACTIONS,
}


@dataclass(frozen=True)
class Actor:
    """Identity and role of whoever is calling"""
    id: str
    role: Role

    @property
    def is_collector(self) -> bool:
        return self.role == Role.COLLECTOR


class AccessPolicy:
    """Base policy: decides whether an actor may perform an action"""

    def is_allowed(self, actor: Actor, action: Action, owner_id: Optional[str] = None) -> bool:
        raise NotImplementedError

    def check(self, actor: Actor, action: Action, owner_id: Optional[str] = None) -> None:
        """
        Raises:
            PermissionDenied: If the actor may not perform the action
        """
        if not self.is_allowed(actor, action, owner_id):
            raise PermissionDenied(
                f"{actor.role.value} {actor.id} may not {action.value}",
                actor_id=actor.id, role=actor.role.value, action=action.value,
                owner_id=owner_id
            )


class AllowAllPolicy(AccessPolicy):
    """Trusts the caller completely; the default when no policy is configured"""

    def is_allowed(self, actor: Actor, action: Action, owner_id: Optional[str] = None) -> bool:
        return True


class HierarchyPolicy(AccessPolicy):
    """
    Role tiers: collectors act only on what they own, managers and above
    are unrestricted within their action set, and only ADMIN/SUBADMIN may
    transfer between wallets.
    """

    def is_allowed(self, actor: Actor, action: Action, owner_id: Optional[str] = None) -> bool:
        if action not in ROLE_ACTIONS[actor.role]:
            return False
        if actor.is_collector and owner_id is not None:
            return owner_id == actor.id
        return True

"""
Request dependencies: the wired system, the acting identity and clocks
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Type, TypeVar

from fastapi import Depends, Header

from ..exceptions import ValidationError
from ..permissions import Action, Actor, Role
from ..system import CollectionsSystem
from ..timeutils import parse_instant


E = TypeVar("E", bound=Enum)

_system: Optional[CollectionsSystem] = None


def get_collections_system() -> CollectionsSystem:
    """Process-wide system, created on first use"""
    global _system
    if _system is None:
        _system = CollectionsSystem()
    return _system


def set_collections_system(system: Optional[CollectionsSystem]) -> None:
    global _system
    _system = system


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None)
) -> Actor:
    """Identity supplied by the authorization layer in front of this service"""
    role = parse_enum(Role, x_actor_role or Role.COLLECTOR.value, "X-Actor-Role")
    return Actor(id=x_actor_id or "anonymous", role=role)


def authorize(
    system: CollectionsSystem,
    actor: Actor,
    action: Action,
    owner_id: Optional[str] = None
) -> None:
    system.access_policy.check(actor, action, owner_id)


def resolve_now(occurred_at: Optional[str]) -> datetime:
    """Business instant of a request: the supplied ISO-8601 value or the current time"""
    if occurred_at:
        return parse_instant(occurred_at)
    return datetime.now(timezone.utc)


def parse_decimal(value: str, field: str) -> Decimal:
    try:
        parsed = Decimal(str(value))
    except ArithmeticError:
        raise ValidationError(f"Invalid {field} '{value}'", field=field, value=value)
    if not parsed.is_finite():
        raise ValidationError(f"Invalid {field} '{value}'", field=field, value=value)
    return parsed


def parse_enum(enum_type: Type[E], value: str, field: str) -> E:
    try:
        return enum_type(value.upper())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(f"Invalid {field} '{value}'; expected one of {allowed}",
                              field=field, value=value)


SystemDep = Depends(get_collections_system)
ActorDep = Depends(get_actor)

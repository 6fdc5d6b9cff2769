"""
Audit endpoints
"""

from fastapi import APIRouter

from .deps import ActorDep, SystemDep, authorize
from ..permissions import Action, Actor
from ..system import CollectionsSystem


router = APIRouter()


@router.get("/verify")
async def verify_audit_chain(
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Recompute every hash in the audit chain"""
    authorize(system, actor, Action.VIEW_AUDIT_LOG)
    return system.audit_trail.verify_integrity()


@router.get("/{entity_type}/{entity_id}")
async def get_entity_events(
    entity_type: str,
    entity_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_AUDIT_LOG)
    events = system.audit_trail.get_events_for_entity(entity_type, entity_id)
    return {"events": [event.to_dict() for event in events]}

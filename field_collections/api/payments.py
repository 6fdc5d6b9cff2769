"""
Installment payment endpoints
"""

from fastapi import APIRouter

from .deps import ActorDep, SystemDep, authorize, resolve_now
from .schemas import (
    RecordPaymentRequest, ResetPaymentRequest, installment_response, payment_history_response
)
from ..permissions import Action, Actor
from ..system import CollectionsSystem
from ..timeutils import operational_date


router = APIRouter()


@router.get("/{installment_id}")
async def get_installment(
    installment_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_LOAN)
    installment = system.installment_manager.require_installment(installment_id)
    today = operational_date(resolve_now(None), system.timezone)
    return installment_response(installment, today)


@router.post("/{installment_id}/payments")
async def record_payment(
    installment_id: str,
    request: RecordPaymentRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Record a payment collected in the field"""
    collector_id = request.collector_id or actor.id
    authorize(system, actor, Action.RECORD_PAYMENT, owner_id=collector_id)

    now = resolve_now(request.occurred_at)
    installment = system.installment_manager.record_payment(
        installment_id=installment_id,
        amount=request.amount,
        now=now,
        collector_id=collector_id,
        note=request.note,
        expected_version=request.expected_version
    )
    return installment_response(installment, operational_date(now, system.timezone))


@router.post("/{installment_id}/reset")
async def reset_payment(
    installment_id: str,
    request: ResetPaymentRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Undo the latest payment on an installment"""
    installment = system.installment_manager.require_installment(installment_id)
    payment = installment.latest_active_payment()
    authorize(system, actor, Action.RESET_PAYMENT,
              owner_id=payment.collector_id if payment else None)

    now = resolve_now(request.occurred_at)
    installment = system.installment_manager.reset_payment(
        installment_id, now, expected_version=request.expected_version
    )
    return installment_response(installment, operational_date(now, system.timezone))


@router.get("/{installment_id}/payments")
async def get_payment_history(
    installment_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_LOAN)
    history = system.installment_manager.get_payment_history(installment_id)
    return {"payments": [payment_history_response(entry) for entry in history]}

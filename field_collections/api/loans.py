"""
Loan endpoints
"""

from fastapi import APIRouter, status

from .deps import ActorDep, SystemDep, authorize, parse_decimal, parse_enum, resolve_now
from .schemas import (
    CreateLoanRequest, LoanTransitionRequest, RoundingRequest,
    installment_response, loan_response, money_dict
)
from ..currency import Currency
from ..permissions import Action, Actor
from ..schedule import PaymentFrequency, RoundingDirection, suggest_rounded_rate
from ..system import CollectionsSystem
from ..timeutils import operational_date


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Create a loan and its installment schedule"""
    authorize(system, actor, Action.CREATE_LOAN)
    loan = system.loan_manager.create_loan(
        client_id=request.client_id,
        principal=request.principal,
        base_interest_rate=request.base_interest_rate,
        total_installments=request.total_installments,
        frequency=parse_enum(PaymentFrequency, request.frequency, "frequency"),
        start_date=request.start_date,
        now=resolve_now(request.occurred_at),
        penalty_interest_rate=request.penalty_interest_rate,
        currency=Currency.from_code(request.currency) if request.currency else None,
        lender_wallet_id=request.lender_wallet_id,
        activate=request.activate
    )
    return loan_response(loan)


@router.post("/rounding")
async def suggest_rounding(request: RoundingRequest):
    """Interest rate that turns the installment into a round amount"""
    result = suggest_rounded_rate(
        parse_decimal(request.principal, "principal"),
        parse_decimal(request.base_interest_rate, "base_interest_rate"),
        request.total_installments,
        parse_enum(RoundingDirection, request.direction, "direction")
    )
    if result is None:
        return {"suggestion": None}
    return {
        "suggestion": {
            "interest_rate": str(result.interest_rate),
            "installment_amount": str(result.installment_amount),
            "total_amount": str(result.total_amount)
        }
    }


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Get loan details with paid and outstanding figures"""
    authorize(system, actor, Action.VIEW_LOAN)
    loan = system.loan_manager.require_loan(loan_id)
    summary = system.loan_manager.get_loan_summary(loan_id, resolve_now(None))

    response = loan_response(loan)
    response.update({
        "paid_amount": money_dict(summary["paid_amount"]),
        "outstanding_amount": money_dict(summary["outstanding_amount"]),
        "paid_installments": summary["paid_installments"],
        "overdue_installments": summary["overdue_installments"]
    })
    return response


@router.get("/{loan_id}/installments")
async def get_installments(
    loan_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Installments of a loan with their current status"""
    authorize(system, actor, Action.VIEW_LOAN)
    today = operational_date(resolve_now(None), system.timezone)
    installments = system.loan_manager.get_installments(loan_id)
    return {"installments": [installment_response(i, today) for i in installments]}


@router.post("/{loan_id}/approve")
async def approve_loan(
    loan_id: str,
    request: LoanTransitionRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.MANAGE_LOAN)
    loan = system.loan_manager.approve_loan(loan_id, resolve_now(request.occurred_at))
    return loan_response(loan)


@router.post("/{loan_id}/reject")
async def reject_loan(
    loan_id: str,
    request: LoanTransitionRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.MANAGE_LOAN)
    loan = system.loan_manager.reject_loan(loan_id, resolve_now(request.occurred_at))
    return loan_response(loan)


@router.post("/{loan_id}/activate")
async def activate_loan(
    loan_id: str,
    request: LoanTransitionRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Activate a loan, disbursing from the lender wallet when one is given"""
    authorize(system, actor, Action.MANAGE_LOAN)
    loan = system.loan_manager.activate_loan(
        loan_id, resolve_now(request.occurred_at), request.lender_wallet_id
    )
    return loan_response(loan)


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    request: LoanTransitionRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.MANAGE_LOAN)
    loan = system.loan_manager.mark_defaulted(loan_id, resolve_now(request.occurred_at))
    return loan_response(loan)

"""
Liquidation and report endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter

from .deps import ActorDep, SystemDep, authorize, parse_decimal, resolve_now
from .schemas import (
    CommissionRequest, daily_summary_response, period_report_response, summary_response
)
from ..liquidation import calculate_commission
from ..permissions import Action, Actor
from ..system import CollectionsSystem
from ..timeutils import operational_date


router = APIRouter()


@router.post("/commission")
async def commission(request: CommissionRequest):
    """commission = total_amount * percentage / 100"""
    amount = calculate_commission(parse_decimal(request.total_amount, "total_amount"),
                                  parse_decimal(request.percentage, "percentage"))
    return {"commission": str(amount)}


@router.get("/collectors/{collector_id}/summary")
async def collections_summary(
    collector_id: str,
    start_date: date,
    end_date: date,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Net collections over an inclusive date range"""
    authorize(system, actor, Action.VIEW_REPORTS, owner_id=collector_id)
    summary = system.liquidation.get_collections_summary(collector_id, start_date, end_date)
    return summary_response(summary)


@router.get("/collectors/{collector_id}/daily")
async def daily_summary(
    collector_id: str,
    day: Optional[date] = None,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_REPORTS, owner_id=collector_id)
    day = day or operational_date(resolve_now(None), system.timezone)
    return daily_summary_response(system.liquidation.daily_summary(collector_id, day))


@router.get("/collectors/{collector_id}/report")
async def period_report(
    collector_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    commission_percentage: Optional[str] = None,
    include_daily: bool = False,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Collector report with commission; defaults to the current week"""
    authorize(system, actor, Action.VIEW_REPORTS, owner_id=collector_id)
    report = system.liquidation.period_report(
        collector_id,
        resolve_now(None),
        start_date=start_date,
        end_date=end_date,
        commission_percentage=(parse_decimal(commission_percentage, "commission_percentage")
                               if commission_percentage is not None else None),
        include_daily=include_daily
    )
    return period_report_response(report)

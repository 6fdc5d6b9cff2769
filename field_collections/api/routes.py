"""
Collection route endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Query, status

from .deps import ActorDep, SystemDep, authorize, parse_enum, resolve_now
from .schemas import (
    CloseRouteRequest, ExpenseRequest, ReorderRequest, UpdateExpenseRequest,
    expense_response, route_response
)
from ..exceptions import EntityNotFound
from ..permissions import Action, Actor
from ..routes import ExpenseCategory, RouteStatus
from ..system import CollectionsSystem
from ..timeutils import operational_date


router = APIRouter()


@router.get("")
async def list_routes(
    collector_id: Optional[str] = None,
    status_filter: Optional[str] = Query(None, alias="status"),
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    if actor.is_collector:
        collector_id = actor.id if collector_id is None else collector_id
    authorize(system, actor, Action.VIEW_ROUTE, owner_id=collector_id)
    routes = system.route_manager.list_routes(
        collector_id=collector_id,
        status=parse_enum(RouteStatus, status_filter, "status") if status_filter else None,
        date_from=date_from,
        date_to=date_to
    )
    return {"routes": [route_response(route) for route in routes]}


@router.post("/collectors/{collector_id}/today")
async def open_today_route(
    collector_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Open the collector's route for today; returns the existing one when already open"""
    authorize(system, actor, Action.MANAGE_ROUTE, owner_id=collector_id)
    now = resolve_now(None)
    route = system.route_manager.get_or_create_route(
        collector_id, operational_date(now, system.timezone), now
    )
    return route_response(route)


@router.get("/collectors/{collector_id}/{route_date}")
async def get_route_for_date(
    collector_id: str,
    route_date: date,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_ROUTE, owner_id=collector_id)
    route = system.route_manager.get_route_for_date(collector_id, route_date)
    if not route:
        raise EntityNotFound("route", f"{collector_id}/{route_date.isoformat()}")
    return route_response(route)


@router.get("/{route_id}")
async def get_route(
    route_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.VIEW_ROUTE, owner_id=route.collector_id)
    return route_response(route)


@router.post("/{route_id}/close")
async def close_route(
    route_id: str,
    request: CloseRouteRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Close the route and freeze its totals"""
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.CLOSE_ROUTE, owner_id=route.collector_id)
    route = system.route_manager.close_route(route_id, resolve_now(request.occurred_at),
                                             notes=request.notes)
    return route_response(route)


@router.put("/{route_id}/order")
async def reorder_items(
    route_id: str,
    request: ReorderRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.MANAGE_ROUTE, owner_id=route.collector_id)
    route = system.route_manager.reorder_items(route_id, request.installment_ids,
                                               resolve_now(request.occurred_at))
    return route_response(route)


@router.post("/{route_id}/expenses", status_code=status.HTTP_201_CREATED)
async def add_expense(
    route_id: str,
    request: ExpenseRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.MANAGE_ROUTE, owner_id=route.collector_id)
    expense = system.route_manager.add_expense(
        route_id,
        parse_enum(ExpenseCategory, request.category, "category"),
        request.amount,
        resolve_now(request.occurred_at),
        description=request.description
    )
    return expense_response(expense)


@router.patch("/{route_id}/expenses/{expense_id}")
async def update_expense(
    route_id: str,
    expense_id: str,
    request: UpdateExpenseRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.MANAGE_ROUTE, owner_id=route.collector_id)
    expense = system.route_manager.update_expense(
        route_id,
        expense_id,
        resolve_now(request.occurred_at),
        category=parse_enum(ExpenseCategory, request.category, "category") if request.category else None,
        amount=request.amount,
        description=request.description
    )
    return expense_response(expense)


@router.delete("/{route_id}/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_expense(
    route_id: str,
    expense_id: str,
    occurred_at: Optional[str] = None,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    route = system.route_manager.require_route(route_id)
    authorize(system, actor, Action.MANAGE_ROUTE, owner_id=route.collector_id)
    system.route_manager.delete_expense(route_id, expense_id, resolve_now(occurred_at))

"""
Collection Route Module

A route is one collector's worklist for one operational day: the ordered
collections recorded that day plus the day's expenses. Routes are created
lazily on first use, stay OPEN while the day is being worked and are closed
exactly once. Closing freezes the totals and blocks every further mutation
addressed to that collector and date.
"""

from decimal import Decimal
from datetime import date, datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union
import uuid

from .audit import AuditTrail, AuditEventType
from .config import get_config
from .currency import Money, Currency, to_money, require_positive
from .exceptions import EntityNotFound, InvalidRouteOrder, RouteClosed
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .timeutils import TimezoneLike, require_aware


# Route ids are derived from (collector, date) so creation is idempotent
_ROUTE_NAMESPACE = uuid.UUID("6f1c3c52-8d4e-4a8e-9c1b-2f5d7a0e4b13")


class RouteStatus(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class ExpenseCategory(Enum):
    """Expense categories a collector can book against a route"""
    COMBUSTIBLE = "COMBUSTIBLE"
    CONSUMO = "CONSUMO"
    REPARACIONES = "REPARACIONES"
    OTROS = "OTROS"


@dataclass
class RouteItem:
    """A collected installment within a route"""
    installment_id: str
    loan_id: str
    position: int
    amount_collected: Money


@dataclass
class RouteExpense:
    """An expense booked against a route"""
    id: str
    category: ExpenseCategory
    amount: Money
    description: str
    created_at: datetime
    updated_at: datetime


@dataclass
class CollectionRoute(StorageRecord):
    """
    One collector's day. Items keep the currency of their installment, so a
    route can hold collections in several currencies; expenses and the net
    amount are in the route's base currency. Totals are recomputed from items
    and expenses on every read until the route is closed; from then on the
    frozen values captured at close time are returned.
    """
    collector_id: str
    route_date: date
    currency: Currency
    status: RouteStatus = RouteStatus.OPEN
    items: List[RouteItem] = field(default_factory=list)
    expenses: List[RouteExpense] = field(default_factory=list)
    notes: str = ""
    closed_at: Optional[datetime] = None
    frozen_totals: Optional[Dict[str, Money]] = None
    frozen_collections: Optional[Dict[str, Money]] = None
    version: int = 0

    @property
    def is_open(self) -> bool:
        return self.status == RouteStatus.OPEN

    @property
    def total_collected(self) -> Money:
        """Collections in the base currency"""
        if self.frozen_totals:
            return self.frozen_totals['total_collected']
        return self.collected_in(self.currency)

    def collected_in(self, currency: Currency) -> Money:
        if self.frozen_collections is not None:
            return self.frozen_collections.get(currency.code, Money.zero(currency))
        return Money.sum((item.amount_collected for item in self.items
                          if item.amount_collected.currency == currency), currency)

    def collected_by_currency(self) -> Dict[Currency, Money]:
        """Collections per currency, base currency first"""
        currencies = [self.currency]
        for item in self.items:
            if item.amount_collected.currency not in currencies:
                currencies.append(item.amount_collected.currency)
        if self.frozen_collections:
            currencies.extend(Currency[code] for code in self.frozen_collections
                              if Currency[code] not in currencies)
        return {currency: self.collected_in(currency) for currency in currencies}

    @property
    def total_expenses(self) -> Money:
        if self.frozen_totals:
            return self.frozen_totals['total_expenses']
        return Money.sum((expense.amount for expense in self.expenses), self.currency)

    @property
    def net_amount(self) -> Money:
        if self.frozen_totals:
            return self.frozen_totals['net_amount']
        return self.total_collected - self.total_expenses

    def find_item(self, installment_id: str) -> Optional[RouteItem]:
        for item in self.items:
            if item.installment_id == installment_id:
                return item
        return None

    def find_expense(self, expense_id: str) -> Optional[RouteExpense]:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        return None

    def expenses_by_category(self) -> Dict[ExpenseCategory, Money]:
        totals = {category: Money.zero(self.currency) for category in ExpenseCategory}
        for expense in self.expenses:
            totals[expense.category] = totals[expense.category] + expense.amount
        return totals


def route_id_for(collector_id: str, route_date: date) -> str:
    return str(uuid.uuid5(_ROUTE_NAMESPACE, f"{collector_id}:{route_date.isoformat()}"))


class RouteManager:
    """
    Maintains collection routes. Payment and reset bookkeeping arrives through
    ``add_collection`` / ``remove_collection``; expenses, reordering and
    closing are driven by the collector.
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        timezone: TimezoneLike = None,
        default_currency: Optional[Currency] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.timezone = timezone
        self.default_currency = default_currency or Currency.from_code(get_config().default_currency)
        self.table_name = "collection_routes"
        self.logger = get_logger("field_collections.routes")

    def get_or_create_route(
        self,
        collector_id: str,
        route_date: date,
        now: datetime,
        currency: Optional[Currency] = None
    ) -> CollectionRoute:
        """
        Return the collector's route for a date, creating it OPEN if missing.
        Calling again for the same collector and date returns the same route.
        """
        require_aware(now, "now")
        with self.storage.atomic():
            existing = self.get_route_for_date(collector_id, route_date)
            if existing:
                return existing

            route = CollectionRoute(
                id=route_id_for(collector_id, route_date),
                created_at=now,
                updated_at=now,
                collector_id=collector_id,
                route_date=route_date,
                currency=currency or self.default_currency
            )
            route.version = self.storage.save_versioned(
                self.table_name, route.id, self._route_to_dict(route), 0
            )

            self.audit_trail.log_event(
                event_type=AuditEventType.ROUTE_CREATED,
                entity_type="route",
                entity_id=route.id,
                metadata={"collector_id": collector_id, "route_date": route_date.isoformat()},
                occurred_at=now
            )

        log_action(self.logger, "info", "Route created", user_id=collector_id,
                   action="create_route", resource=f"route:{route.id}",
                   extra={"route_date": route_date.isoformat()})
        return route

    def get_route(self, route_id: str) -> Optional[CollectionRoute]:
        data = self.storage.load(self.table_name, route_id)
        return self._route_from_dict(data) if data else None

    def require_route(self, route_id: str) -> CollectionRoute:
        route = self.get_route(route_id)
        if not route:
            raise EntityNotFound("route", route_id)
        return route

    def get_route_for_date(self, collector_id: str, route_date: date) -> Optional[CollectionRoute]:
        return self.get_route(route_id_for(collector_id, route_date))

    def list_routes(
        self,
        collector_id: Optional[str] = None,
        status: Optional[RouteStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[CollectionRoute]:
        """Routes matching the filters, most recent date first"""
        filters = {}
        if collector_id:
            filters['collector_id'] = collector_id
        if status:
            filters['status'] = status.value

        routes = [self._route_from_dict(data) for data in self.storage.find(self.table_name, filters)]
        routes = [r for r in routes
                  if (date_from is None or r.route_date >= date_from)
                  and (date_to is None or r.route_date <= date_to)]
        routes.sort(key=lambda r: (r.route_date, r.collector_id), reverse=True)
        return routes

    def ensure_open(self, collector_id: str, route_date: date) -> None:
        """
        Raises:
            RouteClosed: If the collector's route for that date is closed
        """
        route = self.get_route_for_date(collector_id, route_date)
        if route and not route.is_open:
            self._reject_closed(route)

    # Collections

    def add_collection(
        self,
        collector_id: str,
        route_date: date,
        installment_id: str,
        loan_id: str,
        amount: Money,
        now: datetime
    ) -> CollectionRoute:
        """
        Add amount to the installment's item on the route, appending the item
        if new. The item keeps the amount's currency, which need not be the
        route's base currency.
        """
        with self.storage.atomic():
            route = self.get_or_create_route(collector_id, route_date, now)
            self._require_open(route)

            item = route.find_item(installment_id)
            if item:
                item.amount_collected = item.amount_collected + to_money(
                    amount, item.amount_collected.currency)
            else:
                route.items.append(RouteItem(
                    installment_id=installment_id,
                    loan_id=loan_id,
                    position=len(route.items) + 1,
                    amount_collected=amount
                ))
            self._save(route, now)
        return route

    def remove_collection(
        self,
        collector_id: str,
        route_date: date,
        installment_id: str,
        amount: Money,
        now: datetime
    ) -> Optional[CollectionRoute]:
        """Take amount off the installment's item; the item is dropped when it reaches zero"""
        with self.storage.atomic():
            route = self.get_route_for_date(collector_id, route_date)
            if not route:
                return None
            self._require_open(route)

            item = route.find_item(installment_id)
            if not item:
                return route

            remaining = item.amount_collected - to_money(amount, item.amount_collected.currency)
            if remaining.is_positive():
                item.amount_collected = remaining
            else:
                route.items.remove(item)
                self._renumber(route)
            self._save(route, now)
        return route

    def reorder_items(self, route_id: str, installment_ids: List[str],
                      now: datetime) -> CollectionRoute:
        """
        Set the visitation order. installment_ids must be a permutation of the
        route's current items; amounts are never touched.

        Raises:
            RouteClosed: If the route is closed
            InvalidRouteOrder: If installment_ids is not a permutation of the items
        """
        with self.storage.atomic():
            route = self.require_route(route_id)
            self._require_open(route)

            current = [item.installment_id for item in route.items]
            if len(installment_ids) != len(current) or set(installment_ids) != set(current):
                raise InvalidRouteOrder(
                    "New order must list every route item exactly once",
                    route_id=route_id
                )

            by_installment = {item.installment_id: item for item in route.items}
            route.items = [by_installment[installment_id] for installment_id in installment_ids]
            self._renumber(route)
            self._save(route, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.ROUTE_REORDERED,
                entity_type="route",
                entity_id=route_id,
                metadata={"order": installment_ids},
                occurred_at=now
            )

        log_action(self.logger, "info", "Route reordered", user_id=route.collector_id,
                   action="reorder_route", resource=f"route:{route_id}")
        return route

    # Expenses

    def add_expense(
        self,
        route_id: str,
        category: ExpenseCategory,
        amount: Union[Money, Decimal, str],
        now: datetime,
        description: str = ""
    ) -> RouteExpense:
        """
        Book an expense on an open route.

        Raises:
            RouteClosed: If the route is closed
            InvalidAmount: If amount is not positive
        """
        require_aware(now, "now")
        with self.storage.atomic():
            route = self.require_route(route_id)
            self._require_open(route)
            money = require_positive(to_money(amount, route.currency), route_id=route_id)

            expense = RouteExpense(
                id=str(uuid.uuid4()),
                category=ExpenseCategory(category),
                amount=money,
                description=description,
                created_at=now,
                updated_at=now
            )
            route.expenses.append(expense)
            self._save(route, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_ADDED,
                entity_type="route",
                entity_id=route_id,
                metadata={"expense_id": expense.id, "category": expense.category,
                          "amount": money.amount},
                occurred_at=now
            )

        log_action(self.logger, "info", "Expense added", user_id=route.collector_id,
                   action="add_expense", resource=f"route:{route_id}",
                   extra={"category": expense.category.value, "amount": str(money.amount)})
        return expense

    def update_expense(
        self,
        route_id: str,
        expense_id: str,
        now: datetime,
        category: Optional[ExpenseCategory] = None,
        amount: Union[Money, Decimal, str, None] = None,
        description: Optional[str] = None
    ) -> RouteExpense:
        require_aware(now, "now")
        with self.storage.atomic():
            route = self.require_route(route_id)
            self._require_open(route)
            expense = route.find_expense(expense_id)
            if not expense:
                raise EntityNotFound("expense", expense_id)

            if category is not None:
                expense.category = ExpenseCategory(category)
            if amount is not None:
                expense.amount = require_positive(to_money(amount, route.currency),
                                                  route_id=route_id, expense_id=expense_id)
            if description is not None:
                expense.description = description
            expense.updated_at = now
            self._save(route, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_UPDATED,
                entity_type="route",
                entity_id=route_id,
                metadata={"expense_id": expense_id, "category": expense.category,
                          "amount": expense.amount.amount},
                occurred_at=now
            )

        log_action(self.logger, "info", "Expense updated", user_id=route.collector_id,
                   action="update_expense", resource=f"route:{route_id}",
                   extra={"expense_id": expense_id})
        return expense

    def delete_expense(self, route_id: str, expense_id: str, now: datetime) -> None:
        require_aware(now, "now")
        with self.storage.atomic():
            route = self.require_route(route_id)
            self._require_open(route)
            expense = route.find_expense(expense_id)
            if not expense:
                raise EntityNotFound("expense", expense_id)

            route.expenses.remove(expense)
            self._save(route, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.EXPENSE_DELETED,
                entity_type="route",
                entity_id=route_id,
                metadata={"expense_id": expense_id, "amount": expense.amount.amount},
                occurred_at=now
            )

        log_action(self.logger, "info", "Expense deleted", user_id=route.collector_id,
                   action="delete_expense", resource=f"route:{route_id}",
                   extra={"expense_id": expense_id})

    # Closing

    def close_route(self, route_id: str, now: datetime,
                    notes: Optional[str] = None) -> CollectionRoute:
        """
        Close a route. The transition happens once; the totals at this
        moment are frozen and later reads return them unchanged.

        Raises:
            RouteClosed: If the route is already closed
        """
        require_aware(now, "now")
        with self.storage.atomic():
            route = self.require_route(route_id)
            self._require_open(route)

            route.frozen_collections = {
                currency.code: collected
                for currency, collected in route.collected_by_currency().items()
            }
            route.frozen_totals = {
                'total_collected': route.total_collected,
                'total_expenses': route.total_expenses,
                'net_amount': route.net_amount
            }
            route.status = RouteStatus.CLOSED
            route.closed_at = now
            if notes is not None:
                route.notes = notes
            self._save(route, now)

            self.audit_trail.log_event(
                event_type=AuditEventType.ROUTE_CLOSED,
                entity_type="route",
                entity_id=route_id,
                metadata={
                    **{key: value.amount for key, value in route.frozen_totals.items()},
                    "collected_by_currency": {code: value.amount for code, value
                                              in route.frozen_collections.items()}
                },
                occurred_at=now
            )

        log_action(self.logger, "info", "Route closed", user_id=route.collector_id,
                   action="close_route", resource=f"route:{route_id}",
                   extra={"net_amount": str(route.net_amount.amount)})
        return route

    def get_route_totals(self, route_id: str,
                         currency: Optional[Currency] = None) -> Dict[str, Money]:
        """
        Totals of a route. Expenses are booked in the base currency only, so
        for any other currency the net amount equals the collections.
        """
        route = self.require_route(route_id)
        if currency is not None and currency != route.currency:
            collected = route.collected_in(currency)
            return {
                'total_collected': collected,
                'total_expenses': Money.zero(currency),
                'net_amount': collected
            }
        return {
            'total_collected': route.total_collected,
            'total_expenses': route.total_expenses,
            'net_amount': route.net_amount
        }

    def _require_open(self, route: CollectionRoute) -> None:
        if not route.is_open:
            self._reject_closed(route)

    def _reject_closed(self, route: CollectionRoute) -> None:
        log_action(self.logger, "warning", "Mutation rejected on closed route",
                   user_id=route.collector_id, action="route_mutation",
                   resource=f"route:{route.id}")
        raise RouteClosed(
            f"Route {route.id} for {route.route_date.isoformat()} is closed",
            route_id=route.id, collector_id=route.collector_id,
            route_date=route.route_date.isoformat()
        )

    def _renumber(self, route: CollectionRoute) -> None:
        for position, item in enumerate(route.items, start=1):
            item.position = position

    def _save(self, route: CollectionRoute, now: datetime) -> None:
        expected_version = route.version
        route.updated_at = now
        route.version = self.storage.save_versioned(
            self.table_name, route.id, self._route_to_dict(route), expected_version
        )

    def _route_to_dict(self, route: CollectionRoute) -> Dict:
        return {
            "id": route.id,
            "created_at": route.created_at.isoformat(),
            "updated_at": route.updated_at.isoformat(),
            "collector_id": route.collector_id,
            "route_date": route.route_date.isoformat(),
            "currency": route.currency.code,
            "status": route.status.value,
            "items": [
                {
                    "installment_id": item.installment_id,
                    "loan_id": item.loan_id,
                    "position": item.position,
                    "amount_collected": str(item.amount_collected.amount),
                    "currency": item.amount_collected.currency.code
                }
                for item in route.items
            ],
            "expenses": [
                {
                    "id": expense.id,
                    "category": expense.category.value,
                    "amount": str(expense.amount.amount),
                    "description": expense.description,
                    "created_at": expense.created_at.isoformat(),
                    "updated_at": expense.updated_at.isoformat()
                }
                for expense in route.expenses
            ],
            "notes": route.notes,
            "closed_at": route.closed_at.isoformat() if route.closed_at else None,
            "frozen_totals": (
                {key: str(value.amount) for key, value in route.frozen_totals.items()}
                if route.frozen_totals else None
            ),
            "frozen_collections": (
                {code: str(value.amount) for code, value in route.frozen_collections.items()}
                if route.frozen_collections is not None else None
            ),
            "version": route.version
        }

    def _route_from_dict(self, data: Dict) -> CollectionRoute:
        currency = Currency[data['currency']]
        return CollectionRoute(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            collector_id=data['collector_id'],
            route_date=date.fromisoformat(data['route_date']),
            currency=currency,
            status=RouteStatus(data['status']),
            items=[
                RouteItem(
                    installment_id=item['installment_id'],
                    loan_id=item['loan_id'],
                    position=item['position'],
                    amount_collected=Money(Decimal(item['amount_collected']),
                                           Currency[item.get('currency', currency.code)])
                )
                for item in data.get('items', [])
            ],
            expenses=[
                RouteExpense(
                    id=expense['id'],
                    category=ExpenseCategory(expense['category']),
                    amount=Money(Decimal(expense['amount']), currency),
                    description=expense.get('description', ""),
                    created_at=datetime.fromisoformat(expense['created_at']),
                    updated_at=datetime.fromisoformat(expense['updated_at'])
                )
                for expense in data.get('expenses', [])
            ],
            notes=data.get('notes', ""),
            closed_at=datetime.fromisoformat(data['closed_at']) if data.get('closed_at') else None,
            frozen_totals=(
                {key: Money(Decimal(value), currency)
                 for key, value in data['frozen_totals'].items()}
                if data.get('frozen_totals') else None
            ),
            frozen_collections=(
                {code: Money(Decimal(value), Currency[code])
                 for code, value in data['frozen_collections'].items()}
                if data.get('frozen_collections') is not None else None
            ),
            version=data.get('version', 0)
        )

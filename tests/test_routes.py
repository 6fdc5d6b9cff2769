"""
Test suite for collection routes

Tests lazy route creation, expense bookkeeping, reordering, and the
one-way close that freezes totals and blocks further mutations.
"""

import pytest
from datetime import date, timedelta

from field_collections.exceptions import (
    EntityNotFound, InvalidAmount, InvalidRouteOrder, RouteClosed
)
from field_collections.routes import ExpenseCategory, RouteStatus, route_id_for

from conftest import NOW, TODAY, ars


@pytest.fixture
def routes(system):
    return system.route_manager


@pytest.fixture
def route(routes):
    return routes.get_or_create_route("collector-1", TODAY, NOW)


class TestRouteCreation:
    """Test lazy, idempotent route creation"""

    def test_get_or_create_is_idempotent(self, routes, route):
        """Test that the same collector and date always yield one route"""
        again = routes.get_or_create_route("collector-1", TODAY, NOW + timedelta(hours=2))

        assert again.id == route.id == route_id_for("collector-1", TODAY)
        assert route.status == RouteStatus.OPEN
        assert len(routes.list_routes()) == 1

    def test_routes_are_per_collector_and_day(self, routes, route):
        """Test that other collectors and days get their own routes"""
        other_collector = routes.get_or_create_route("collector-2", TODAY, NOW)
        other_day = routes.get_or_create_route("collector-1", TODAY + timedelta(days=1), NOW)

        assert len({route.id, other_collector.id, other_day.id}) == 3

    def test_empty_route_totals(self, route):
        """Test zero totals on a fresh route"""
        assert route.total_collected == ars("0")
        assert route.total_expenses == ars("0")
        assert route.net_amount == ars("0")


class TestCollections:
    """Test collection items"""

    def test_add_collection_upserts_item(self, routes):
        """Test that repeated collections on one installment accumulate"""
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("6000"), NOW)
        routes.add_collection("collector-1", TODAY, "inst-2", "loan-2", ars("1500"), NOW)
        route = routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("4000"), NOW)

        assert [item.installment_id for item in route.items] == ["inst-1", "inst-2"]
        assert route.find_item("inst-1").amount_collected == ars("10000")
        assert route.total_collected == ars("11500")

    def test_remove_collection(self, routes):
        """Test decrementing and then removing an item"""
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("6000"), NOW)
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("4000"), NOW)
        routes.add_collection("collector-1", TODAY, "inst-2", "loan-2", ars("1500"), NOW)

        route = routes.remove_collection("collector-1", TODAY, "inst-1", ars("4000"), NOW)
        assert route.find_item("inst-1").amount_collected == ars("6000")

        route = routes.remove_collection("collector-1", TODAY, "inst-1", ars("6000"), NOW)
        assert route.find_item("inst-1") is None
        assert route.items[0].position == 1
        assert route.total_collected == ars("1500")


class TestExpenses:
    """Test expense mutations"""

    def test_add_expense_updates_totals(self, routes, route):
        """Test that expenses reduce the net amount"""
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("10000"), NOW)
        routes.add_expense(route.id, ExpenseCategory.COMBUSTIBLE, "1500", NOW, "Nafta")
        routes.add_expense(route.id, ExpenseCategory.CONSUMO, "500", NOW)

        totals = routes.get_route_totals(route.id)

        assert totals["total_collected"] == ars("10000")
        assert totals["total_expenses"] == ars("2000")
        assert totals["net_amount"] == ars("8000")

    def test_update_expense(self, routes, route):
        """Test changing amount, category and description"""
        expense = routes.add_expense(route.id, ExpenseCategory.OTROS, "100", NOW)

        updated = routes.update_expense(route.id, expense.id, NOW, category=ExpenseCategory.REPARACIONES,
                                        amount="250", description="Cubierta")

        assert updated.category == ExpenseCategory.REPARACIONES
        assert updated.amount == ars("250")
        assert routes.get_route_totals(route.id)["total_expenses"] == ars("250")

    def test_delete_expense(self, routes, route):
        """Test removing an expense"""
        expense = routes.add_expense(route.id, ExpenseCategory.OTROS, "100", NOW)

        routes.delete_expense(route.id, expense.id, NOW)

        assert routes.get_route(route.id).expenses == []

    def test_unknown_expense(self, routes, route):
        with pytest.raises(EntityNotFound):
            routes.delete_expense(route.id, "missing", NOW)

    def test_expense_amount_must_be_positive(self, routes, route):
        with pytest.raises(InvalidAmount):
            routes.add_expense(route.id, ExpenseCategory.OTROS, "0", NOW)

    def test_expenses_by_category(self, routes, route):
        """Test per-category expense totals"""
        routes.add_expense(route.id, ExpenseCategory.COMBUSTIBLE, "100", NOW)
        routes.add_expense(route.id, ExpenseCategory.COMBUSTIBLE, "50", NOW)

        by_category = routes.get_route(route.id).expenses_by_category()

        assert by_category[ExpenseCategory.COMBUSTIBLE] == ars("150")
        assert by_category[ExpenseCategory.OTROS] == ars("0")


class TestReorder:
    """Test visitation order changes"""

    def test_reorder_items(self, routes, route):
        """Test that reordering changes positions but not amounts"""
        for n, amount in enumerate(["100", "200", "300"], start=1):
            routes.add_collection("collector-1", TODAY, f"inst-{n}", f"loan-{n}", ars(amount), NOW)

        reordered = routes.reorder_items(route.id, ["inst-3", "inst-1", "inst-2"], NOW)

        assert [(i.installment_id, i.position) for i in reordered.items] == [
            ("inst-3", 1), ("inst-1", 2), ("inst-2", 3)
        ]
        assert reordered.find_item("inst-3").amount_collected == ars("300")
        assert reordered.total_collected == ars("600")

    def test_reorder_requires_permutation(self, routes, route):
        """Test that partial, extra or duplicated ids are rejected"""
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("100"), NOW)
        routes.add_collection("collector-1", TODAY, "inst-2", "loan-2", ars("100"), NOW)

        for order in (["inst-1"], ["inst-1", "inst-2", "inst-3"], ["inst-1", "inst-1"]):
            with pytest.raises(InvalidRouteOrder):
                routes.reorder_items(route.id, order, NOW)


class TestCloseRoute:
    """Test the one-way close"""

    def test_close_freezes_totals(self, routes, route):
        """Test that totals stay as they were at close time"""
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("10000"), NOW)
        routes.add_expense(route.id, ExpenseCategory.COMBUSTIBLE, "1000", NOW)

        closed = routes.close_route(route.id, NOW + timedelta(hours=8), notes="Sin novedades")

        assert closed.status == RouteStatus.CLOSED
        assert closed.notes == "Sin novedades"
        reloaded = routes.get_route(route.id)
        assert reloaded.total_collected == ars("10000")
        assert reloaded.total_expenses == ars("1000")
        assert reloaded.net_amount == ars("9000")

    def test_closed_route_rejects_mutations(self, routes, route):
        """Test that nothing addressed to a closed route succeeds"""
        expense = routes.add_expense(route.id, ExpenseCategory.OTROS, "100", NOW)
        routes.add_collection("collector-1", TODAY, "inst-1", "loan-1", ars("500"), NOW)
        routes.close_route(route.id, NOW)

        with pytest.raises(RouteClosed):
            routes.add_expense(route.id, ExpenseCategory.OTROS, "100", NOW)
        with pytest.raises(RouteClosed):
            routes.update_expense(route.id, expense.id, NOW, amount="1")
        with pytest.raises(RouteClosed):
            routes.delete_expense(route.id, expense.id, NOW)
        with pytest.raises(RouteClosed):
            routes.reorder_items(route.id, ["inst-1"], NOW)
        with pytest.raises(RouteClosed):
            routes.add_collection("collector-1", TODAY, "inst-2", "loan-2", ars("1"), NOW)
        with pytest.raises(RouteClosed):
            routes.ensure_open("collector-1", TODAY)

        assert routes.get_route(route.id).net_amount == ars("400")

    def test_close_happens_once(self, routes, route):
        """Test that a closed route never closes or reopens again"""
        routes.close_route(route.id, NOW)

        with pytest.raises(RouteClosed):
            routes.close_route(route.id, NOW)

    def test_next_day_route_is_independent(self, routes, route):
        """Test that closing today does not block tomorrow"""
        routes.close_route(route.id, NOW)

        tomorrow = routes.add_collection("collector-1", TODAY + timedelta(days=1),
                                         "inst-1", "loan-1", ars("100"), NOW + timedelta(days=1))

        assert tomorrow.is_open


class TestListRoutes:
    """Test route queries"""

    def test_list_filters(self, routes):
        """Test filtering by collector, status and date range"""
        for offset in range(3):
            routes.get_or_create_route("collector-1", TODAY + timedelta(days=offset), NOW)
        routes.get_or_create_route("collector-2", TODAY, NOW)
        routes.close_route(route_id_for("collector-1", TODAY), NOW)

        mine = routes.list_routes(collector_id="collector-1")
        closed = routes.list_routes(status=RouteStatus.CLOSED)
        window = routes.list_routes(collector_id="collector-1", date_from=TODAY + timedelta(days=1),
                                    date_to=TODAY + timedelta(days=2))

        assert [r.route_date for r in mine] == [date(2024, 1, 17), date(2024, 1, 16), date(2024, 1, 15)]
        assert [r.collector_id for r in closed] == ["collector-1"]
        assert len(window) == 2
        assert routes.get_route_for_date("collector-3", TODAY) is None

"""Order read-model tests."""

from decimal import Decimal

import pytest

from conftest import GADGET, WIDGET
from order_service import assembly, workflow
from order_service.errors import OrderNotFound
from order_service.inventory import LineItem


@pytest.fixture
def placed(session_factory, retry_policy, seed):
    first = workflow.create_order(session_factory, "alice", [LineItem(WIDGET, 1)], retry_policy)
    second = workflow.create_order(session_factory, "alice", [LineItem(GADGET, 2), LineItem(WIDGET, 1)], retry_policy)
    other = workflow.create_order(session_factory, "bob", [LineItem(GADGET, 1)], retry_policy)
    return first, second, other


class TestAssemble:
    def test_missing_order(self, session_factory, seed) -> None:
        with session_factory() as session:
            with pytest.raises(OrderNotFound) as exc_info:
                assembly.assemble(session, 999)
        assert exc_info.value.status == 404
        assert exc_info.value.details == "No order exists with id 999"

    def test_id_beyond_integer_range(self, session_factory, retry_policy, sleeps, seed) -> None:
        with pytest.raises(OrderNotFound):
            workflow.get_order(session_factory, 2 ** 63, retry_policy)
        assert sleeps == []

    def test_reads_are_idempotent(self, session_factory, retry_policy, placed) -> None:
        _, second, _ = placed
        once = workflow.get_order(session_factory, second.id, retry_policy)
        twice = workflow.get_order(session_factory, second.id, retry_policy)
        assert once == twice
        assert once.model_dump() == second.model_dump()

    def test_shape(self, session_factory, placed) -> None:
        _, second, _ = placed
        with session_factory() as session:
            order = assembly.assemble(session, second.id)
        assert order.total == Decimal("15.00")
        assert [(i.productId, i.productName, i.quantity) for i in order.items] == [
            (GADGET, "Gadget", 2),
            (WIDGET, "Widget", 1),
        ]

    def test_get_order_not_found_is_not_retried(self, session_factory, retry_policy, sleeps, seed) -> None:
        with pytest.raises(OrderNotFound):
            workflow.get_order(session_factory, 12345, retry_policy)
        assert sleeps == []


class TestListForUser:
    def test_only_own_orders(self, session_factory, retry_policy, placed) -> None:
        first, second, _ = placed
        orders = workflow.list_orders(session_factory, "alice", retry_policy=retry_policy)
        assert [o.id for o in orders] == [first.id, second.id]

    def test_pagination(self, session_factory, retry_policy, placed) -> None:
        first, second, _ = placed
        assert [o.id for o in workflow.list_orders(session_factory, "alice", 1, 1, retry_policy)] == [first.id]
        assert [o.id for o in workflow.list_orders(session_factory, "alice", 2, 1, retry_policy)] == [second.id]
        assert workflow.list_orders(session_factory, "alice", 3, 1, retry_policy) == []

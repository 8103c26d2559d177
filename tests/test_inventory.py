"""Inventory validation tests."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from conftest import GADGET, LAST_UNIT, SOLD_OUT, WIDGET
from order_service import inventory
from order_service.errors import InvalidOrder, RetryExhausted
from order_service.inventory import LineItem, ProductSnapshot, check_items


def _products():
    return {
        1: ProductSnapshot(id=1, name="Widget", price=Decimal("10.00"), stock=5),
        2: ProductSnapshot(id=2, name="Gadget", price=Decimal("2.50"), stock=10),
    }


class FailingFactory:
    """Session factory whose first `failures` calls raise a transient error."""

    def __init__(self, real, failures):
        self.real = real
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return self.real()


class TestCheckItems:
    """Pure validation against already fetched products."""

    def test_valid_items_keep_input_order(self) -> None:
        result = check_items([LineItem(2, 3), LineItem(1, 5)], _products())
        assert [(v.product.id, v.quantity) for v in result] == [(2, 3), (1, 5)]
        assert result[0].subtotal == Decimal("7.50")

    def test_missing_product(self) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            check_items([LineItem(99, 1)], _products())
        assert exc_info.value.reasons == ["Product 99 not found"]

    def test_non_positive_quantity(self) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            check_items([LineItem(1, 0)], _products())
        assert "Invalid quantity 0 for product Widget" in exc_info.value.reasons

    def test_quantity_above_stock(self) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            check_items([LineItem(1, 6)], _products())
        assert exc_info.value.reasons == ["Insufficient stock for product Widget (available: 5)"]

    def test_all_violations_reported_together(self) -> None:
        items = [LineItem(99, 1), LineItem(1, 6), LineItem(2, 1), LineItem(2, -1)]
        with pytest.raises(InvalidOrder) as exc_info:
            check_items(items, _products())
        assert len(exc_info.value.reasons) == 3
        assert exc_info.value.details == exc_info.value.reasons

    def test_quantity_equal_to_stock_is_valid(self) -> None:
        assert len(check_items([LineItem(1, 5)], _products())) == 1

    def test_quantities_are_summed_per_product(self) -> None:
        items = [LineItem(1, 3), LineItem(99, 1), LineItem(1, 3), LineItem(2, 1)]
        with pytest.raises(InvalidOrder) as exc_info:
            check_items(items, _products())
        assert exc_info.value.reasons == [
            "Insufficient stock for product Widget (available: 5)",
            "Product 99 not found",
        ]

    def test_summed_quantity_within_stock(self) -> None:
        result = check_items([LineItem(1, 2), LineItem(1, 3)], _products())
        assert [v.quantity for v in result] == [2, 3]

    def test_demand_ignores_non_positive_lines(self) -> None:
        items = [LineItem(2, 4), LineItem(1, 1), LineItem(2, 0), LineItem(2, 1)]
        assert inventory.demand_by_product(items) == {2: 5, 1: 1}


@pytest.mark.usefixtures("seed")
class TestValidate:
    """Fetch + validate against the datastore."""

    def test_returns_current_product_data(self, session_factory, retry_policy) -> None:
        result = inventory.validate(session_factory, [LineItem(WIDGET, 2), LineItem(GADGET, 1)], retry_policy)
        assert result[0].product.name == "Widget"
        assert result[0].product.price == Decimal("10.00")
        assert result[1].product.stock == 10

    def test_sold_out_and_unknown(self, session_factory, retry_policy) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            inventory.validate(session_factory, [LineItem(SOLD_OUT, 1), LineItem(123, 1)], retry_policy)
        assert exc_info.value.reasons == [
            "Insufficient stock for product Sold Out (available: 0)",
            "Product 123 not found",
        ]

    def test_transient_read_failure_is_retried(self, session_factory, retry_policy, sleeps) -> None:
        flaky = FailingFactory(session_factory, failures=2)
        result = inventory.validate(flaky, [LineItem(LAST_UNIT, 1)], retry_policy)
        assert result[0].product.id == LAST_UNIT
        assert flaky.calls == 3
        assert sleeps == [0.001, 0.002]

    def test_validation_failure_is_not_retried(self, session_factory, retry_policy, sleeps) -> None:
        flaky = FailingFactory(session_factory, failures=0)
        with pytest.raises(InvalidOrder):
            inventory.validate(flaky, [LineItem(WIDGET, 50)], retry_policy)
        assert flaky.calls == 1
        assert sleeps == []

    def test_read_failures_exhaust(self, session_factory, retry_policy) -> None:
        flaky = FailingFactory(session_factory, failures=10)
        with pytest.raises(RetryExhausted) as exc_info:
            inventory.validate(flaky, [LineItem(WIDGET, 1)], retry_policy)
        assert exc_info.value.label == "fetch products for order"
        assert flaky.calls == 3

    def test_ids_beyond_integer_range_are_reported_missing(self, session_factory, retry_policy, sleeps) -> None:
        with pytest.raises(InvalidOrder) as exc_info:
            inventory.validate(session_factory, [LineItem(2 ** 63, 1), LineItem(WIDGET, 1)], retry_policy)
        assert exc_info.value.reasons == [f"Product {2 ** 63} not found"]
        assert sleeps == []

"""
inventory.py — Inventory Validation for Order Creation

Fetches the products referenced by an order request and checks every line
for existence, a positive quantity and sufficient stock (summed per product
across lines). All violations are collected and reported together.

This check runs before the order transaction and is advisory: stock may change
before commit, so the transaction re-checks it at decrement time.
"""

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from .database import id_in_range
from .db_models import Product
from .errors import InvalidOrder
from .logging_config import get_logger
from .retry import RetryPolicy

log = get_logger(__name__)


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class ProductSnapshot:
    """Product fields read at validation time."""
    id: int
    name: str
    price: Decimal
    stock: int


@dataclass(frozen=True)
class ValidatedItem:
    product: ProductSnapshot
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity


def to_line_items(items: Iterable[Union[LineItem, Mapping]]) -> List[LineItem]:
    """Accepts LineItem instances or {'productId': ..., 'quantity': ...} mappings."""
    result = []
    for item in items:
        if isinstance(item, LineItem):
            result.append(item)
        else:
            result.append(LineItem(product_id=item["productId"], quantity=item["quantity"]))
    return result


def fetch_products(session: Session, product_ids: Iterable[int]) -> Dict[int, ProductSnapshot]:
    """
    Loads the given products in one query, keyed by id. Missing ids are absent.

    Ids outside the datastore's integer range are left out of the query; they
    can never match a row.
    """
    ids = sorted({pid for pid in product_ids if id_in_range(pid)})
    rows = session.scalars(select(Product).where(Product.id.in_(ids))).all() if ids else []
    return {
        row.id: ProductSnapshot(id=row.id, name=row.name, price=row.price, stock=row.stock)
        for row in rows
    }


def demand_by_product(items: Iterable[LineItem]) -> Dict[int, int]:
    """Total positive quantity requested per product id."""
    demand: Dict[int, int] = defaultdict(int)
    for item in items:
        if item.quantity > 0:
            demand[item.product_id] += item.quantity
    return dict(demand)


def check_items(items: Sequence[LineItem], products: Mapping[int, ProductSnapshot]) -> List[ValidatedItem]:
    """
    Validates each line against the fetched products.

    Stock is compared with the summed quantity of every line naming the same
    product; a shortfall is reported once, at the product's first line.

    Args:
        items: Requested lines, in request order.
        products: Products by id, as returned by `fetch_products`.

    Returns:
        list[ValidatedItem]: One entry per input line, in input order.

    Raises:
        InvalidOrder: With one reason per offending line, if any line fails.
    """
    demand = demand_by_product(items)
    short_reported = set()
    reasons = []
    validated = []
    for item in items:
        product: Optional[ProductSnapshot] = products.get(item.product_id)
        if product is None:
            reasons.append(f"Product {item.product_id} not found")
        elif item.quantity <= 0:
            reasons.append(f"Invalid quantity {item.quantity} for product {product.name}")
        elif demand[product.id] > product.stock:
            if product.id not in short_reported:
                short_reported.add(product.id)
                reasons.append(
                    f"Insufficient stock for product {product.name} (available: {product.stock})"
                )
        else:
            validated.append(ValidatedItem(product=product, quantity=item.quantity))

    if reasons:
        raise InvalidOrder(reasons)
    return validated


def validate(session_factory: sessionmaker, items: Sequence[LineItem],
             retry_policy: Optional[RetryPolicy] = None) -> List[ValidatedItem]:
    """
    Fetches (with retry) and validates the requested lines.

    Only the datastore read is retried; validation failures are raised at once.
    """
    retry_policy = retry_policy or RetryPolicy()

    def _fetch():
        with session_factory() as session:
            return fetch_products(session, [item.product_id for item in items])

    products = retry_policy.run(_fetch, "fetch products for order")
    return check_items(items, products)

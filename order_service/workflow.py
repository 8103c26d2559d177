"""
workflow.py — Order Creation Workflow

This module contains the transactional core of the order service.

Workflow Overview:
1. Reject an empty or malformed item list (no I/O)
2. Fetch and validate the referenced products (retried read)
3. Compute the order total from the validated prices
4. In ONE transaction (retried as a unit):
     - lock the product rows
     - insert the order row (status 'pending')
     - insert one order item per line, snapshotting the product price
     - decrement stock per product (summed over its lines) with a conditional
       update that refuses to go below zero
5. Read the created order back and return it

Domain errors raised inside the transaction (e.g. insufficient stock found at
decrement time) are terminal: they abort the transaction and are not retried.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from . import assembly, inventory
from .database import id_in_range
from .db_models import Order, OrderItem, OrderStatus, Product
from .errors import InvalidItems, InvalidOrder, OrderServiceError, Unexpected
from .inventory import LineItem, ValidatedItem
from .logging_config import get_logger
from .models import OrderResponse
from .retry import RetryPolicy

log = get_logger(__name__)

CENTS = Decimal("0.01")


def compute_total(items: Iterable[ValidatedItem]) -> Decimal:
    """Sum of price x quantity, rounded to cents."""
    total = sum((item.subtotal for item in items), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _parse_items(items) -> List[LineItem]:
    """
    Normalizes the request lines.

    Raises:
        InvalidItems: If the list is empty or a line is malformed.
    """
    if not items:
        raise InvalidItems()
    try:
        line_items = inventory.to_line_items(items)
    except (KeyError, TypeError):
        raise InvalidItems("Each item needs a productId and a quantity")

    for item in line_items:
        if not _is_int(item.product_id) or item.product_id <= 0:
            raise InvalidItems("Product id must be a positive integer", details=f"Got {item.product_id!r}")
        if not _is_int(item.quantity):
            raise InvalidItems("Quantity must be an integer", details=f"Got {item.quantity!r}")
    return line_items


def _persist_order(session: Session, user_id: str, line_items: Sequence[LineItem],
                   quoted_total: Decimal) -> int:
    """
    Inserts the order with its items and decrements stock inside the caller's
    transaction. Returns the new order id.

    Raises:
        InvalidOrder: If a product disappeared or its stock no longer covers the
            quantity ordered across all of its lines.
    """
    product_ids = sorted({item.product_id for item in line_items})
    # Rows are locked in ascending id order to keep concurrent orders deadlock free.
    locked = {
        product.id: product
        for product in session.scalars(
            select(Product)
            .where(Product.id.in_([pid for pid in product_ids if id_in_range(pid)]))
            .order_by(Product.id)
            .with_for_update()
        ).all()
    }
    missing = [pid for pid in product_ids if pid not in locked]
    if missing:
        raise InvalidOrder([f"Product {pid} not found" for pid in missing])

    # Committed stock at lock time; reported as-is, never the rolled back remainder.
    available = {pid: product.stock for pid, product in locked.items()}
    demand = inventory.demand_by_product(line_items)
    shortages = [
        f"Insufficient stock for product {locked[pid].name} (available: {available[pid]})"
        for pid, quantity in demand.items()
        if quantity > available[pid]
    ]
    if shortages:
        raise InvalidOrder(shortages)

    total = sum((locked[item.product_id].price * item.quantity for item in line_items), Decimal("0"))
    total = total.quantize(CENTS, rounding=ROUND_HALF_UP)
    if total != quoted_total:
        log.warning(f"[User: {user_id}] Prices changed since validation, total {quoted_total} -> {total}")

    order = Order(user_id=user_id, total=total, status=OrderStatus.PENDING)
    session.add(order)
    session.flush()

    for item in line_items:
        session.add(OrderItem(
            order_id=order.id,
            product_id=item.product_id,
            quantity=item.quantity,
            price=locked[item.product_id].price,
        ))
    session.flush()

    for product_id, quantity in demand.items():
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidOrder([
                f"Insufficient stock for product {locked[product_id].name} (available: {available[product_id]})"
            ])

    return order.id


def create_order(session_factory: sessionmaker, user_id: str,
                 items: Sequence[Union[LineItem, Mapping]],
                 retry_policy: Optional[RetryPolicy] = None) -> OrderResponse:
    """
    Creates an order for `user_id` and decrements stock atomically.

    Args:
        session_factory: Factory producing datastore sessions.
        user_id (str): Subject id of the ordering user, trusted as given.
        items: Lines as LineItem or {'productId', 'quantity'} mappings.
        retry_policy (RetryPolicy, optional): Retry parameters; defaults from config.

    Returns:
        OrderResponse: The created order with its items.

    Raises:
        InvalidItems: Empty or malformed item list.
        InvalidOrder: Unknown products, invalid quantities or insufficient stock.
        RetryExhausted: The datastore kept failing.
        Unexpected: Any other failure (code ORDER_CREATION_FAILED).
    """
    retry_policy = retry_policy or RetryPolicy()
    log_prefix = f"[User: {user_id}]"

    try:
        line_items = _parse_items(items)
        log.info(f"{log_prefix} Creating order with {len(line_items)} item(s).")

        validated = inventory.validate(session_factory, line_items, retry_policy)
        total = compute_total(validated)
        log.info(f"{log_prefix} Items validated, total {total}.")

        def _transaction():
            with session_factory() as session:
                with session.begin():
                    return _persist_order(session, user_id, line_items, total)

        order_id = retry_policy.run(_transaction, "create order", give_up_on=(OrderServiceError,))
        log.info(f"[Order: {order_id}] Created for user {user_id}, stock decremented.")

        return retry_policy.run(lambda: _read_order(session_factory, order_id), "read created order")

    except OrderServiceError as e:
        log.warning(f"{log_prefix} Order rejected: {e.code} - {e.message} {e.details or ''}")
        raise
    except Exception as e:
        log.critical(f"{log_prefix} Unexpected error while creating order: {e}", exc_info=True)
        raise Unexpected("Failed to create order", code="ORDER_CREATION_FAILED") from e


def _read_order(session_factory: sessionmaker, order_id: int) -> OrderResponse:
    with session_factory() as session:
        return assembly.assemble(session, order_id)


def get_order(session_factory: sessionmaker, order_id: int,
              retry_policy: Optional[RetryPolicy] = None) -> OrderResponse:
    """
    Reads a single order.

    Raises:
        OrderNotFound: If the order does not exist (not retried).
    """
    retry_policy = retry_policy or RetryPolicy()
    try:
        return retry_policy.run(
            lambda: _read_order(session_factory, order_id),
            "fetch order by id",
            give_up_on=(OrderServiceError,),
        )
    except OrderServiceError:
        raise
    except Exception as e:
        log.error(f"[Order: {order_id}] Failed to fetch order: {e}", exc_info=True)
        raise Unexpected("Failed to fetch order", code="ORDER_FETCH_FAILED") from e


def list_orders(session_factory: sessionmaker, user_id: str, page: int = 1, page_size: int = 10,
                retry_policy: Optional[RetryPolicy] = None) -> List[OrderResponse]:
    """Returns one page of the user's orders."""
    retry_policy = retry_policy or RetryPolicy()

    def _list():
        with session_factory() as session:
            return assembly.list_for_user(session, user_id, page, page_size)

    try:
        return retry_policy.run(_list, "fetch orders by user")
    except OrderServiceError:
        raise
    except Exception as e:
        log.error(f"[User: {user_id}] Failed to list orders: {e}", exc_info=True)
        raise Unexpected("Failed to fetch orders", code="ORDER_FETCH_FAILED") from e

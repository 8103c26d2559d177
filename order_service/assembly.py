"""
assembly.py — Order Read Model

Builds the public order shape from the persisted rows. Line prices come from
the order items (captured at order time); product names are read live from the
products table, so a renamed product shows its new name on old orders.
"""

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .database import id_in_range
from .db_models import Order, OrderItem
from .errors import OrderNotFound
from .models import OrderItemResponse, OrderResponse


def _order_query():
    return select(Order).options(selectinload(Order.items).selectinload(OrderItem.product))


def to_response(order: Order) -> OrderResponse:
    return OrderResponse(
        id=order.id,
        userId=order.user_id,
        total=order.total,
        status=order.status.value,
        createdAt=order.created_at,
        updatedAt=order.updated_at,
        items=[
            OrderItemResponse(
                productId=item.product_id,
                productName=item.product.name,
                quantity=item.quantity,
                price=item.price,
            )
            for item in order.items
        ],
    )


def assemble(session: Session, order_id: int) -> OrderResponse:
    """
    Reads an order with its items.

    Raises:
        OrderNotFound: If no order has this id.
    """
    order = None
    if id_in_range(order_id):
        order = session.scalars(_order_query().where(Order.id == order_id)).first()
    if order is None:
        raise OrderNotFound(order_id)
    return to_response(order)


def list_for_user(session: Session, user_id: str, page: int = 1, page_size: int = 10) -> List[OrderResponse]:
    """Returns one page of a user's orders, oldest first."""
    query = (
        _order_query()
        .where(Order.user_id == user_id)
        .order_by(Order.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return [to_response(order) for order in session.scalars(query).all()]

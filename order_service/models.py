"""
models.py — API Data Models

Pydantic models for request validation and response serialization.
Field names follow the public JSON contract (camelCase).

Models:
    - OrderItemRequest / NewOrderRequest: order creation payload.
    - OrderItemResponse / OrderResponse: assembled order.
    - ProductCreate / ProductUpdate / ProductResponse: catalog management.
    - RoleUpdate / UserResponse: user administration.
    - ErrorBody: structured error envelope.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, Field, PlainSerializer

# Amounts are Decimal internally and plain JSON numbers on the wire.
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class OrderItemRequest(BaseModel):
    """
    A single line of an order request.

    Attributes:
        productId (int): Id of the product to order. Must be greater than zero.
        quantity (int): Units to order. Must be greater than zero.
    """
    productId: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class NewOrderRequest(BaseModel):
    items: List[OrderItemRequest]


class OrderItemResponse(BaseModel):
    """
    A line of an assembled order.

    `productName` is the product's current name; `price` is the price captured
    when the order was placed.
    """
    productId: int
    productName: str
    quantity: int
    price: Money


class OrderResponse(BaseModel):
    id: int
    userId: str
    total: Money
    status: str
    createdAt: datetime
    updatedAt: datetime
    items: List[OrderItemResponse]


class ProductCreate(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal
    stock: int


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    stock: Optional[int] = None


class ProductResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: Money
    stock: int
    createdAt: datetime
    updatedAt: datetime


class RoleUpdate(BaseModel):
    role: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str
    createdAt: datetime
    updatedAt: datetime


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: Optional[object] = None


class ErrorBody(BaseModel):
    error: ErrorDetail

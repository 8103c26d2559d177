"""
catalog.py — Product Catalog Operations

Read access for everyone and create/update/delete for administrators.
Every datastore call goes through the retry executor.
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .database import id_in_range
from .db_models import Product
from .errors import InvalidProduct, OrderServiceError, ProductNotFound, Unexpected
from .logging_config import get_logger
from .models import ProductCreate, ProductResponse, ProductUpdate
from .retry import RetryPolicy

log = get_logger(__name__)


def to_response(product: Product) -> ProductResponse:
    return ProductResponse(
        id=product.id,
        name=product.name,
        description=product.description,
        price=product.price,
        stock=product.stock,
        createdAt=product.created_at,
        updatedAt=product.updated_at,
    )


def _check_fields(name=None, price=None, stock=None, require_name=False):
    if price is not None and Decimal(price) <= 0:
        raise InvalidProduct("Price must be greater than 0", code="INVALID_PRICE")
    if stock is not None and stock < 0:
        raise InvalidProduct("Stock cannot be negative", code="INVALID_STOCK")
    if require_name and not name:
        raise InvalidProduct("Product name is required", code="INVALID_NAME")


def _normalize(label: str, code: str, e: Exception):
    log.error(f"{label} failed: {e}", exc_info=True)
    return Unexpected(f"Failed to {label}", code=code)


def list_products(session_factory: sessionmaker, page: int = 1, page_size: int = 10,
                  retry_policy: Optional[RetryPolicy] = None) -> List[ProductResponse]:
    """Lists products that are in stock, one page at a time."""
    retry_policy = retry_policy or RetryPolicy()

    def _list():
        with session_factory() as session:
            query = (
                select(Product)
                .where(Product.stock > 0)
                .order_by(Product.id)
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            return [to_response(p) for p in session.scalars(query).all()]

    try:
        return retry_policy.run(_list, "fetch products")
    except OrderServiceError:
        raise
    except Exception as e:
        raise _normalize("fetch products", "PRODUCT_FETCH_FAILED", e) from e


def get_product(session_factory: sessionmaker, product_id: int,
                retry_policy: Optional[RetryPolicy] = None) -> ProductResponse:
    retry_policy = retry_policy or RetryPolicy()

    def _get():
        with session_factory() as session:
            product = session.get(Product, product_id) if id_in_range(product_id) else None
            if product is None:
                raise ProductNotFound(product_id)
            return to_response(product)

    try:
        return retry_policy.run(_get, "fetch product by id", give_up_on=(OrderServiceError,))
    except OrderServiceError:
        raise
    except Exception as e:
        raise _normalize("fetch product", "PRODUCT_FETCH_FAILED", e) from e


def create_product(session_factory: sessionmaker, data: ProductCreate,
                   retry_policy: Optional[RetryPolicy] = None) -> ProductResponse:
    """
    Adds a product to the catalog.

    Raises:
        InvalidProduct: If price <= 0, stock < 0 or the name is empty.
    """
    retry_policy = retry_policy or RetryPolicy()
    _check_fields(name=data.name, price=data.price, stock=data.stock, require_name=True)

    def _create():
        with session_factory() as session:
            with session.begin():
                product = Product(
                    name=data.name,
                    description=data.description,
                    price=data.price,
                    stock=data.stock,
                )
                session.add(product)
                session.flush()
                return to_response(product)

    try:
        product = retry_policy.run(_create, "create product")
    except OrderServiceError:
        raise
    except Exception as e:
        raise _normalize("create product", "PRODUCT_CREATION_FAILED", e) from e
    log.info(f"[Product: {product.id}] Created '{product.name}' (stock {product.stock}).")
    return product


def update_product(session_factory: sessionmaker, product_id: int, data: ProductUpdate,
                   retry_policy: Optional[RetryPolicy] = None) -> ProductResponse:
    """
    Applies the fields set in `data`.

    Raises:
        InvalidProduct: If a new price or stock is out of range.
        ProductNotFound: If the product does not exist.
    """
    retry_policy = retry_policy or RetryPolicy()
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    _check_fields(price=changes.get("price"), stock=changes.get("stock"))

    def _update():
        with session_factory() as session:
            with session.begin():
                product = session.get(Product, product_id) if id_in_range(product_id) else None
                if product is None:
                    raise ProductNotFound(product_id)
                for key, value in changes.items():
                    setattr(product, key, value)
                session.flush()
                return to_response(product)

    try:
        product = retry_policy.run(_update, "update product", give_up_on=(OrderServiceError,))
    except OrderServiceError:
        raise
    except Exception as e:
        raise _normalize("update product", "PRODUCT_UPDATE_FAILED", e) from e
    log.info(f"[Product: {product_id}] Updated fields: {sorted(changes)}")
    return product


def delete_product(session_factory: sessionmaker, product_id: int,
                   retry_policy: Optional[RetryPolicy] = None):
    """
    Removes a product.

    Raises:
        ProductNotFound: If the product does not exist.
        OrderServiceError (PRODUCT_IN_USE): If orders still reference it.
    """
    retry_policy = retry_policy or RetryPolicy()

    def _delete():
        with session_factory() as session:
            with session.begin():
                product = session.get(Product, product_id) if id_in_range(product_id) else None
                if product is None:
                    raise ProductNotFound(product_id)
                session.delete(product)

    try:
        retry_policy.run(_delete, "delete product", give_up_on=(OrderServiceError, IntegrityError))
    except OrderServiceError:
        raise
    except IntegrityError as e:
        raise OrderServiceError(
            "Product is referenced by existing orders",
            details=f"Product {product_id} cannot be deleted",
            code="PRODUCT_IN_USE",
            status=409,
        ) from e
    except Exception as e:
        raise _normalize("delete product", "PRODUCT_DELETE_FAILED", e) from e
    log.info(f"[Product: {product_id}] Deleted.")

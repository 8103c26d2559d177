"""
main.py — FastAPI Entry Point for the Order Service

This module provides the REST API of the order service. It wires the injected
collaborators (datastore session factory, identity verifier, retry policy)
into the request handlers and renders every error as a structured body.

Responsibilities:
    • Authenticate callers through the identity provider and register them locally
    • Create and read orders (transactional core in workflow.py)
    • Expose the product catalog, with admin-only management
    • Let admins change user roles
    • Provide system health information
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import catalog, config, users, workflow
from .clients import IdentityClient
from .database import create_engine_from_url, create_session_factory, init_db
from .db_models import UserRole
from .errors import AuthenticationFailed, Forbidden, OrderServiceError
from .inventory import LineItem
from .logging_config import get_logger, setup_logging
from .models import (
    NewOrderRequest,
    OrderResponse,
    ProductCreate,
    ProductResponse,
    ProductUpdate,
    RoleUpdate,
    UserResponse,
)
from .retry import RetryPolicy

setup_logging()
log = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# --- Dependencies ---
def get_session_factory(request: Request):
    return request.app.state.session_factory


def get_retry_policy(request: Request) -> RetryPolicy:
    return request.app.state.retry_policy


def get_identity_verifier(request: Request):
    return request.app.state.identity_verifier


def _bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationFailed("Token missing or invalid")
    return credentials.credentials


def get_current_user(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
        verifier=Depends(get_identity_verifier),
        session_factory=Depends(get_session_factory),
        retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> UserResponse:
    """
    Resolves the bearer token to a registered user.

    Raises:
        AuthenticationFailed: Missing/invalid token, or no local user for the subject id.
    """
    subject_id = verifier.verify(_bearer_token(credentials))
    user = users.find_user(session_factory, subject_id, retry_policy)
    if user is None:
        log.warning(f"[User: {subject_id}] Authenticated subject has no local user record.")
        raise AuthenticationFailed(
            "User not found",
            details="The token subject is not a registered user; call POST /api/auth/register first",
            code="USER_NOT_FOUND",
        )
    return user


def require_admin(user: UserResponse = Depends(get_current_user)) -> UserResponse:
    if user.role != UserRole.ADMIN.value:
        raise Forbidden("Administrator role required")
    return user


def _check_pagination(page: int, page_size: int):
    if page < 1 or page_size < 1:
        raise OrderServiceError(
            "page and pageSize must be greater than 0",
            code="INVALID_PAGINATION",
            status=400,
        )


# --- Error Handlers ---
async def handle_service_error(request: Request, exc: OrderServiceError):
    log.info(f"{request.method} {request.url.path} -> {exc.status} {exc.code}")
    return JSONResponse(status_code=exc.status, content=exc.to_dict())


async def handle_validation_error(request: Request, exc: RequestValidationError):
    details = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": {"code": "INVALID_REQUEST", "message": "Invalid request", "details": details}},
    )


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": f"HTTP_{exc.status_code}", "message": str(exc.detail), "details": None}},
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    log.critical(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_SERVER_ERROR",
                "message": "An unexpected server error occurred",
                "details": None,
            }
        },
    )


# --- Application Factory ---
def create_app(session_factory=None, identity_verifier=None, retry_policy: RetryPolicy = None) -> FastAPI:
    """
    Builds the FastAPI application.

    Args:
        session_factory: SQLAlchemy sessionmaker. Defaults to one bound to DATABASE_URL,
            whose schema is created on startup.
        identity_verifier: Object with `verify(token) -> subject_id` and `identify(token) -> dict`.
            Defaults to IdentityClient.
        retry_policy (RetryPolicy): Retry parameters. Defaults from config.
    """
    app = FastAPI(title="Order Service")

    retry_policy = retry_policy or RetryPolicy()
    engine = None
    if session_factory is None:
        engine = create_engine_from_url(config.DATABASE_URL)
        session_factory = create_session_factory(engine)

    app.state.session_factory = session_factory
    app.state.retry_policy = retry_policy
    app.state.identity_verifier = identity_verifier or IdentityClient(retry_policy=retry_policy)

    app.add_exception_handler(OrderServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    # Startup Event: ensure schema
    @app.on_event("startup")
    def on_startup():
        log.info("Order service starting...")
        if engine is not None:
            init_db(engine)

    @app.on_event("shutdown")
    def on_shutdown():
        close = getattr(app.state.identity_verifier, "close", None)
        if close is not None:
            close()

    # Health Check Endpoint
    @app.get("/health")
    def health_check():
        """
        Simple health check endpoint for monitoring systems and container orchestrators.

        Returns:
            dict: A basic JSON object indicating service availability.
        """
        return {"status": "ok"}

    # --- Registration ---
    @app.post("/api/auth/register", status_code=201, response_model=UserResponse)
    def register(
            credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
            verifier=Depends(get_identity_verifier),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        """
        Creates the local user record for the identity behind the bearer token.

        Returns:
            UserResponse: The new user (HTTP 201). 409 if already registered.
        """
        identity = verifier.identify(_bearer_token(credentials))
        return users.register_user(
            session_factory, identity["id"], identity.get("email"), identity.get("name"), retry_policy
        )

    # --- Orders ---
    @app.post("/api/orders", status_code=201, response_model=OrderResponse)
    def submit_order(
            body: NewOrderRequest,
            user: UserResponse = Depends(get_current_user),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        """
        Creates an order for the authenticated user.

        Stock is validated, the order and its items are persisted and stock is
        decremented in one transaction.

        Returns:
            OrderResponse: The created order (HTTP 201).
        """
        items = [LineItem(product_id=i.productId, quantity=i.quantity) for i in body.items]
        return workflow.create_order(session_factory, user.id, items, retry_policy)

    @app.get("/api/orders", response_model=List[OrderResponse])
    def list_my_orders(
            page: int = 1,
            pageSize: int = 10,
            user: UserResponse = Depends(get_current_user),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        _check_pagination(page, pageSize)
        return workflow.list_orders(session_factory, user.id, page, pageSize, retry_policy)

    @app.get("/api/orders/{order_id}", response_model=OrderResponse)
    def get_my_order(
            order_id: int,
            user: UserResponse = Depends(get_current_user),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        """Returns an order owned by the caller (403 for anyone else's order)."""
        order = workflow.get_order(session_factory, order_id, retry_policy)
        if order.userId != user.id:
            raise Forbidden("You are not allowed to access this order")
        return order

    # --- Products ---
    @app.get("/api/products", response_model=List[ProductResponse])
    def list_products(
            page: int = 1,
            pageSize: int = 10,
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        _check_pagination(page, pageSize)
        return catalog.list_products(session_factory, page, pageSize, retry_policy)

    @app.get("/api/products/{product_id}", response_model=ProductResponse)
    def get_product(
            product_id: int,
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        return catalog.get_product(session_factory, product_id, retry_policy)

    @app.post("/api/products", status_code=201, response_model=ProductResponse)
    def create_product(
            body: ProductCreate,
            admin: UserResponse = Depends(require_admin),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        return catalog.create_product(session_factory, body, retry_policy)

    @app.put("/api/products/{product_id}", response_model=ProductResponse)
    def update_product(
            product_id: int,
            body: ProductUpdate,
            admin: UserResponse = Depends(require_admin),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        return catalog.update_product(session_factory, product_id, body, retry_policy)

    @app.delete("/api/products/{product_id}", status_code=204)
    def delete_product(
            product_id: int,
            admin: UserResponse = Depends(require_admin),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        catalog.delete_product(session_factory, product_id, retry_policy)

    # --- Users ---
    @app.patch("/api/users/{user_id}/role", response_model=UserResponse)
    def change_role(
            user_id: str,
            body: RoleUpdate,
            admin: UserResponse = Depends(require_admin),
            session_factory=Depends(get_session_factory),
            retry_policy: RetryPolicy = Depends(get_retry_policy),
    ):
        return users.update_role(session_factory, user_id, body.role, retry_policy)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

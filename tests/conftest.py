"""pytest shared setup: on-disk SQLite datastore, seeded catalog and API client."""

import os

# No log file during tests; the default app at import gets an unused in-memory URL.
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from order_service.database import create_engine_from_url, create_session_factory, init_db
from order_service.db_models import Product, User, UserRole
from order_service.errors import AuthenticationFailed
from order_service.main import create_app
from order_service.retry import RetryPolicy

WIDGET, GADGET, LAST_UNIT, SOLD_OUT = 1, 2, 3, 4

USER_TOKEN = "token-alice"
OTHER_TOKEN = "token-bob"
ADMIN_TOKEN = "token-admin"
# Verified by the identity provider, but without a local user record
NEW_TOKEN = "token-carol"


class StubVerifier:
    """Identity verifier resolving fixed tokens to subject ids."""

    def __init__(self, tokens):
        self.tokens = tokens
        self.calls = 0

    def identify(self, token):
        self.calls += 1
        if token not in self.tokens:
            raise AuthenticationFailed("Invalid or expired token")
        subject_id = self.tokens[token]
        return {"id": subject_id, "email": f"{subject_id}@example.com", "name": subject_id.capitalize()}

    def verify(self, token):
        return self.identify(token)["id"]


@pytest.fixture
def engine(tmp_path):
    engine = create_engine_from_url(f"sqlite:///{tmp_path / 'orders.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def sleeps():
    """Waits requested by the retry executor, in seconds."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    return RetryPolicy(max_attempts=3, base_delay_ms=1, sleep=sleeps.append)


@pytest.fixture
def seed(session_factory):
    """Users alice/bob/admin and four products."""
    with session_factory() as session:
        with session.begin():
            session.add_all([
                User(id="alice", email="alice@example.com", name="Alice", role=UserRole.USER),
                User(id="bob", email="bob@example.com", name="Bob", role=UserRole.USER),
                User(id="admin", email="admin@example.com", name="Admin", role=UserRole.ADMIN),
                Product(id=WIDGET, name="Widget", price=Decimal("10.00"), stock=5),
                Product(id=GADGET, name="Gadget", price=Decimal("2.50"), stock=10),
                Product(id=LAST_UNIT, name="Last Unit", price=Decimal("99.99"), stock=1),
                Product(id=SOLD_OUT, name="Sold Out", price=Decimal("5.00"), stock=0),
            ])


@pytest.fixture
def stock_of(session_factory):
    def _stock_of(product_id):
        with session_factory() as session:
            return session.get(Product, product_id).stock
    return _stock_of


@pytest.fixture
def verifier():
    return StubVerifier({USER_TOKEN: "alice", OTHER_TOKEN: "bob", ADMIN_TOKEN: "admin", NEW_TOKEN: "carol"})


@pytest.fixture
def client(session_factory, retry_policy, verifier, seed):
    app = create_app(session_factory=session_factory, identity_verifier=verifier, retry_policy=retry_policy)
    with TestClient(app) as test_client:
        yield test_client


def auth(token):
    return {"Authorization": f"Bearer {token}"}

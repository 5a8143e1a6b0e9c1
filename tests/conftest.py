"""Pytest fixtures for storefront tests."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.auth import resolve_caller
from storefront.cart import InMemorySessionStore, get_session_store, price_lines
from storefront.config import Settings, get_settings
from storefront.database import Base, get_db, make_engine
from storefront.gateway import SandboxGateway, get_gateway
from storefront.main import app
from storefront.money import from_minor
from storefront.seed import ensure_seeded
from storefront.tables import Product, User

SIGNING_SECRET = "test_key_secret"

ADMIN_EMAIL = "admin@onemorepiece.com"
CUSTOMER_EMAIL = "demo@example.com"
OTHER_EMAIL = "other@example.com"

ADMIN_HEADERS = {"X-User-Email": ADMIN_EMAIL}
CUSTOMER_HEADERS = {"X-User-Email": CUSTOMER_EMAIL}
OTHER_HEADERS = {"X-User-Email": OTHER_EMAIL}

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


@pytest.fixture
def settings():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        payment_gateway="sandbox",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=SIGNING_SECRET,
        seed_on_startup=False,
    )


@pytest.fixture
def engine():
    """In-memory database shared by every session in a test."""
    engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    """Seeded session with a second customer for ownership checks."""
    session = session_factory()
    ensure_seeded(session)
    session.add(User(email=OTHER_EMAIL, name="Other Customer"))
    session.commit()
    yield session
    session.close()


@pytest.fixture
def customer(db):
    return resolve_caller(db, CUSTOMER_EMAIL)


@pytest.fixture
def other_customer(db):
    return resolve_caller(db, OTHER_EMAIL)


@pytest.fixture
def admin(db):
    return resolve_caller(db, ADMIN_EMAIL)


@pytest.fixture
def products(db):
    """Seeded products keyed by slug."""
    return {p.slug: p for p in db.scalars(select(Product))}


@pytest.fixture
def gateway():
    return SandboxGateway(key_id="rzp_test_key")


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def client(db, session_factory, settings, gateway, session_store):
    """Test client wired to the in-memory database and sandbox gateway."""

    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_session_store] = lambda: session_store

    yield TestClient(app)

    app.dependency_overrides.clear()


def order_payload(product, quantity=1, size="M", **overrides):
    """Checkout body for a single line priced at the product's live price."""
    totals = price_lines([(from_minor(product.price_minor), quantity)], 2500, 99)
    payload = {
        "items": [{"product_id": product.id, "quantity": quantity, "size": size}],
        "shipping_address": dict(ADDRESS),
        "payment_method": "upi",
        "subtotal": str(totals.subtotal),
        "shipping": str(totals.shipping),
        "total": str(totals.total),
    }
    payload.update(overrides)
    return payload

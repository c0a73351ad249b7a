"""Pytest fixtures for the storefront tests.

Every test gets its own SQLite file. Sessions are opened and closed around
each interaction, never held across calls: SQLite transactions take the
write lock up front, so a session left open would block the next one.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from coupons import create_coupon
from database import atomic, get_db, init_db, make_engine, make_sessionmaker
from main import app, create_access_token
from models import Coupon, Order, OrderItem, Product, utcnow
from orders import place_order
from schemas import CartItem, CouponType, CustomerInfo
from seed import seed


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'storefront-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Session factory bound to the test database."""
    return make_sessionmaker(engine)


@pytest.fixture
def seeded(db):
    """Demo data: users John (1), Jane (2), Admin (3); Broccoli, Oranges, Steaks; SAVE10."""
    with db() as session:
        created = seed(session)
    return created


@pytest.fixture
def extra(db, seeded):
    """Coupons and products for the edge cases."""
    with db() as session:
        with atomic(session, "seed edge cases"):
            create_coupon(session, "cap15", CouponType.PERCENTAGE, 15, max_discount=20)
            create_coupon(session, "FIVEOFF", CouponType.FIXED, 5, min_order=20)
            create_coupon(session, "FREEBIE", CouponType.FIXED, 100)
            create_coupon(session, "OLD", CouponType.PERCENTAGE, 50, expires_at=utcnow() - timedelta(days=1))
            create_coupon(session, "OFF", CouponType.FIXED, 1, is_active=False)
            # bypasses create_coupon, which refuses percentages over 100
            session.add(Coupon(code="BIG", type=CouponType.PERCENTAGE, value=Decimal("150")))
            session.add(
                Product(id="retired", name="Retired Item", price=Decimal("3.00"), stock=10, is_active=False)
            )


@pytest.fixture
def customer():
    return {"name": "Pat Doe", "email": "pat@example.com", "phone": "555-0100", "address": "1 Elm St"}


@pytest.fixture
def place(db, customer):
    """Place an order from ``[(product_id, qty), ...]`` in a fresh session."""

    def _place(items, claimed_total, customer_info=None, **kwargs):
        info = customer_info if customer_info is not None else CustomerInfo(**customer)
        with db() as session:
            return place_order(
                session,
                info,
                [CartItem(product_id=pid, quantity=qty) for pid, qty in items],
                claimed_total,
                **kwargs,
            )

    return _place


@pytest.fixture
def snapshot(db):
    """Everything an order placement may touch, for before/after comparisons."""

    def _snapshot():
        with db() as session:
            stocks = dict(session.execute(select(Product.id, Product.stock)).all())
            statuses = dict(session.execute(select(Order.id, Order.status)).all())
            items = session.execute(select(func.count()).select_from(OrderItem)).scalar_one()
        return stocks, statuses, items

    return _snapshot


@pytest.fixture
def stock_of(db):
    def _stock_of(product_id):
        with db() as session:
            return session.execute(select(Product.stock).where(Product.id == product_id)).scalar_one()

    return _stock_of


@pytest.fixture
def client(db):
    def override_get_db():
        session = db()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(seeded):
    admin = next(u for u in seeded["users"] if u.is_admin)
    return {"Authorization": f"Bearer {create_access_token({'sub': str(admin.id)})}"}


@pytest.fixture
def customer_headers(seeded):
    john = seeded["users"][0]
    return {"Authorization": f"Bearer {create_access_token({'sub': str(john.id)})}"}

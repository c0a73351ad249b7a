"""Seed the storefront with demo users, products and a coupon."""
import argparse
import logging
import os
from decimal import Decimal

from catalog import create_product, get_product
from coupons import create_coupon
from database import Base, SessionLocal, atomic, engine, init_db
from main import create_access_token
from models import User
from schemas import CouponType

logger = logging.getLogger(__name__)

USERS = [
    dict(email="john.doe@example.com", first_name="John", last_name="Doe", phone="555-0123",
         address="123 Main St, Anytown, ST 12345"),
    dict(email="jane.smith@example.com", first_name="Jane", last_name="Smith", phone="555-0456",
         address="456 Oak Ave, Somewhere, ST 67890"),
    dict(email="admin@example.com", first_name="Admin", last_name="User", phone="555-0789",
         address="789 Admin Blvd, AdminCity, ST 11111", is_admin=True),
]

PRODUCTS = [
    dict(product_id="broccoli", name="Broccoli", description="Fresh green broccoli", price=Decimal("5.20"), stock=15),
    dict(product_id="oranges", name="Oranges", description="Juicy sweet oranges", price=Decimal("9.95"), stock=25,
         is_featured=True),
    dict(product_id="steak", name="Steaks", description="Premium beef steaks", price=Decimal("8.32"), stock=8),
]


def seed(session) -> dict:
    """Insert the demo data in one transaction and return what was created."""
    with atomic(session, "seed database"):
        users = [User(**data) for data in USERS]
        session.add_all(users)
        session.flush()
        logger.info("Created %d users", len(users))

        products = [create_product(session, **data) for data in PRODUCTS]
        logger.info("Created %d products", len(products))

        coupon = create_coupon(
            session,
            code="SAVE10",
            type=CouponType.PERCENTAGE,
            value=Decimal("10"),
            description="10% off order",
        )
        logger.info("Coupon %s created", coupon.code)
    return {"users": users, "products": products, "coupon": coupon}


def main() -> None:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"), format="%(message)s")

    p = argparse.ArgumentParser(description="Seed the storefront database with demo data.")
    p.add_argument("--reset", action="store_true", help="Drop all tables before seeding")
    args = p.parse_args()

    if args.reset:
        Base.metadata.drop_all(engine)
    init_db()

    with SessionLocal() as session:
        if get_product(session, "steak") is not None:
            print("Database already seeded; use --reset to start over.")
            return
        session.rollback()
        created = seed(session)

    admin = next(u for u in created["users"] if u.is_admin)
    print("Admin token:", create_access_token({"sub": str(admin.id)}))


if __name__ == "__main__":
    main()

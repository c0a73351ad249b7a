"""Catalog store: the single source of truth for price and availability."""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select, update

from errors import DuplicateError, InsufficientStockError, ProductNotFoundError
from models import Product, utcnow

logger = logging.getLogger(__name__)


def get_product(session, product_id: str, lock: bool = False) -> Optional[Product]:
    """Point lookup. With ``lock`` the row stays locked until the transaction ends."""
    stmt = select(Product).where(Product.id == product_id)
    if lock:
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def get_product_by_name(session, name: str) -> Optional[Product]:
    stmt = select(Product).where(func.lower(Product.name) == name.strip().lower())
    return session.execute(stmt).scalar_one_or_none()


def list_products(session, featured: Optional[bool] = None, include_inactive: bool = False) -> List[Product]:
    stmt = select(Product)
    if not include_inactive:
        stmt = stmt.where(Product.is_active.is_(True))
    if featured is not None:
        stmt = stmt.where(Product.is_featured.is_(featured))
    stmt = stmt.order_by(Product.created_at.desc())
    return list(session.execute(stmt).scalars())


def create_product(
    session,
    name: str,
    price: Decimal,
    stock: int = 0,
    description: Optional[str] = None,
    is_active: bool = True,
    is_featured: bool = False,
    product_id: Optional[str] = None,
) -> Product:
    if get_product_by_name(session, name) is not None:
        raise DuplicateError("Product", name)
    product = Product(
        name=name.strip(),
        price=Decimal(price),
        stock=stock,
        description=description,
        is_active=is_active,
        is_featured=is_featured,
    )
    if product_id:
        product.id = product_id
    session.add(product)
    session.flush()
    return product


def _expire_cached_stock(session, product_id: str) -> None:
    cached = session.identity_map.get(session.identity_key(Product, product_id))
    if cached is not None:
        session.expire(cached, ["stock", "updated_at"])


def decrement_stock(session, product_id: str, quantity: int) -> None:
    """Take ``quantity`` units, failing instead of letting stock go negative.

    The WHERE clause is the compare-and-set: a concurrent checkout that got
    there first leaves no matching row.
    """
    result = session.execute(
        update(Product)
        .where(Product.id == product_id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        product = session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise ProductNotFoundError(product_id)
        raise InsufficientStockError(product.name, product.stock, quantity)
    _expire_cached_stock(session, product_id)
    logger.debug("Took %d of %s", quantity, product_id)


def increment_stock(session, product_id: str, quantity: int) -> None:
    result = session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(stock=Product.stock + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ProductNotFoundError(product_id)
    _expire_cached_stock(session, product_id)
    logger.debug("Returned %d of %s", quantity, product_id)

"""
Coupon evaluation.

``evaluate_coupon`` decides whether a code is usable for a subtotal.
``compute_discount`` is the pure discount rule shared with the cart tier.

An expired coupon found during evaluation is deactivated in the caller's
session. Whether that sticks depends on the caller's transaction: the
validation endpoint commits it, a failed checkout rolls it back and leaves
it to ``sweep_expired_coupons``.
"""
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Union

from sqlalchemy import or_, select, update

from database import atomic
from errors import (
    BelowMinimumError,
    CouponExpiredError,
    CouponInactiveError,
    CouponNotFoundError,
    DuplicateError,
    InvalidCouponValueError,
)
from models import Coupon, utcnow
from schemas import CouponType

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_money(value) -> Decimal:
    """Round to the currency scale."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def canonical_code(code: str) -> str:
    return code.strip().upper()


def naive_utc(moment: Optional[datetime]) -> Optional[datetime]:
    if moment is None or moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def compute_discount(
    coupon_type: Union[CouponType, str],
    value,
    subtotal,
    max_discount=None,
) -> Decimal:
    subtotal = Decimal(str(subtotal))
    value = Decimal(str(value))
    if CouponType(coupon_type) == CouponType.PERCENTAGE:
        discount = subtotal * value / HUNDRED
        if max_discount is not None and discount > Decimal(str(max_discount)):
            discount = Decimal(str(max_discount))
    else:
        discount = value
    return to_money(min(discount, subtotal))


def evaluate_coupon(session, code: str, subtotal, now: Optional[datetime] = None) -> Coupon:
    """Return the coupon if it can be applied to ``subtotal``, else raise why not."""
    now = naive_utc(now) or utcnow()
    code = canonical_code(code)
    coupon = session.execute(select(Coupon).where(Coupon.code == code)).scalar_one_or_none()
    if coupon is None:
        raise CouponNotFoundError(code)
    if not coupon.is_active:
        raise CouponInactiveError(code)
    if coupon.expires_at is not None and coupon.expires_at <= now:
        coupon.is_active = False
        session.flush()
        logger.info("Coupon %s expired at %s, deactivated", code, coupon.expires_at.isoformat())
        raise CouponExpiredError(code)
    if coupon.type == CouponType.PERCENTAGE and coupon.value > HUNDRED:
        raise InvalidCouponValueError(code, coupon.value)
    if Decimal(str(subtotal)) < (coupon.min_order or Decimal("0")):
        raise BelowMinimumError(code, coupon.min_order)
    return coupon


def discount_for(coupon: Coupon, subtotal) -> Decimal:
    return compute_discount(coupon.type, coupon.value, subtotal, coupon.max_discount)


def list_active_coupons(session, now: Optional[datetime] = None) -> List[Coupon]:
    now = naive_utc(now) or utcnow()
    stmt = (
        select(Coupon)
        .where(Coupon.is_active.is_(True), or_(Coupon.expires_at.is_(None), Coupon.expires_at > now))
        .order_by(Coupon.code)
    )
    return list(session.execute(stmt).scalars())


def sweep_expired_coupons(session, now: Optional[datetime] = None) -> int:
    """Deactivate every active coupon whose expiry has passed. Returns how many."""
    now = naive_utc(now) or utcnow()
    result = session.execute(
        update(Coupon)
        .where(Coupon.is_active.is_(True), Coupon.expires_at.is_not(None), Coupon.expires_at <= now)
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    session.expire_all()
    return result.rowcount


def create_coupon(
    session,
    code: str,
    type: CouponType,
    value,
    description: Optional[str] = None,
    min_order=Decimal("0"),
    max_discount=None,
    expires_at: Optional[datetime] = None,
    is_active: bool = True,
) -> Coupon:
    code = canonical_code(code)
    if session.execute(select(Coupon.id).where(Coupon.code == code)).first() is not None:
        raise DuplicateError("Coupon", code)
    coupon_type = CouponType(type)
    value = to_money(value)
    if coupon_type == CouponType.PERCENTAGE and value > HUNDRED:
        raise InvalidCouponValueError(code, value)
    coupon = Coupon(
        code=code,
        type=coupon_type,
        value=value,
        description=description,
        min_order=to_money(min_order or 0),
        max_discount=to_money(max_discount) if max_discount is not None else None,
        expires_at=naive_utc(expires_at),
        is_active=is_active,
    )
    session.add(coupon)
    session.flush()
    logger.info("Coupon %s created (%s %s)", code, coupon_type.value, value)
    return coupon


def validate_coupon(session, code: str, subtotal, now: Optional[datetime] = None) -> Coupon:
    """Evaluate a code on its own, committing the deactivation of an expired coupon."""
    expired = None
    with atomic(session, "validate coupon"):
        try:
            coupon = evaluate_coupon(session, code, subtotal, now)
        except CouponExpiredError as exc:
            expired = exc
    if expired is not None:
        raise expired
    return coupon

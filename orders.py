"""
Order placement and cancellation.

Both operations run in a single transaction on the session they are given:
either the order, its items and every stock change are committed together,
or nothing is. Stock is taken with a conditional decrement on locked rows,
so two checkouts racing for the last unit cannot both succeed.
"""
import logging
import math
from collections import OrderedDict
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import joinedload, selectinload

from catalog import decrement_stock, get_product, increment_stock
from coupons import CENT, discount_for, evaluate_coupon, to_money
from database import atomic
from errors import (
    AccessDeniedError,
    AlreadyCancelledError,
    AlreadyDeliveredError,
    AlreadyShippedError,
    AuthenticationRequiredError,
    CouponNotFoundError,
    EmptyCartError,
    IllegalTransitionError,
    InsufficientStockError,
    InvalidDiscountError,
    MissingCustomerInfoError,
    NegativeTotalError,
    OrderNotFoundError,
    ProductInactiveError,
    ProductNotFoundError,
    TotalMismatchError,
    UnknownCouponError,
    ValidationError,
)
from models import Order, OrderItem, User
from schemas import CartItem, CustomerInfo, OrderStatus

logger = logging.getLogger(__name__)

# Allowed status moves. Anything not listed is rejected.
TRANSITIONS: Dict[OrderStatus, Tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}

_CANCEL_REJECTIONS = {
    OrderStatus.SHIPPED: AlreadyShippedError,
    OrderStatus.DELIVERED: AlreadyDeliveredError,
    OrderStatus.CANCELLED: AlreadyCancelledError,
}

MAX_PAGE_SIZE = 100
MAX_USER_ID = 2 ** 63 - 1


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[OrderStatus(current)]


def check_cancellable(status: OrderStatus) -> None:
    """Raise the specific rejection unless an order in ``status`` may be cancelled."""
    status = OrderStatus(status)
    if can_transition(status, OrderStatus.CANCELLED):
        return
    raise _CANCEL_REJECTIONS[status]()


def _as_user_id(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        uid = int(str(value).strip())
    except ValueError:
        return None
    # ids are stored as signed 64-bit integers
    if not -MAX_USER_ID - 1 <= uid <= MAX_USER_ID:
        return None
    return uid


def resolve_user(session, user_id) -> Optional[User]:
    """Look up the ordering user; anything unresolvable means guest checkout."""
    if user_id is None or user_id == "":
        return None
    uid = _as_user_id(user_id)
    user = session.get(User, uid) if uid is not None else None
    if user is None:
        logger.warning("Invalid userId provided: %r, continuing as guest checkout", user_id)
    return user


def _missing_customer_fields(customer: Optional[CustomerInfo]) -> List[str]:
    if customer is None:
        return ["name", "email", "address"]
    return [field for field in ("name", "email", "address") if not getattr(customer, field)]


def _requested_quantities(items: Iterable[CartItem]) -> "OrderedDict[str, int]":
    requested: "OrderedDict[str, int]" = OrderedDict()
    for item in items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


def _order_query(order_id: str):
    return (
        select(Order)
        .where(Order.id == order_id)
        .options(
            joinedload(Order.user),
            selectinload(Order.order_items).joinedload(OrderItem.product),
        )
        .execution_options(populate_existing=True)
    )


def load_order(session, order_id: str) -> Optional[Order]:
    """Fetch an order with its user, items and product snapshots."""
    return session.execute(_order_query(order_id)).unique().scalar_one_or_none()


def place_order(
    session,
    customer: Optional[CustomerInfo],
    items: List[CartItem],
    claimed_total,
    user_id=None,
    coupon_code: Optional[str] = None,
    claimed_subtotal=None,
    claimed_discount=None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """Validate a cart against live prices, stock and the coupon, then commit it.

    Client-supplied prices are ignored; ``claimed_total`` must agree with the
    server's total to the cent. Returns the committed order, fully loaded.
    """
    if not items:
        raise EmptyCartError()
    missing = _missing_customer_fields(customer)
    if missing:
        raise MissingCustomerInfoError(missing)

    with atomic(session, "create order"):
        user = resolve_user(session, user_id)

        requested = _requested_quantities(items)
        products = {}
        # rows are locked in product id order
        for product_id in sorted(requested):
            product = get_product(session, product_id, lock=True)
            if product is None:
                raise ProductNotFoundError(product_id)
            products[product_id] = product

        subtotal = to_money(sum((products[i.product_id].price * i.quantity for i in items), Decimal("0")))
        coupon = None
        discount = Decimal("0.00")
        if coupon_code:
            try:
                coupon = evaluate_coupon(session, coupon_code, subtotal, now)
            except CouponNotFoundError as exc:
                raise UnknownCouponError(exc.coupon_code) from exc
            discount = discount_for(coupon, subtotal)
        total = to_money(subtotal - discount)

        if claimed_total is None:
            raise ValidationError("Order total is required")
        claimed_total = Decimal(str(claimed_total))
        if abs(claimed_total - total) > CENT:
            raise TotalMismatchError(claimed_total, total)

        if discount > subtotal:
            raise InvalidDiscountError(discount, subtotal)
        if claimed_discount is not None and claimed_subtotal is not None:
            if Decimal(str(claimed_discount)) > Decimal(str(claimed_subtotal)):
                raise InvalidDiscountError(Decimal(str(claimed_discount)), Decimal(str(claimed_subtotal)))
        if total < 0 or claimed_total < 0:
            raise NegativeTotalError(min(total, claimed_total))

        for product_id, quantity in requested.items():
            product = products[product_id]
            if not product.is_active:
                raise ProductInactiveError(product.name)
            if product.stock < quantity:
                raise InsufficientStockError(product.name, product.stock, quantity)

        order = Order(
            user_id=user.id if user else None,
            subtotal=subtotal,
            discount=discount,
            total=total,
            status=OrderStatus.PENDING,
            notes=notes or None,
            customer_name=customer.name,
            customer_email=str(customer.email),
            customer_phone=customer.phone,
            customer_address=customer.address,
        )
        if coupon is not None:
            order.coupon_code = coupon.code
            order.coupon_type = coupon.type.value
            order.coupon_value = coupon.value
            order.coupon_description = coupon.description
            order.coupon_discount = discount
        for item in items:
            order.order_items.append(
                OrderItem(
                    product_id=item.product_id,
                    quantity=item.quantity,
                    price=products[item.product_id].price,
                )
            )
        session.add(order)
        session.flush()

        for product_id in sorted(requested):
            decrement_stock(session, product_id, requested[product_id])

        order = load_order(session, order.id)

    logger.info(
        "Order %s placed: %d item(s), subtotal=%s discount=%s total=%s user=%s",
        order.id,
        len(order.order_items),
        order.subtotal,
        order.discount,
        order.total,
        order.user_id if order.user_id is not None else "guest",
    )
    return order


def cancel_order(session, order_id: str, requesting_user_id=None) -> Order:
    """Cancel a PENDING order and put its items back in stock."""
    with atomic(session, "cancel order"):
        order = session.execute(
            select(Order).where(Order.id == order_id).with_for_update(of=Order)
        ).unique().scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)

        # guest orders carry no owner to check against
        if requesting_user_id not in (None, "") and order.user_id is not None:
            if _as_user_id(requesting_user_id) != order.user_id:
                raise AccessDeniedError()

        check_cancellable(order.status)

        order.status = OrderStatus.CANCELLED
        for item in sorted(order.order_items, key=lambda i: i.product_id):
            increment_stock(session, item.product_id, item.quantity)
        session.flush()

        order = load_order(session, order_id)

    logger.info("Order %s cancelled, %d item(s) restocked", order.id, len(order.order_items))
    return order


def change_status(session, order_id: str, new_status: OrderStatus) -> Order:
    """Admin status change along the transition table."""
    new_status = OrderStatus(new_status)
    if new_status == OrderStatus.CANCELLED:
        return cancel_order(session, order_id)

    with atomic(session, "update order status"):
        order = session.execute(
            select(Order).where(Order.id == order_id).with_for_update(of=Order)
        ).unique().scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(order_id)
        current = OrderStatus(order.status)
        if not can_transition(current, new_status):
            raise IllegalTransitionError(current.value, new_status.value)
        order.status = new_status
        session.flush()
        order = load_order(session, order_id)

    logger.info("Order %s moved %s -> %s", order_id, current.value, new_status.value)
    return order


def list_orders(
    session,
    user_id=None,
    customer_email: Optional[str] = None,
    admin: bool = False,
    page: int = 1,
    limit: int = 20,
) -> Tuple[List[Order], dict]:
    """Page through orders visible to the caller, newest first."""
    if admin:
        criteria = []
    elif _as_user_id(user_id) is not None:
        criteria = [Order.user_id == _as_user_id(user_id)]
    elif customer_email:
        criteria = [Order.customer_email == customer_email, Order.user_id.is_(None)]
    else:
        raise ValidationError("Either userId, customerEmail, or admin access is required.")

    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 20), 1), MAX_PAGE_SIZE)

    with atomic(session, "fetch orders"):
        total = session.execute(select(func.count()).select_from(Order).where(*criteria)).scalar_one()
        orders = list(
            session.execute(
                select(Order)
                .where(*criteria)
                .options(
                    joinedload(Order.user),
                    selectinload(Order.order_items).joinedload(OrderItem.product),
                )
                .order_by(Order.created_at.desc(), Order.id)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .unique()
            .scalars()
        )

    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit),
    }
    return orders, pagination


def get_order_for(session, order_id: str, user_id=None, customer_email: Optional[str] = None) -> Order:
    """Fetch one order for its owner, identified by user id or customer email."""
    with atomic(session, "fetch order"):
        order = load_order(session, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)

    uid = _as_user_id(user_id)
    if uid is None and not customer_email:
        raise AuthenticationRequiredError()

    if uid is not None and order.user_id == uid:
        return order
    if customer_email:
        email = customer_email.strip().lower()
        if order.customer_email.lower() == email:
            return order
        if order.user is not None and order.user.email.lower() == email:
            return order
    raise AccessDeniedError()

"""
Client-side cart cache.

A local mirror of what the shopper has picked, used to show running totals
and to build the checkout payload. Prices, stock and the coupon check here
are whatever the client last saw; the order endpoint recomputes everything
and is the only authority.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from coupons import compute_discount, to_money
from schemas import CouponType

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CartLine:
    product_id: str
    name: str
    price: Decimal
    quantity: int
    stock: Optional[int] = None  # last stock level seen by the client


@dataclass(slots=True)
class AppliedCoupon:
    code: str
    type: CouponType
    value: Decimal
    description: Optional[str] = None
    min_order: Decimal = Decimal("0")
    max_discount: Optional[Decimal] = None

    @classmethod
    def from_api(cls, data: dict) -> "AppliedCoupon":
        """Build from a coupon as returned by the validation endpoint."""
        max_discount = data.get("maxDiscount")
        return cls(
            code=data["code"],
            type=CouponType(data["type"]),
            value=Decimal(str(data["value"])),
            description=data.get("description"),
            min_order=Decimal(str(data.get("minOrder") or 0)),
            max_discount=Decimal(str(max_discount)) if max_discount is not None else None,
        )


class Cart:
    def __init__(self) -> None:
        self.lines: Dict[str, CartLine] = {}
        self.coupon: Optional[AppliedCoupon] = None
        self.coupon_error = ""

    def add(self, product_id: str, name: str, price, quantity: int = 1, stock: Optional[int] = None) -> CartLine:
        line = self.lines.get(product_id)
        if line is None:
            line = CartLine(product_id=product_id, name=name, price=Decimal(str(price)), quantity=0, stock=stock)
            self.lines[product_id] = line
        else:
            line.price = Decimal(str(price))
            if stock is not None:
                line.stock = stock
        self.set_quantity(product_id, line.quantity + quantity)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> None:
        line = self.lines.get(product_id)
        if line is None:
            return
        if line.stock is not None and quantity > line.stock:
            logger.debug("Clamping %s to %d in stock", line.name, line.stock)
            quantity = line.stock
        if quantity <= 0:
            del self.lines[product_id]
        else:
            line.quantity = quantity

    def remove(self, product_id: str) -> None:
        self.lines.pop(product_id, None)

    def clear(self) -> None:
        self.lines.clear()
        self.coupon = None
        self.coupon_error = ""

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines.values())

    @property
    def subtotal(self) -> Decimal:
        return to_money(sum((line.price * line.quantity for line in self.lines.values()), Decimal("0")))

    @property
    def discount(self) -> Decimal:
        if self.coupon is None:
            return Decimal("0.00")
        return compute_discount(self.coupon.type, self.coupon.value, self.subtotal, self.coupon.max_discount)

    @property
    def total(self) -> Decimal:
        return to_money(self.subtotal - self.discount)

    def apply_coupon(self, coupon: AppliedCoupon) -> bool:
        """Attach a coupon after the same minimum-order check the server makes."""
        if self.subtotal < coupon.min_order:
            self.coupon_error = f"Minimum order of ${coupon.min_order:.2f} required for coupon {coupon.code}."
            return False
        self.coupon = coupon
        self.coupon_error = ""
        return True

    def remove_coupon(self) -> None:
        self.coupon = None
        self.coupon_error = ""

    def to_order_payload(self, customer: dict, user_id=None, notes: Optional[str] = None) -> dict:
        """JSON body for ``POST /orders``."""
        items: List[dict] = [
            {"productId": line.product_id, "quantity": line.quantity, "price": float(line.price)}
            for line in self.lines.values()
        ]
        coupon = None
        if self.coupon is not None:
            coupon = {
                "code": self.coupon.code,
                "discount": float(self.discount),
                "type": self.coupon.type.value,
                "value": float(self.coupon.value),
                "description": self.coupon.description,
            }
        return {
            "userId": user_id,
            "customerInfo": customer,
            "cartItems": items,
            "coupon": coupon,
            "subtotal": float(self.subtotal),
            "discount": float(self.discount),
            "total": float(self.total),
            "notes": notes,
        }

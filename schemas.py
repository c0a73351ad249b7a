"""
API schemas for the storefront.

Requests and responses use camelCase keys on the wire; Python code uses the
snake_case field names. Money is Decimal internally and a JSON number outside.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CouponType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class APIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Requests

class CustomerInfo(APIModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None

    @field_validator("name", "email", "phone", "address", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class CartItem(APIModel):
    product_id: str
    quantity: int = Field(ge=1)
    price: Optional[Decimal] = Field(default=None, ge=0)  # advisory, the server reprices


class CouponDescriptor(APIModel):
    code: str
    discount: Optional[Decimal] = None
    type: Optional[CouponType] = None
    value: Optional[Decimal] = None
    description: Optional[str] = None


class OrderCreate(APIModel):
    user_id: Optional[Union[int, str]] = None
    customer_info: Optional[CustomerInfo] = None
    cart_items: List[CartItem] = []
    coupon: Optional[CouponDescriptor] = None
    subtotal: Optional[Decimal] = None
    discount: Optional[Decimal] = None
    total: Optional[Decimal] = None
    notes: Optional[str] = None


class CancelRequest(APIModel):
    user_id: Optional[Union[int, str]] = None


class StatusChange(APIModel):
    status: OrderStatus


class ProductCreate(APIModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    is_featured: bool = False


class CouponCreate(APIModel):
    code: str = Field(..., min_length=1, max_length=64)
    type: CouponType
    value: Decimal = Field(gt=0)
    description: Optional[str] = None
    min_order: Decimal = Field(default=Decimal("0"), ge=0)
    max_discount: Optional[Decimal] = Field(default=None, gt=0)
    expires_at: Optional[datetime] = None
    is_active: bool = True


# Responses

class ProductOut(APIModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Money
    stock: int
    is_active: bool
    is_featured: bool
    created_at: datetime
    updated_at: datetime


class CouponOut(APIModel):
    id: str
    code: str
    type: CouponType
    value: Money
    description: Optional[str] = None
    min_order: Money
    max_discount: Optional[Money] = None
    expires_at: Optional[datetime] = None
    is_active: bool


class UserOut(APIModel):
    id: int
    email: str
    first_name: str
    last_name: str


class OrderItemOut(APIModel):
    id: str
    product_id: str
    quantity: int
    price: Money
    product: ProductOut


class OrderOut(APIModel):
    id: str
    user_id: Optional[int] = None
    user: Optional[UserOut] = None
    subtotal: Money
    discount: Money
    total: Money
    status: OrderStatus
    notes: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_type: Optional[str] = None
    coupon_value: Optional[Money] = None
    coupon_description: Optional[str] = None
    coupon_discount: Optional[Money] = None
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    customer_address: str
    order_items: List[OrderItemOut] = []
    created_at: datetime
    updated_at: datetime


class OrderResponse(APIModel):
    success: bool = True
    order: OrderOut
    message: str


class Pagination(APIModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderListResponse(APIModel):
    orders: List[OrderOut]
    pagination: Pagination

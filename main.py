import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import coupons
import orders
from database import atomic, get_db, init_db
from errors import StorefrontError
from models import User
from schemas import (
    CancelRequest,
    CouponCreate,
    CouponOut,
    OrderCreate,
    OrderListResponse,
    OrderOut,
    OrderResponse,
    Pagination,
    ProductCreate,
    ProductOut,
    StatusChange,
)

logger = logging.getLogger(__name__)

# Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 12))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

bearer_scheme = HTTPBearer(auto_error=False)


def configure_logging():
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "code": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        where = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{where}: {err.get('msg')}" if where else err.get("msg", "invalid input"))
    return JSONResponse(status_code=400, content={"error": "; ".join(problems), "code": "validation_error"})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Helper functions for auth

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            raise credentials_exception
        user_id = int(subject)
    except (JWTError, ValueError):
        raise credentials_exception

    with atomic(db, "authenticate admin"):
        user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


@app.get("/")
def root():
    return {"message": "Storefront API is running!"}


# Simple health and db test
@app.get("/test")
def test_database(db=Depends(get_db)):
    try:
        with atomic(db, "ping database"):
            db.execute(text("SELECT 1"))
        return {"backend": "ok", "db": "ok"}
    except StorefrontError as e:
        return {"backend": "ok", "db": f"error: {e}"}


# Products public endpoints
@app.get("/products", response_model=List[ProductOut])
def list_products(featured: Optional[bool] = None, db=Depends(get_db)):
    with atomic(db, "fetch products"):
        return catalog.list_products(db, featured=featured)


@app.get("/products/by-name/{name}", response_model=ProductOut)
def get_product_by_name(name: str, db=Depends(get_db)):
    with atomic(db, "fetch product"):
        product = catalog.get_product_by_name(db, name)
    if not product or not product.is_active:
        raise HTTPException(404, "Product not found")
    return product


@app.get("/products/{product_id}", response_model=ProductOut)
def get_product(product_id: str, db=Depends(get_db)):
    with atomic(db, "fetch product"):
        product = catalog.get_product(db, product_id)
    if not product or not product.is_active:
        raise HTTPException(404, "Product not found")
    return product


# Coupons public endpoints
@app.get("/coupons", response_model=List[CouponOut])
def list_coupons(db=Depends(get_db)):
    with atomic(db, "fetch coupons"):
        return coupons.list_active_coupons(db)


@app.get("/coupons/{code}/validate", response_model=CouponOut)
def validate_coupon(code: str, subtotal: Decimal = Query(..., ge=0), db=Depends(get_db)):
    return coupons.validate_coupon(db, code, subtotal)


# Orders public endpoints
@app.post("/orders", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def create_order(payload: OrderCreate, db=Depends(get_db)):
    order = orders.place_order(
        db,
        customer=payload.customer_info,
        items=payload.cart_items,
        claimed_total=payload.total,
        user_id=payload.user_id,
        coupon_code=payload.coupon.code if payload.coupon else None,
        claimed_subtotal=payload.subtotal,
        claimed_discount=payload.discount,
        notes=payload.notes,
    )
    return OrderResponse(order=OrderOut.model_validate(order), message="Order created successfully!")


@app.get("/orders", response_model=OrderListResponse)
def list_orders(
    user_id: Optional[str] = Query(None, alias="userId"),
    customer_email: Optional[str] = Query(None, alias="customerEmail"),
    is_admin: bool = Query(False, alias="isAdmin"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=orders.MAX_PAGE_SIZE),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db=Depends(get_db),
):
    if is_admin:
        get_current_admin(credentials, db)
    found, pagination = orders.list_orders(
        db, user_id=user_id, customer_email=customer_email, admin=is_admin, page=page, limit=limit
    )
    return OrderListResponse(
        orders=[OrderOut.model_validate(o) for o in found],
        pagination=Pagination(**pagination),
    )


@app.get("/orders/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    customer_email: Optional[str] = Query(None, alias="customerEmail"),
    db=Depends(get_db),
):
    return orders.get_order_for(db, order_id, user_id=user_id, customer_email=customer_email)


@app.put("/orders/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(order_id: str, payload: Optional[CancelRequest] = Body(None), db=Depends(get_db)):
    order = orders.cancel_order(db, order_id, requesting_user_id=payload.user_id if payload else None)
    return OrderResponse(order=OrderOut.model_validate(order), message="Order cancelled successfully")


# Admin endpoints
@app.post("/admin/products", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def admin_create_product(product: ProductCreate, db=Depends(get_db), admin=Depends(get_current_admin)):
    with atomic(db, "create product"):
        created = catalog.create_product(db, **product.model_dump())
    logger.info("Admin %s created product %s", admin.id, created.id)
    return created


@app.post("/admin/coupons", response_model=CouponOut, status_code=status.HTTP_201_CREATED)
def admin_create_coupon(coupon: CouponCreate, db=Depends(get_db), admin=Depends(get_current_admin)):
    with atomic(db, "create coupon"):
        created = coupons.create_coupon(db, **coupon.model_dump())
    logger.info("Admin %s created coupon %s", admin.id, created.code)
    return created


@app.post("/admin/coupons/sweep")
def admin_sweep_coupons(db=Depends(get_db), admin=Depends(get_current_admin)):
    with atomic(db, "disable expired coupons"):
        count = coupons.sweep_expired_coupons(db)
    return {"deactivated": count}


@app.put("/admin/orders/{order_id}/status", response_model=OrderResponse)
def admin_change_status(order_id: str, payload: StatusChange, db=Depends(get_db), admin=Depends(get_current_admin)):
    order = orders.change_status(db, order_id, payload.status)
    return OrderResponse(order=OrderOut.model_validate(order), message=f"Order status set to {order.status.value}")


if __name__ == "__main__":
    import uvicorn
    configure_logging()
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)

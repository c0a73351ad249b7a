"""Tests for the HTTP API."""
from datetime import datetime, timedelta, timezone

import pytest

from cart import AppliedCoupon, Cart


@pytest.fixture
def order_payload(customer):
    return {
        "customerInfo": customer,
        "cartItems": [{"productId": "steak", "quantity": 1, "price": 8.32}],
        "coupon": {"code": "SAVE10", "discount": 0.83, "type": "PERCENTAGE", "value": 10, "description": "10% off order"},
        "subtotal": 8.32,
        "discount": 0.83,
        "total": 7.49,
        "notes": "Quick steak order",
    }


class TestHealth:
    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "running" in response.json()["message"]

    def test_database_check(self, client, seeded):
        assert client.get("/test").json() == {"backend": "ok", "db": "ok"}


class TestCatalog:
    def test_list_products(self, client, extra):
        names = {p["name"] for p in client.get("/products").json()}
        assert names == {"Broccoli", "Oranges", "Steaks"}

    def test_featured_filter(self, client, seeded):
        response = client.get("/products", params={"featured": "true"})
        assert [p["name"] for p in response.json()] == ["Oranges"]

    def test_get_product(self, client, seeded):
        data = client.get("/products/steak").json()
        assert data["price"] == 8.32
        assert data["stock"] == 8
        assert data["isActive"] is True

    def test_inactive_product_is_hidden(self, client, extra):
        response = client.get("/products/retired")
        assert response.status_code == 404
        assert response.json() == {"error": "Product not found"}

    def test_by_name_ignores_case(self, client, seeded):
        assert client.get("/products/by-name/steaks").json()["id"] == "steak"


class TestPlaceOrder:
    def test_end_to_end(self, client, seeded, order_payload):
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Order created successfully!"

        order = body["order"]
        assert order["subtotal"] == 8.32
        assert order["discount"] == 0.83
        assert order["total"] == 7.49
        assert order["status"] == "PENDING"
        assert order["userId"] is None
        assert order["couponCode"] == "SAVE10"
        assert order["customerEmail"] == "pat@example.com"
        assert order["orderItems"][0]["product"]["name"] == "Steaks"
        assert order["orderItems"][0]["price"] == 8.32

        assert client.get("/products/steak").json()["stock"] == 7

    def test_signed_in_user(self, client, seeded, order_payload):
        order_payload["userId"] = seeded["users"][0].id
        order = client.post("/orders", json=order_payload).json()["order"]
        assert order["userId"] == seeded["users"][0].id
        assert order["user"]["firstName"] == "John"

    def test_oversized_user_id_checks_out_as_guest(self, client, seeded, order_payload):
        order_payload["userId"] = 10 ** 20
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 201
        assert response.json()["order"]["userId"] is None
        assert client.get("/products/steak").json()["stock"] == 7

    def test_unknown_coupon_is_a_bad_request(self, client, seeded, order_payload):
        order_payload["coupon"] = {"code": "nope"}
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid coupon code: NOPE", "code": "unknown_coupon"}
        assert client.get("/products/steak").json()["stock"] == 8

    def test_empty_cart(self, client, seeded, order_payload):
        order_payload["cartItems"] = []
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json()["error"] == "Cart items are required. Your cart was empty."
        assert response.json()["code"] == "empty_cart"

    def test_missing_email(self, client, seeded, order_payload):
        order_payload["customerInfo"]["email"] = ""
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json()["code"] == "missing_customer_info"

    def test_zero_quantity_is_a_bad_request(self, client, seeded, order_payload):
        order_payload["cartItems"][0]["quantity"] = 0
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert "quantity" in response.json()["error"]

    def test_total_mismatch(self, client, seeded, order_payload):
        order_payload["total"] = 6.00
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json()["code"] == "total_mismatch"
        assert client.get("/products/steak").json()["stock"] == 8

    def test_out_of_stock(self, client, seeded, order_payload):
        order_payload["cartItems"][0]["quantity"] = 9
        order_payload["total"] = 67.39
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient stock for Steaks. Available: 8, Requested: 9"

    def test_unknown_product(self, client, seeded, order_payload):
        order_payload["cartItems"][0]["productId"] = "caviar"
        response = client.post("/orders", json=order_payload)
        assert response.status_code == 400
        assert response.json()["error"] == "Product not found: caviar"


class TestCoupons:
    def test_validate(self, client, seeded):
        response = client.get("/coupons/save10/validate", params={"subtotal": "8.32"})
        assert response.status_code == 200
        assert response.json()["code"] == "SAVE10"
        assert response.json()["type"] == "PERCENTAGE"

    def test_unknown(self, client, seeded):
        response = client.get("/coupons/nope/validate", params={"subtotal": "10"})
        assert response.status_code == 404
        assert response.json()["error"] == "Invalid coupon code: NOPE"

    def test_below_minimum(self, client, extra):
        response = client.get("/coupons/FIVEOFF/validate", params={"subtotal": "12.5"})
        assert response.status_code == 400
        assert "$20.00" in response.json()["error"]

    def test_subtotal_is_required(self, client, seeded):
        assert client.get("/coupons/SAVE10/validate").status_code == 400

    def test_expired_coupon_is_deactivated(self, client, extra):
        response = client.get("/coupons/OLD/validate", params={"subtotal": "100"})
        assert response.status_code == 400
        assert response.json()["code"] == "coupon_expired"

        again = client.get("/coupons/OLD/validate", params={"subtotal": "100"})
        assert again.json()["code"] == "coupon_inactive"

    def test_listing(self, client, extra):
        codes = {c["code"] for c in client.get("/coupons").json()}
        assert codes == {"SAVE10", "CAP15", "FIVEOFF", "FREEBIE", "BIG"}


class TestOrderAccess:
    @pytest.fixture
    def placed(self, client, seeded, order_payload):
        order_payload["userId"] = seeded["users"][0].id
        return client.post("/orders", json=order_payload).json()["order"]

    def test_list_by_user(self, client, seeded, placed):
        response = client.get("/orders", params={"userId": seeded["users"][0].id})
        assert response.status_code == 200
        body = response.json()
        assert [o["id"] for o in body["orders"]] == [placed["id"]]
        assert body["pagination"] == {"page": 1, "limit": 20, "total": 1, "pages": 1}

    def test_list_needs_a_filter(self, client, placed):
        response = client.get("/orders")
        assert response.status_code == 400
        assert response.json()["error"] == "Either userId, customerEmail, or admin access is required."

    def test_oversized_user_id_is_not_a_filter(self, client, placed):
        response = client.get("/orders", params={"userId": "100000000000000000000"})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_admin_listing_needs_a_token(self, client, placed):
        assert client.get("/orders", params={"isAdmin": "true"}).status_code == 401

    def test_admin_listing_refuses_customers(self, client, placed, customer_headers):
        response = client.get("/orders", params={"isAdmin": "true"}, headers=customer_headers)
        assert response.status_code == 403

    def test_admin_listing(self, client, placed, admin_headers):
        response = client.get("/orders", params={"isAdmin": "true"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1

    def test_get_needs_identity(self, client, placed):
        assert client.get(f"/orders/{placed['id']}").status_code == 401

    def test_get_by_owner(self, client, seeded, placed):
        response = client.get(f"/orders/{placed['id']}", params={"userId": seeded["users"][0].id})
        assert response.status_code == 200
        assert response.json()["id"] == placed["id"]

    def test_get_by_stranger(self, client, placed):
        response = client.get(f"/orders/{placed['id']}", params={"customerEmail": "mallory@example.com"})
        assert response.status_code == 403

    def test_get_missing(self, client, placed):
        assert client.get("/orders/nope", params={"userId": 1}).status_code == 404


class TestCancel:
    @pytest.fixture
    def placed(self, client, seeded, order_payload):
        order_payload["userId"] = seeded["users"][0].id
        return client.post("/orders", json=order_payload).json()["order"]

    def test_cancel_restocks(self, client, seeded, placed):
        response = client.put(f"/orders/{placed['id']}/cancel", json={"userId": seeded["users"][0].id})
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "CANCELLED"
        assert response.json()["message"] == "Order cancelled successfully"
        assert client.get("/products/steak").json()["stock"] == 8

    def test_second_cancel_is_an_error(self, client, placed):
        assert client.put(f"/orders/{placed['id']}/cancel").status_code == 200
        response = client.put(f"/orders/{placed['id']}/cancel")
        assert response.status_code == 400
        assert "already been cancelled" in response.json()["error"]
        assert client.get("/products/steak").json()["stock"] == 8

    def test_wrong_owner(self, client, seeded, placed):
        response = client.put(f"/orders/{placed['id']}/cancel", json={"userId": seeded["users"][1].id})
        assert response.status_code == 403
        assert client.get("/products/steak").json()["stock"] == 7

    def test_missing_order(self, client, seeded):
        response = client.put("/orders/nope/cancel", json={})
        assert response.status_code == 404
        assert response.json()["error"] == "Order not found"

    def test_shipped_order(self, client, placed, admin_headers):
        shipped = client.put(f"/admin/orders/{placed['id']}/status", json={"status": "SHIPPED"}, headers=admin_headers)
        assert shipped.status_code == 200
        assert shipped.json()["order"]["status"] == "SHIPPED"

        response = client.put(f"/orders/{placed['id']}/cancel")
        assert response.status_code == 400
        assert response.json()["code"] == "already_shipped"
        assert client.get("/products/steak").json()["stock"] == 7


class TestAdmin:
    def test_create_product(self, client, seeded, admin_headers):
        response = client.post(
            "/admin/products",
            json={"name": "Salmon", "price": 12.5, "stock": 4, "isFeatured": True},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["isFeatured"] is True

    def test_product_names_are_unique_ignoring_case(self, client, seeded, admin_headers):
        response = client.post("/admin/products", json={"name": "STEAKS", "price": 1}, headers=admin_headers)
        assert response.status_code == 409

    def test_create_coupon(self, client, seeded, admin_headers):
        expires = (datetime.now(timezone.utc) + timedelta(days=30)).isoformat()
        response = client.post(
            "/admin/coupons",
            json={"code": "spring", "type": "FIXED", "value": 3, "minOrder": 15, "expiresAt": expires},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["code"] == "SPRING"
        assert response.json()["minOrder"] == 15.0

    def test_duplicate_coupon(self, client, seeded, admin_headers):
        response = client.post(
            "/admin/coupons", json={"code": "save10", "type": "FIXED", "value": 3}, headers=admin_headers
        )
        assert response.status_code == 409

    def test_sweep(self, client, extra, admin_headers):
        response = client.post("/admin/coupons/sweep", headers=admin_headers)
        assert response.json() == {"deactivated": 1}

    def test_requires_admin(self, client, seeded, customer_headers):
        assert client.post("/admin/coupons/sweep").status_code == 401
        assert client.post("/admin/coupons/sweep", headers=customer_headers).status_code == 403
        assert client.post("/admin/coupons/sweep", headers={"Authorization": "Bearer junk"}).status_code == 401

    def test_illegal_status_change(self, client, seeded, order_payload, admin_headers):
        order = client.post("/orders", json=order_payload).json()["order"]
        response = client.put(f"/admin/orders/{order['id']}/status", json={"status": "DELIVERED"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["code"] == "illegal_transition"


def test_cart_checkout_round_trip(client, seeded, customer):
    """The advisory cart builds a payload the server accepts unchanged."""
    products = {p["id"]: p for p in client.get("/products").json()}
    cart = Cart()
    for product_id, quantity in (("steak", 2), ("oranges", 1)):
        p = products[product_id]
        cart.add(p["id"], p["name"], p["price"], quantity, stock=p["stock"])

    coupon = client.get("/coupons/SAVE10/validate", params={"subtotal": str(cart.subtotal)}).json()
    assert cart.apply_coupon(AppliedCoupon.from_api(coupon))

    response = client.post("/orders", json=cart.to_order_payload(customer))
    assert response.status_code == 201
    assert response.json()["order"]["total"] == float(cart.total)

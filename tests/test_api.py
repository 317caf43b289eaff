from meatcart.extensions import db
from meatcart.model import Cart, DeliveryBoy, Notification, Order, Product
from meatcart.services import order_service

from .conftest import CHECKOUT


def test_health(client):
    r = client.get("/")
    assert r.status_code == 200
    assert r.get_json()["success"] is True


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.get_json()["success"] is False


def test_missing_token(client):
    r = client.get("/api/cart")
    body = r.get_json()
    assert r.status_code == 401
    assert body["success"] is False
    assert "message" in body


def test_register_and_login(client):
    r = client.post("/api/auth/register", json={"email": "New@Example.com", "password": "secret123", "name": "New"})
    assert r.status_code == 201
    assert r.get_json()["data"]["user"]["role"] == "user"

    r = client.post("/api/auth/register", json={"email": "new@example.com", "password": "secret123", "name": "Dup"})
    assert r.status_code == 409

    r = client.post("/api/auth/login", json={"email": "new@example.com", "password": "wrong-pass"})
    assert r.status_code == 401

    r = client.post("/api/auth/login", json={"email": "new@example.com", "password": "secret123"})
    token = r.get_json()["data"]["token"]
    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.get_json()["data"]["user"]["email"] == "new@example.com"


def test_delivery_login_requires_approval(client, courier):
    courier.is_approved = False
    db.session.commit()
    r = client.post("/api/auth/delivery/login", json={"email": courier.email, "password": "secret123"})
    assert r.status_code == 403

    courier.is_approved = True
    db.session.commit()
    r = client.post("/api/auth/delivery/login", json={"email": courier.email, "password": "secret123"})
    assert r.status_code == 200
    assert r.get_json()["data"]["token"]


def test_cart_flow_with_coupon(client, customer, products, welcome10, auth_headers):
    h = auth_headers(customer)
    r = client.post("/api/cart/add", json={"product_id": products["chicken"].id, "quantity": 2}, headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["cart"]["totals"]["subtotal"] == 600.0

    r = client.post("/api/cart/apply-coupon", json={"code": "WELCOME10"}, headers=h)
    body = r.get_json()
    assert r.status_code == 200
    assert body["data"]["discount"] == 60.0
    assert body["data"]["cart"]["totals"]["final_amount"] == 540.0

    r = client.get("/api/cart/summary", headers=h)
    assert r.get_json()["data"]["summary"]["formatted_total"] == "₹540.00"

    r = client.delete("/api/cart/remove-coupon", headers=h)
    assert r.get_json()["data"]["cart"]["applied_coupon"] is None

    r = client.delete("/api/cart/remove-coupon", headers=h)
    assert r.status_code == 400


def test_cart_errors(client, customer, products, auth_headers):
    h = auth_headers(customer)
    r = client.post("/api/cart/add", json={"product_id": 999, "quantity": 1}, headers=h)
    assert r.status_code == 404

    r = client.post("/api/cart/add", json={"product_id": products["fish"].id, "quantity": 50}, headers=h)
    assert r.status_code == 400
    assert r.get_json()["message"] == "Only 5 items available"

    r = client.post("/api/cart/apply-coupon", json={"code": "NOPE"}, headers=h)
    assert r.status_code == 400  # cart is empty


def test_checkout_and_customer_views(client, customer, other_customer, products, auth_headers):
    h = auth_headers(customer)
    client.post("/api/cart/add", json={"product_id": products["fish"].id, "quantity": 2}, headers=h)

    r = client.post("/api/orders", json=CHECKOUT, headers=h)
    assert r.status_code == 201
    order = r.get_json()["data"]["order"]
    assert order["status"] == "pending"
    assert order["pricing"]["total"] == 450.0
    assert [e["status"] for e in order["status_history"]] == ["pending"]

    r = client.get("/api/orders", headers=h)
    assert r.get_json()["data"]["pagination"]["total"] == 1

    r = client.get(f"/api/orders/{order['id']}", headers=auth_headers(other_customer))
    assert r.status_code == 403

    r = client.patch(f"/api/orders/{order['id']}/status", json={"status": "preparing"}, headers=h)
    assert r.status_code == 403

    r = client.get("/api/notifications/unread-count", headers=h)
    assert r.get_json()["data"]["unread_count"] == 1

    r = client.patch(f"/api/orders/{order['id']}/cancel", json={"reason": "Ordered by mistake"}, headers=h)
    assert r.status_code == 200
    db.session.expire_all()
    assert db.session.get(Product, products["fish"].id).quantity == 5


def test_admin_assign_and_courier_delivery(client, customer, admin, courier, courier_b, products,
                                           place_order, auth_headers):
    order = place_order(customer, {products["chicken"]: 2})

    r = client.patch(f"/api/orders/{order.id}/assign", json={"delivery_boy_id": courier.id},
                     headers=auth_headers(admin))
    assert r.status_code == 200
    assert r.get_json()["data"]["order"]["delivery"]["assigned_to"]["id"] == courier.id

    r = client.post(f"/api/delivery/orders/{order.id}/accept", headers=auth_headers(courier_b))
    assert r.status_code == 409

    hc = auth_headers(courier)
    r = client.get("/api/delivery/orders/assigned", headers=hc)
    assert r.get_json()["data"]["count"] == 1

    r = client.put(f"/api/delivery/orders/{order.id}/out-for-delivery", json={}, headers=hc)
    assert r.status_code == 200

    r = client.put(f"/api/delivery/orders/{order.id}/delivered", json={"notes": "Handed over"}, headers=hc)
    body = r.get_json()
    assert r.status_code == 200
    assert body["data"]["order"]["status"] == "delivered"
    assert body["data"]["stats"]["total_deliveries"] == 1

    r = client.get("/api/orders/stats", headers=auth_headers(admin))
    assert r.get_json()["data"]["total_orders"] == 1
    db.session.expire_all()
    assert db.session.get(Order, order.id).payment_status == "completed"


def test_courier_accepts_from_pending_feed(client, customer, courier, products, place_order, auth_headers):
    order = place_order(customer, {products["fish"]: 1})
    hc = auth_headers(courier)

    r = client.get("/api/delivery/orders/pending", headers=hc)
    assert [o["id"] for o in r.get_json()["data"]["orders"]] == [order.id]

    r = client.post(f"/api/delivery/orders/{order.id}/accept", headers=hc)
    assert r.status_code == 200
    assert r.get_json()["data"]["order"]["status"] == "confirmed"

    r = client.get("/api/delivery/me", headers=hc)
    assert r.get_json()["data"]["delivery_boy"]["availability"] == "busy"


def test_tokens_are_not_interchangeable(client, customer, courier, auth_headers):
    r = client.get("/api/delivery/me", headers=auth_headers(customer))
    assert r.status_code == 403
    r = client.get("/api/cart", headers=auth_headers(courier))
    assert r.status_code == 401


def test_admin_coupon_management(client, admin, customer, auth_headers):
    payload = {
        "code": "summer25",
        "description": "Summer sale",
        "type": "percentage",
        "value": 25,
        "maximum_discount": 300,
        "valid_from": "2020-01-01T00:00:00Z",
        "valid_to": "2099-01-01T00:00:00Z",
        "applicable_categories": ["chicken", "fish"],
    }
    r = client.post("/api/coupons", json=payload, headers=auth_headers(customer))
    assert r.status_code == 403

    r = client.post("/api/coupons", json=payload, headers=auth_headers(admin))
    assert r.status_code == 201
    coupon = r.get_json()["data"]["coupon"]
    assert coupon["code"] == "SUMMER25"
    assert coupon["formatted_discount"] == "25% OFF"

    r = client.get("/api/coupons/active")
    assert [c["code"] for c in r.get_json()["data"]["coupons"]] == ["SUMMER25"]

    r = client.post("/api/coupons/validate", json={"code": "summer25", "order_amount": 2000},
                    headers=auth_headers(customer))
    assert r.get_json()["data"]["discount"] == 300.0

    r = client.get(f"/api/coupons/{coupon['id']}/stats", headers=auth_headers(admin))
    stats = r.get_json()["data"]["stats"]
    assert stats["total_usage"] == 0
    assert stats["remaining_usage"] is None
    assert client.get(f"/api/coupons/{coupon['id']}/stats", headers=auth_headers(customer)).status_code == 403

    r = client.delete(f"/api/coupons/{coupon['id']}", headers=auth_headers(admin))
    assert r.status_code == 200
    r = client.get("/api/coupons/active")
    assert r.get_json()["data"]["coupons"] == []


def test_notifications_read(client, customer, products, place_order, auth_headers):
    place_order(customer, {products["fish"]: 1})
    h = auth_headers(customer)

    r = client.get("/api/notifications", headers=h)
    notes = r.get_json()["data"]["notifications"]
    assert notes[0]["type"] == "order_placed"

    r = client.patch(f"/api/notifications/{notes[0]['id']}/read", headers=h)
    assert r.get_json()["data"]["notification"]["is_read"] is True

    r = client.patch("/api/notifications/read-all", headers=h)
    assert r.get_json()["data"]["updated"] == 0
    r = client.patch("/api/notifications/9999/read", headers=h)
    assert r.status_code == 404

    r = client.put("/api/notifications/read-all", headers=h)
    assert r.status_code == 405


def test_notification_view_delete_and_clear(client, customer, other_customer, products, place_order,
                                            auth_headers):
    order = place_order(customer, {products["fish"]: 1})
    order_service.cancel_order(order.id, customer)
    h = auth_headers(customer)
    first, second = [n["id"] for n in client.get("/api/notifications", headers=h).get_json()["data"]["notifications"]]

    r = client.get(f"/api/notifications/{second}", headers=h)
    assert r.status_code == 200
    assert r.get_json()["data"]["notification"]["is_read"] is True
    assert client.get("/api/notifications/unread-count", headers=h).get_json()["data"]["unread_count"] == 1

    r = client.get(f"/api/notifications/{second}", headers=auth_headers(other_customer))
    assert r.status_code == 404

    r = client.delete(f"/api/notifications/{first}", headers=h)
    assert r.status_code == 200
    assert client.get(f"/api/notifications/{first}", headers=h).status_code == 404
    assert client.get("/api/notifications/unread-count", headers=h).get_json()["data"]["unread_count"] == 0

    r = client.delete("/api/notifications/clear-all", headers=h)
    assert r.get_json()["data"]["cleared"] == 1
    body = client.get("/api/notifications", headers=h).get_json()["data"]
    assert body["notifications"] == []
    assert body["pagination"]["total"] == 0

    # rows are kept
    db.session.expire_all()
    assert Notification.query.filter_by(recipient_id=customer.id).count() == 2


def test_courier_signup_waits_for_approval(client):
    signup = {
        "first_name": "Kiran", "last_name": "Rao", "email": "kiran@example.com",
        "password": "secret123", "phone": "9333333333",
    }
    r = client.post("/api/delivery/register", json=signup)
    assert r.status_code == 201
    data = r.get_json()["data"]
    assert data["delivery_boy"]["is_approved"] is False
    h = {"Authorization": f"Bearer {data['token']}"}

    r = client.get("/api/delivery/orders/pending", headers=h)
    assert r.status_code == 403
    r = client.post("/api/auth/delivery/login", json={"email": "kiran@example.com", "password": "secret123"})
    assert r.status_code == 403

    r = client.post("/api/delivery/register", json=signup)
    assert r.status_code == 409

    d = DeliveryBoy.query.filter_by(email="kiran@example.com").one()
    d.is_approved = True
    db.session.commit()
    r = client.get("/api/delivery/orders/pending", headers=h)
    assert r.status_code == 200


def test_first_cart_read_creates_the_cart(client, customer, auth_headers):
    assert Cart.query.filter_by(user_id=customer.id).count() == 0
    r = client.get("/api/cart", headers=auth_headers(customer))
    assert r.status_code == 200
    assert r.get_json()["data"]["cart"]["items"] == []
    client.get("/api/cart/summary", headers=auth_headers(customer))
    assert Cart.query.filter_by(user_id=customer.id).count() == 1


def test_fractional_quantity_is_rejected(client, customer, products, auth_headers):
    r = client.post("/api/cart/add", json={"product_id": products["chicken"].id, "quantity": 2.9},
                    headers=auth_headers(customer))
    assert r.status_code == 400
    assert r.get_json()["message"] == "quantity must be an integer"

from datetime import timedelta

import pytest

from meatcart.errors import AuthorizationError, ConflictError, ValidationError
from meatcart.extensions import db
from meatcart.model import Order, OrderStatusEvent
from meatcart.services import delivery_service, notification_service, order_service
from meatcart.utils.dates import utcnow


def _statuses(order):
    return [e.status for e in order.status_history]


def test_scenario_c_accept_race_and_delivery(customer, courier, courier_b, products, place_order):
    order = place_order(customer, {products["chicken"]: 1})

    order = delivery_service.accept_order(courier, order.id)
    assert order.status == "confirmed"
    assert order.assigned_to_id == courier.id
    assert order.estimated_time is not None
    assert courier.availability == "busy"

    with pytest.raises(ConflictError):
        delivery_service.accept_order(courier_b, order.id)
    db.session.rollback()

    before = courier.total_deliveries
    order = delivery_service.mark_delivered(courier, order.id)
    assert order.status == "delivered"
    assert order.payment_status == "completed"
    assert order.paid_at is not None
    assert courier.total_deliveries == before + 1
    assert courier.completed_deliveries == 1
    assert courier.availability == "available"
    assert courier_b.availability == "available"


def test_failed_notification_keeps_transition(customer, courier, products, place_order, monkeypatch):
    order = place_order(customer, {products["fish"]: 1})

    def broken(**kw):
        raise RuntimeError("notification store down")

    monkeypatch.setattr(notification_service, "Notification", broken)
    order = delivery_service.accept_order(courier, order.id)
    assert order.status == "confirmed"

    db.session.expire_all()
    stored = db.session.get(Order, order.id)
    assert stored.status == "confirmed"
    assert stored.assigned_to_id == courier.id
    assert _statuses(stored) == ["pending", "confirmed"]


def test_delivered_auto_inserts_out_for_delivery(customer, courier, products, place_order):
    order = place_order(customer, {products["fish"]: 1})
    delivery_service.accept_order(courier, order.id)
    order = delivery_service.mark_delivered(courier, order.id, notes="Left with guard")

    assert _statuses(order) == ["pending", "confirmed", "out-for-delivery", "delivered"]
    assert order.status_history[-1].notes == "Left with guard"
    assert order.status_history[-2].updated_by_role == "delivery"


def test_claim_guard_rejects_already_assigned_row(customer, courier, courier_b, products, place_order):
    order = place_order(customer, {products["fish"]: 1})
    # another worker assigned the row after this process read it
    db.session.execute(
        Order.__table__.update().where(Order.id == order.id).values(assigned_to_id=courier_b.id)
    )
    with pytest.raises(ConflictError):
        delivery_service.claim_order(order.id, courier, actor_id=courier.id, actor_role="delivery")
    db.session.rollback()


def test_single_active_delivery_per_courier(customer, other_customer, courier, products, place_order):
    first = place_order(customer, {products["fish"]: 1})
    second = place_order(other_customer, {products["chicken"]: 1})

    delivery_service.accept_order(courier, first.id)
    with pytest.raises(ConflictError, match="active delivery"):
        delivery_service.accept_order(courier, second.id)
    db.session.rollback()

    assert db.session.get(Order, second.id).status == "pending"


def test_unapproved_courier_cannot_accept(customer, products, place_order, courier):
    courier.is_approved = False
    db.session.commit()
    order = place_order(customer, {products["fish"]: 1})
    with pytest.raises(AuthorizationError):
        delivery_service.accept_order(courier, order.id)


def test_only_assignee_moves_order(customer, courier, courier_b, products, place_order):
    order = place_order(customer, {products["fish"]: 1})
    delivery_service.accept_order(courier, order.id)

    with pytest.raises(AuthorizationError):
        delivery_service.mark_out_for_delivery(courier_b, order.id)
    with pytest.raises(AuthorizationError):
        delivery_service.mark_delivered(courier_b, order.id)

    order = delivery_service.mark_out_for_delivery(courier, order.id)
    assert order.status == "out-for-delivery"


def test_cannot_deliver_cancelled_order(customer, courier, products, place_order):
    order = place_order(customer, {products["fish"]: 1})
    delivery_service.accept_order(courier, order.id)
    order_service.cancel_order(order.id, customer)

    with pytest.raises(ConflictError):
        delivery_service.mark_delivered(courier, order.id)
    assert courier.availability == "available"


def test_average_delivery_time_uses_out_for_delivery_timestamp(customer, courier, products, place_order):
    order = place_order(customer, {products["fish"]: 1})
    delivery_service.accept_order(courier, order.id)
    delivery_service.mark_out_for_delivery(courier, order.id)

    # pretend the ride started 30 minutes ago
    event = OrderStatusEvent.query.filter_by(order_id=order.id, status="out-for-delivery").one()
    event.timestamp = utcnow() - timedelta(minutes=30)
    db.session.commit()

    delivery_service.mark_delivered(courier, order.id)
    assert courier.average_delivery_time == 30


def test_average_is_none_without_history(courier):
    assert delivery_service.recent_average_delivery_time(courier.id) is None


def test_pending_feed_only_recent_unassigned(customer, other_customer, courier, products, place_order):
    fresh = place_order(customer, {products["fish"]: 1})
    old = place_order(other_customer, {products["chicken"]: 1})
    old.created_at = utcnow() - timedelta(days=3)
    db.session.commit()

    ids = [o.id for o in delivery_service.pending_orders()]
    assert ids == [fresh.id]

    delivery_service.accept_order(courier, fresh.id)
    assert delivery_service.pending_orders() == []
    assert [o.id for o in delivery_service.assigned_orders(courier)] == [fresh.id]


def test_availability_rules(customer, courier, products, place_order):
    with pytest.raises(ValidationError):
        delivery_service.update_availability(courier, "sleeping")

    order = place_order(customer, {products["fish"]: 1})
    delivery_service.accept_order(courier, order.id)
    with pytest.raises(ConflictError):
        delivery_service.update_availability(courier, "available")

    delivery_service.go_offline(courier)
    assert courier.availability == "offline"


def test_completion_rate(courier):
    assert courier.completion_rate == 100.0
    courier.total_deliveries = 4
    courier.completed_deliveries = 3
    assert courier.completion_rate == 75.0


SIGNUP = {
    "first_name": "Kiran",
    "last_name": "Rao",
    "email": " Kiran@Example.com ",
    "password": "secret123",
    "phone": "9333333333",
    "vehicle_registration": "ka01ab1234",
}


def test_register_starts_unapproved(app):
    d = delivery_service.register_delivery_boy(SIGNUP)
    assert d.email == "kiran@example.com"
    assert d.vehicle_registration == "KA01AB1234"
    assert d.is_approved is False
    assert d.availability == "offline"
    with pytest.raises(AuthorizationError, match="not yet approved"):
        delivery_service.ensure_can_work(d)


def test_register_rejects_duplicates_and_bad_input(courier):
    with pytest.raises(ConflictError, match="email"):
        delivery_service.register_delivery_boy({**SIGNUP, "email": courier.email})
    with pytest.raises(ConflictError, match="phone"):
        delivery_service.register_delivery_boy({**SIGNUP, "phone": courier.phone})
    with pytest.raises(ValidationError, match="vehicle_type"):
        delivery_service.register_delivery_boy({**SIGNUP, "vehicle_type": "rocket"})
    with pytest.raises(ValidationError, match="last_name"):
        delivery_service.register_delivery_boy({**SIGNUP, "last_name": " "})

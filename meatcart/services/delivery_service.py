# meatcart/services/delivery_service.py
"""
Courier side of the order lifecycle.

A delivery boy holds at most one order in an active status. Availability
flips to busy on accept and back to available on delivery (or when the
order is cancelled). The claim itself is a guarded UPDATE on the order row,
so two couriers racing for the same order cannot both win.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from werkzeug.security import generate_password_hash

from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..model import DeliveryBoy, Order
from ..model.delivery_boy import AVAILABILITIES, VEHICLE_TYPES
from ..model.order import ACTIVE_STATUSES, CONFIRMED, DELIVERED, OUT_FOR_DELIVERY, PENDING, PREPARING
from ..utils.dates import utcnow
from . import notification_service

logger = logging.getLogger(__name__)


def register_delivery_boy(data: dict) -> DeliveryBoy:
    """Self-signup. The account cannot take orders until an admin approves it."""
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    phone = (data.get("phone") or "").strip()
    fields = {
        "first_name": (data.get("first_name") or "").strip(),
        "last_name": (data.get("last_name") or "").strip(),
    }
    for key, value in (("email", email), ("phone", phone), *fields.items()):
        if not value:
            raise ValidationError(f"{key} is required")
    if len(password) < 6:
        raise ValidationError("Password required, min 6 chars")

    vehicle_type = (data.get("vehicle_type") or "two-wheeler").strip().lower()
    if vehicle_type not in VEHICLE_TYPES:
        raise ValidationError(f"vehicle_type must be one of: {', '.join(VEHICLE_TYPES)}")
    registration = (data.get("vehicle_registration") or "").strip().upper() or None

    if DeliveryBoy.query.filter_by(email=email).first():
        raise ConflictError("Delivery boy already exists with this email")
    if DeliveryBoy.query.filter_by(phone=phone).first():
        raise ConflictError("Delivery boy already exists with this phone number")
    if registration and DeliveryBoy.query.filter_by(vehicle_registration=registration).first():
        raise ConflictError("Vehicle registration already registered")

    d = DeliveryBoy(
        email=email,
        phone=phone,
        password_hash=generate_password_hash(password),
        vehicle_type=vehicle_type,
        vehicle_registration=registration,
        is_approved=False,
        is_verified=False,
        availability="offline",
        **fields,
    )
    db.session.add(d)
    db.session.commit()
    logger.info("delivery boy %s registered, awaiting approval", d.id)
    return d


def ensure_can_work(courier: DeliveryBoy):
    if not courier.is_approved:
        raise AuthorizationError("Delivery boy account is not yet approved by admin")
    if courier.status != "active":
        raise AuthorizationError(f"Delivery boy account is {courier.status}")


def active_order_for(courier_id: int) -> Order | None:
    return (
        Order.query
        .filter(Order.assigned_to_id == courier_id, Order.status.in_(ACTIVE_STATUSES))
        .first()
    )


def _get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def _get_assigned_order(courier: DeliveryBoy, order_id: int) -> Order:
    order = _get_order(order_id)
    if order.assigned_to_id != courier.id:
        raise AuthorizationError("You are not assigned to this order")
    return order


def claim_order(order_id: int, courier: DeliveryBoy, *, actor_id: int, actor_role: str,
                estimated_time: datetime | None = None, notes: str | None = None) -> Order:
    """pending -> confirmed with `courier` assigned. Does not commit."""
    order = _get_order(order_id)
    ensure_can_work(courier)

    if order.status != PENDING:
        raise ConflictError("Order is not available for assignment")
    if order.assigned_to_id:
        raise ConflictError("Order is already assigned to another delivery boy")
    if active_order_for(courier.id):
        if actor_role == "delivery":
            raise ConflictError("You already have an active delivery")
        raise ConflictError("Delivery boy already has an active delivery")

    eta = estimated_time or utcnow() + timedelta(minutes=current_app.config["ESTIMATED_DELIVERY_MINUTES"])
    values = {"assigned_to_id": courier.id, "estimated_time": eta}
    if notes:
        values["delivery_notes"] = notes

    res = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == PENDING, Order.assigned_to_id.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Order is already assigned to another delivery boy")
    db.session.refresh(order)

    order.append_transition(CONFIRMED, actor_id=actor_id, actor_role=actor_role,
                            notes="Order assigned to delivery boy")
    courier.availability = "busy"
    courier.last_active = utcnow()
    logger.info("order %s assigned to delivery boy %s by %s", order.order_number, courier.id, actor_role)
    return order


def release_courier(courier_id: int):
    courier = db.session.get(DeliveryBoy, courier_id)
    if courier is not None and courier.availability == "busy":
        courier.availability = "available"


def recent_average_delivery_time(courier_id: int, window: int | None = None) -> int | None:
    """Mean minutes from first out-for-delivery to delivery over the latest `window` deliveries."""
    window = window or current_app.config["AVERAGE_DELIVERY_WINDOW"]
    recent = (
        Order.query
        .filter(
            Order.assigned_to_id == courier_id,
            Order.status == DELIVERED,
            Order.actual_delivery_time.isnot(None),
        )
        .order_by(Order.actual_delivery_time.desc(), Order.id.desc())
        .limit(window)
        .all()
    )
    minutes = []
    for o in recent:
        started = o.first_reached(OUT_FOR_DELIVERY)
        if started:
            minutes.append(max((o.actual_delivery_time - started).total_seconds(), 0) / 60)
    if not minutes:
        return None
    return int(sum(minutes) / len(minutes) + 0.5)


# ---- courier actions -------------------------------------------------------

def accept_order(courier: DeliveryBoy, order_id: int) -> Order:
    order = claim_order(order_id, courier, actor_id=courier.id, actor_role="delivery")
    db.session.commit()
    notification_service.notify_order_status_change(order)
    return order


def mark_out_for_delivery(courier: DeliveryBoy, order_id: int, notes: str | None = None) -> Order:
    order = _get_assigned_order(courier, order_id)
    if order.status not in (CONFIRMED, PREPARING):
        raise ConflictError(f"Order cannot be marked as out-for-delivery from {order.status} status")

    order.append_transition(OUT_FOR_DELIVERY, actor_id=courier.id, actor_role="delivery",
                            notes=notes or "Started delivery")
    courier.last_active = utcnow()
    db.session.commit()
    logger.info("order %s out for delivery", order.order_number)
    notification_service.notify_order_status_change(order)
    return order


def mark_delivered(courier: DeliveryBoy, order_id: int, notes: str | None = None) -> Order:
    order = _get_assigned_order(courier, order_id)
    if order.status not in ACTIVE_STATUSES:
        raise ConflictError(f"Order cannot be marked as delivered from {order.status} status")

    now = utcnow()
    if order.status != OUT_FOR_DELIVERY:
        order.append_transition(OUT_FOR_DELIVERY, actor_id=courier.id, actor_role="delivery",
                                notes="Auto-transitioned to out-for-delivery", at=now)
    order.append_transition(DELIVERED, actor_id=courier.id, actor_role="delivery",
                            notes=notes or "Delivered successfully", at=now)
    order.actual_delivery_time = now
    order.payment_status = "completed"
    order.paid_at = now

    courier.total_deliveries = DeliveryBoy.total_deliveries + 1
    courier.completed_deliveries = DeliveryBoy.completed_deliveries + 1
    courier.availability = "available"
    courier.last_active = now
    db.session.flush()

    avg = recent_average_delivery_time(courier.id)
    if avg is not None:
        courier.average_delivery_time = avg
    db.session.commit()
    logger.info("order %s delivered by %s", order.order_number, courier.id)
    notification_service.notify_order_status_change(order)
    return order


# ---- feeds / profile -------------------------------------------------------

def pending_orders(now: datetime | None = None) -> list[Order]:
    """Unassigned pending orders placed yesterday or today."""
    now = now or utcnow()
    start = (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    end = now.replace(hour=23, minute=59, second=59, microsecond=999999)
    return (
        Order.query
        .filter(
            Order.status == PENDING,
            Order.assigned_to_id.is_(None),
            Order.created_at >= start,
            Order.created_at <= end,
        )
        .order_by(Order.created_at.desc())
        .all()
    )


def assigned_orders(courier: DeliveryBoy) -> list[Order]:
    return (
        Order.query
        .filter(Order.assigned_to_id == courier.id, Order.status.in_(ACTIVE_STATUSES))
        .order_by(Order.created_at.desc())
        .all()
    )


def update_availability(courier: DeliveryBoy, availability: str | None) -> DeliveryBoy:
    availability = (availability or "").strip().lower()
    if availability not in AVAILABILITIES:
        raise ValidationError("Invalid availability status")
    if availability == "available" and active_order_for(courier.id):
        raise ConflictError("Finish your active delivery before going available")
    courier.availability = availability
    courier.last_active = utcnow()
    db.session.commit()
    return courier


def go_offline(courier: DeliveryBoy) -> DeliveryBoy:
    courier.availability = "offline"
    db.session.commit()
    return courier

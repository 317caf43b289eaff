# meatcart/services/order_service.py
from __future__ import annotations
import logging
import time

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AuthorizationError, ConflictError, InsufficientStockError, NotFoundError, ValidationError,
)
from ..extensions import db
from ..model import Coupon, DeliveryBoy, Order, OrderItem, Product, User
from ..model.order import (
    ACTIVE_STATUSES, CANCELLED, CONFIRMED, DELIVERED, OUT_FOR_DELIVERY, PAYMENT_METHODS, PAYMENT_STATUSES,
    STATUSES,
)
from ..utils.dates import parse_iso8601
from ..utils.money import D, ZERO, round_money
from . import cart_service, coupon_service, delivery_service, notification_service

logger = logging.getLogger(__name__)

_ADDRESS_REQUIRED = ("street", "city", "state", "zip_code")
_ADDRESS_OPTIONAL = ("landmark", "instructions")


def format_order_number(epoch_ms: int, sequence: int) -> str:
    # MD<unix ms><sequence, zero-padded to at least 4 digits>
    return f"MD{epoch_ms}{sequence:04d}"


def generate_order_number() -> str:
    count = db.session.query(func.count(Order.id)).scalar() or 0
    return format_order_number(int(time.time() * 1000), count + 1)


def _parse_address(raw) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError("delivery_address is required")
    address = {}
    for key in _ADDRESS_REQUIRED:
        value = str(raw.get(key) or "").strip()
        if not value:
            raise ValidationError(f"delivery_address.{key} is required")
        address[key] = value
    address["country"] = str(raw.get("country") or "India").strip()
    for key in _ADDRESS_OPTIONAL:
        if raw.get(key):
            address[key] = str(raw[key]).strip()
    return address


def _actor_role(user: User) -> str:
    return "admin" if user.is_admin else "customer"


# ---- stock -----------------------------------------------------------------

def _reserve_stock(product_id: int, qty: int) -> bool:
    res = db.session.execute(
        update(Product)
        .where(Product.id == product_id, Product.is_active.is_(True), Product.quantity >= qty)
        .values(quantity=Product.quantity - qty)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _restore_stock(product_id: int, qty: int):
    db.session.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(quantity=Product.quantity + qty)
        .execution_options(synchronize_session=False)
    )


def _expire_products(product_ids):
    for pid in product_ids:
        p = db.session.get(Product, pid)
        if p is not None:
            db.session.expire(p)


# ---- checkout --------------------------------------------------------------

def checkout(user: User, payload: dict) -> Order:
    """Turn the user's cart into a pending order."""
    address = _parse_address(payload.get("delivery_address"))
    contact = payload.get("contact_info") or {}
    phone = str(contact.get("phone") or user.phone or "").strip()
    if not phone:
        raise ValidationError("contact_info.phone is required")
    method = (payload.get("payment_method") or "").strip().lower()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")

    cart = cart_service.get_cart(user.id)
    if not cart or not cart.items:
        raise ValidationError("Cart is empty")

    for it in cart.items:
        p = it.product
        if not p or not p.is_active:
            raise NotFoundError(f"Product {it.product_id} not found")
        if not p.can_supply(it.quantity):
            raise InsufficientStockError(f"Only {p.quantity} items available for {p.name}")

    coupon = None
    discount = ZERO
    if cart.has_coupon:
        coupon = db.session.get(Coupon, cart.applied_coupon_id)
        if coupon is None or not coupon.is_active:
            raise ConflictError("Applied coupon is no longer available")
        discount = coupon_service.price_for_cart(coupon, cart, user.id)

    cfg = current_app.config
    subtotal = cart.lines_subtotal()
    delivery_fee = ZERO if subtotal > D(cfg["FREE_DELIVERY_THRESHOLD"]) else D(cfg["DELIVERY_FEE"])
    tax = round_money(subtotal * D(cfg["TAX_RATE"]))

    items = [
        OrderItem(
            product_id=it.product_id,
            name=it.product.name,
            category=it.product.category,
            quantity=it.quantity,
            price_at_time=it.price_at_time,
            subtotal=it.line_total(),
        )
        for it in cart.items
    ]
    order = Order.place(
        order_number=generate_order_number(),
        customer_id=user.id,
        items=items,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        tax=tax,
        discount=discount,
        delivery_address=address,
        contact_phone=phone,
        alternate_phone=(contact.get("alternate_phone") or None),
        special_instructions=(payload.get("special_instructions") or None),
        payment_method=method,
        payment_status="pending",
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
    )
    db.session.add(order)

    for it in items:
        if not _reserve_stock(it.product_id, it.quantity):
            raise InsufficientStockError(f"{it.name} just sold out")
    _expire_products(it.product_id for it in items)

    if coupon is not None:
        coupon_service.apply_coupon_usage(coupon, user.id)

    cart.items.clear()
    cart.detach_coupon()

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        logger.warning("order number collision for user %s", user.id)
        raise ConflictError("Could not place order, please retry")

    logger.info("order %s placed by user %s total=%s", order.order_number, user.id, order.total)
    notification_service.notify_order_placed(order)
    return order


# ---- reads -----------------------------------------------------------------

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def get_order_for(user: User, order_id: int) -> Order:
    order = get_order(order_id)
    if not user.is_admin and order.customer_id != user.id:
        raise AuthorizationError("You can only access your own orders")
    return order


def orders_query(user: User, status: str | None = None, payment_status: str | None = None):
    q = Order.query
    if not user.is_admin:
        q = q.filter(Order.customer_id == user.id)
    if status:
        if status not in STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(STATUSES)}")
        q = q.filter(Order.status == status)
    if payment_status:
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"payment_status must be one of: {', '.join(PAYMENT_STATUSES)}")
        q = q.filter(Order.payment_status == payment_status)
    return q.order_by(Order.created_at.desc(), Order.id.desc())


def order_stats() -> dict:
    rows = (
        db.session.query(Order.status, func.count(Order.id), func.coalesce(func.sum(Order.total), 0))
        .group_by(Order.status)
        .all()
    )
    breakdown = [
        {"status": status, "count": count, "total_revenue": float(round_money(D(revenue)))}
        for status, count, revenue in rows
    ]
    return {
        "total_orders": sum(b["count"] for b in breakdown),
        "total_revenue": float(round_money(sum((D(b["total_revenue"]) for b in breakdown), ZERO))),
        "status_breakdown": breakdown,
    }


# ---- transitions -----------------------------------------------------------

def cancel_order(order_id: int, actor: User, reason: str | None = None) -> Order:
    order = get_order(order_id)
    if not actor.is_admin and order.customer_id != actor.id:
        raise AuthorizationError("You can only cancel your own orders")
    if order.is_terminal:
        raise ConflictError("Order cannot be cancelled")

    courier_id = order.assigned_to_id if order.status in ACTIVE_STATUSES else None
    default_note = "Cancelled by admin" if actor.is_admin else "Cancelled by user"
    order.append_transition(CANCELLED, actor_id=actor.id, actor_role=_actor_role(actor),
                            notes=reason or default_note)

    # compensating writes
    for it in order.items:
        _restore_stock(it.product_id, it.quantity)
    _expire_products(it.product_id for it in order.items)
    if order.coupon_id:
        coupon_service.release_coupon_usage(order.coupon_id, order.customer_id)
    if courier_id:
        delivery_service.release_courier(courier_id)

    db.session.commit()
    logger.info("order %s cancelled by %s %s", order.order_number, _actor_role(actor), actor.id)
    notification_service.notify_order_status_change(order)
    return order


def update_status(order_id: int, status: str | None, admin: User, notes: str | None = None) -> Order:
    status = (status or "").strip().lower()
    if status not in STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(STATUSES)}")
    if status == CANCELLED:
        return cancel_order(order_id, admin, reason=notes)

    order = get_order(order_id)
    if status == CONFIRMED:
        raise ConflictError("Orders are confirmed by assigning a delivery boy")
    if status == DELIVERED:
        raise ConflictError("Only the assigned delivery boy can mark an order as delivered")
    if status == OUT_FOR_DELIVERY and not order.assigned_to_id:
        raise ConflictError("Order has no delivery boy assigned")

    order.append_transition(status, actor_id=admin.id, actor_role="admin", notes=notes)
    db.session.commit()
    logger.info("order %s moved to %s by admin %s", order.order_number, status, admin.id)
    notification_service.notify_order_status_change(order)
    return order


def assign_delivery(order_id: int, admin: User, payload: dict) -> Order:
    try:
        courier_id = int(payload.get("delivery_boy_id"))
    except (TypeError, ValueError):
        raise ValidationError("delivery_boy_id is required")
    courier = db.session.get(DeliveryBoy, courier_id)
    if not courier:
        raise NotFoundError("Delivery boy not found")

    estimated = None
    if payload.get("estimated_time"):
        estimated = parse_iso8601(payload.get("estimated_time"))
        if not estimated:
            raise ValidationError("Invalid datetime format for estimated_time")

    order = delivery_service.claim_order(
        order_id, courier,
        actor_id=admin.id, actor_role="admin",
        estimated_time=estimated, notes=payload.get("notes"),
    )
    db.session.commit()
    notification_service.notify_order_status_change(order)
    return order

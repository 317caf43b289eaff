# meatcart/services/notification_service.py
"""
In-app notifications for order events.

Dispatch is fire-and-forget: it runs after the triggering state change has
been committed and any failure is logged and swallowed.
"""
from __future__ import annotations
import logging

from sqlalchemy import update

from ..errors import NotFoundError
from ..extensions import db
from ..model import Notification
from ..utils.dates import utcnow
from ..utils.money import format_inr

logger = logging.getLogger(__name__)

TEMPLATES = {
    "order_placed": {
        "title": "Order Placed Successfully!",
        "message": "Your order #{order_number} of {amount} has been placed successfully. We'll notify you when it's confirmed.",
        "category": "order",
        "priority": "medium",
    },
    "order_confirmed": {
        "title": "Order Confirmed",
        "message": "Great news! Your order #{order_number} has been confirmed and is being prepared.",
        "category": "order",
        "priority": "high",
    },
    "order_preparing": {
        "title": "Order Being Prepared",
        "message": "Your order #{order_number} is now being prepared.",
        "category": "order",
        "priority": "medium",
    },
    "order_out_for_delivery": {
        "title": "Order Out for Delivery",
        "message": "Your order #{order_number} is on its way!",
        "category": "delivery",
        "priority": "high",
    },
    "order_delivered": {
        "title": "Order Delivered!",
        "message": "Your order #{order_number} has been delivered successfully. Enjoy your meal!",
        "category": "order",
        "priority": "high",
    },
    "order_cancelled": {
        "title": "Order Cancelled",
        "message": "Your order #{order_number} has been cancelled. Any payment will be refunded within 2-3 business days.",
        "category": "order",
        "priority": "high",
    },
}


def _render(text: str, data: dict) -> str:
    try:
        return text.format(**data)
    except (KeyError, IndexError):
        return text


def dispatch(recipient_id: int, ntype: str, data: dict | None = None, *,
             order_id: int | None = None, recipient_role: str = "customer") -> Notification | None:
    data = data or {}
    tpl = TEMPLATES.get(ntype)
    if tpl is None:
        logger.warning("no notification template for %s", ntype)
        return None
    try:
        n = Notification(
            recipient_id=recipient_id,
            recipient_role=recipient_role,
            type=ntype,
            title=_render(tpl["title"], data)[:100],
            message=_render(tpl["message"], data)[:500],
            category=tpl["category"],
            priority=tpl["priority"],
            order_id=order_id,
        )
        db.session.add(n)
        db.session.commit()
        return n
    except Exception:
        db.session.rollback()
        logger.exception("failed to send %s notification to %s", ntype, recipient_id)
        return None


def notify_order_placed(order) -> Notification | None:
    return dispatch(order.customer_id, "order_placed", {
        "order_number": order.order_number,
        "amount": format_inr(order.total),
    }, order_id=order.id)


def notify_order_status_change(order) -> Notification | None:
    ntype = "order_" + order.status.replace("-", "_")
    return dispatch(order.customer_id, ntype, {"order_number": order.order_number}, order_id=order.id)


# ---- inbox -----------------------------------------------------------------

def inbox_query(recipient_id: int, recipient_role: str = "customer", unread_only: bool = False):
    q = Notification.query.filter_by(recipient_id=recipient_id, recipient_role=recipient_role, is_active=True)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc())


def unread_count(recipient_id: int, recipient_role: str = "customer") -> int:
    return inbox_query(recipient_id, recipient_role, unread_only=True).count()


def _get_own(recipient_id: int, note_id: int, recipient_role: str) -> Notification:
    n = inbox_query(recipient_id, recipient_role).filter(Notification.id == note_id).first()
    if not n:
        raise NotFoundError("Notification not found")
    return n


def mark_as_read(recipient_id: int, note_id: int, recipient_role: str = "customer") -> Notification:
    n = _get_own(recipient_id, note_id, recipient_role)
    if not n.is_read:
        n.is_read = True
        n.read_at = utcnow()
        db.session.commit()
    return n


def get_notification(recipient_id: int, note_id: int, recipient_role: str = "customer") -> Notification:
    """Viewing a notification marks it read."""
    return mark_as_read(recipient_id, note_id, recipient_role)


def _bulk_update(recipient_id: int, recipient_role: str, *criteria, **values) -> int:
    res = db.session.execute(
        update(Notification)
        .where(
            Notification.recipient_id == recipient_id,
            Notification.recipient_role == recipient_role,
            Notification.is_active.is_(True),
            *criteria,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return res.rowcount


def mark_all_as_read(recipient_id: int, recipient_role: str = "customer") -> int:
    return _bulk_update(recipient_id, recipient_role, Notification.is_read.is_(False),
                        is_read=True, read_at=utcnow())


def delete_notification(recipient_id: int, note_id: int, recipient_role: str = "customer"):
    n = _get_own(recipient_id, note_id, recipient_role)
    n.is_active = False
    db.session.commit()


def clear_all(recipient_id: int, recipient_role: str = "customer") -> int:
    cleared = _bulk_update(recipient_id, recipient_role, is_active=False)
    logger.info("%s notification(s) cleared for %s %s", cleared, recipient_role, recipient_id)
    return cleared

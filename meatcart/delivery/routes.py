# meatcart/delivery/routes.py
from __future__ import annotations
from flask import request

from . import bp
from ..services import delivery_service
from ..utils.api import ok
from ..utils.decorators import KIND_DELIVERY, current_delivery_boy, delivery_required, issue_token


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@bp.post("/register")
def register():
    d = delivery_service.register_delivery_boy(_payload())
    return ok("Registration successful, your account is pending approval", {
        "delivery_boy": d.as_api(),
        "token": issue_token(d.id, KIND_DELIVERY),
    }, 201)


@bp.get("/me")
@delivery_required
def profile():
    return ok("Profile fetched", {"delivery_boy": current_delivery_boy().as_api()})


@bp.get("/stats")
@delivery_required
def stats():
    d = current_delivery_boy()
    active = delivery_service.active_order_for(d.id)
    return ok("Statistics fetched", {
        "stats": d.stats(),
        "active_order_id": active.id if active else None,
    })


@bp.put("/availability")
@delivery_required
def update_availability():
    d = delivery_service.update_availability(current_delivery_boy(), _payload().get("availability"))
    return ok("Availability updated", {"availability": d.availability})


@bp.post("/logout")
@delivery_required
def logout():
    delivery_service.go_offline(current_delivery_boy())
    return ok("Logged out successfully")


@bp.get("/orders/pending")
@delivery_required
def pending_orders():
    d = current_delivery_boy()
    delivery_service.ensure_can_work(d)
    orders = delivery_service.pending_orders()
    return ok("Pending orders fetched", {"orders": [o.as_api() for o in orders], "count": len(orders)})


@bp.get("/orders/assigned")
@delivery_required
def assigned_orders():
    orders = delivery_service.assigned_orders(current_delivery_boy())
    return ok("Assigned orders fetched", {"orders": [o.as_api() for o in orders], "count": len(orders)})


@bp.post("/orders/<int:order_id>/accept")
@delivery_required
def accept_order(order_id: int):
    order = delivery_service.accept_order(current_delivery_boy(), order_id)
    return ok("Order accepted successfully", {"order": order.as_api()})


@bp.put("/orders/<int:order_id>/out-for-delivery")
@delivery_required
def out_for_delivery(order_id: int):
    order = delivery_service.mark_out_for_delivery(current_delivery_boy(), order_id, _payload().get("notes"))
    return ok("Order marked as out for delivery", {"order": order.as_api()})


@bp.put("/orders/<int:order_id>/delivered")
@delivery_required
def delivered(order_id: int):
    d = current_delivery_boy()
    order = delivery_service.mark_delivered(d, order_id, _payload().get("notes"))
    return ok("Order marked as delivered", {"order": order.as_api(), "stats": d.stats()})

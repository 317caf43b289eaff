# meatcart/order/routes.py
from __future__ import annotations
from flask import request

from . import bp
from ..services import order_service
from ..utils.api import ok, paginate
from ..utils.decorators import current_user, login_required, role_required

ADMIN_ONLY = "Admin access required"


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@bp.post("")
@login_required
def create_order():
    order = order_service.checkout(current_user(), _payload())
    return ok("Order placed successfully", {"order": order.as_api()}, 201)


@bp.get("")
@login_required
def list_orders():
    q = order_service.orders_query(
        current_user(),
        status=request.args.get("status"),
        payment_status=request.args.get("payment_status"),
    )
    page = paginate(q, lambda o: o.as_api())
    return ok("Orders fetched", {"orders": page["items"], "pagination": page["pagination"]})


@bp.get("/stats")
@role_required("admin", message=ADMIN_ONLY)
def order_stats():
    return ok("Order statistics", order_service.order_stats())


@bp.get("/<int:order_id>")
@login_required
def get_order(order_id: int):
    order = order_service.get_order_for(current_user(), order_id)
    return ok("Order fetched", {"order": order.as_api()})


@bp.patch("/<int:order_id>/status")
@role_required("admin", message=ADMIN_ONLY)
def update_status(order_id: int):
    data = _payload()
    order = order_service.update_status(order_id, data.get("status"), current_user(), notes=data.get("notes"))
    return ok("Order status updated successfully", {"order": order.as_api()})


@bp.patch("/<int:order_id>/cancel")
@login_required
def cancel_order(order_id: int):
    order = order_service.cancel_order(order_id, current_user(), reason=_payload().get("reason"))
    return ok("Order cancelled successfully", {"order": order.as_api()})


@bp.patch("/<int:order_id>/assign")
@role_required("admin", message=ADMIN_ONLY)
def assign_delivery(order_id: int):
    order = order_service.assign_delivery(order_id, current_user(), _payload())
    return ok("Delivery boy assigned successfully", {"order": order.as_api()})

# meatcart/coupon/routes.py
from __future__ import annotations
from flask import request

from . import bp
from ..services import coupon_service
from ..utils.api import ok, paginate
from ..utils.decorators import current_user, login_required, role_required

ADMIN_ONLY = "Admin access required"


def _admin_api(c):
    return c.as_api(admin=True)


@bp.post("")
@role_required("admin", message=ADMIN_ONLY)
def create_coupon():
    data = request.get_json(silent=True) or {}
    c = coupon_service.create_coupon_from_payload(data, created_by=current_user().id)
    return ok("Coupon created successfully", {"coupon": _admin_api(c)}, 201)


@bp.get("")
@role_required("admin", message=ADMIN_ONLY)
def list_coupons():
    q = coupon_service.coupons_query(
        is_active=request.args.get("is_active"),
        ctype=request.args.get("type"),
        category=request.args.get("category"),
    )
    page = paginate(q, _admin_api)
    return ok("Coupons fetched", {"coupons": page["items"], "pagination": page["pagination"]})


@bp.get("/active")
def active_coupons():
    coupons = coupon_service.active_coupons_query().all()
    return ok("Active coupons fetched", {"coupons": [c.as_api() for c in coupons]})


@bp.get("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def get_coupon(coupon_id: int):
    return ok("Coupon fetched", {"coupon": _admin_api(coupon_service.get_coupon(coupon_id))})


@bp.get("/<int:coupon_id>/stats")
@role_required("admin", message=ADMIN_ONLY)
def coupon_stats(coupon_id: int):
    return ok("Coupon statistics fetched", {"stats": coupon_service.coupon_stats(coupon_id)})


@bp.put("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def update_coupon(coupon_id: int):
    data = request.get_json(silent=True) or {}
    c = coupon_service.update_coupon_from_payload(coupon_id, data)
    return ok("Coupon updated successfully", {"coupon": _admin_api(c)})


@bp.delete("/<int:coupon_id>")
@role_required("admin", message=ADMIN_ONLY)
def delete_coupon(coupon_id: int):
    coupon_service.soft_delete_coupon(coupon_id)
    return ok("Coupon deactivated successfully")


@bp.post("/validate")
@login_required
def validate_coupon():
    data = request.get_json(silent=True) or {}
    result = coupon_service.validate_coupon(current_user().id, data.get("code"), data.get("order_amount"))
    return ok("Coupon is valid", result)

# meatcart/cart/routes.py
from __future__ import annotations
from flask import request

from . import bp
from ..services import cart_service
from ..utils.api import ok
from ..utils.decorators import current_user, login_required


def _payload() -> dict:
    return request.get_json(silent=True) or {}


@bp.get("")
@login_required
def get_cart():
    cart = cart_service.get_or_create_cart(current_user().id)
    return ok("Cart fetched", {"cart": cart.as_api()})


@bp.get("/summary")
@login_required
def cart_summary():
    cart = cart_service.get_or_create_cart(current_user().id)
    return ok("Cart summary", {"summary": cart.summary()})


@bp.post("/add")
@login_required
def add_item():
    data = _payload()
    cart = cart_service.add_item(current_user().id, data.get("product_id"), data.get("quantity", 1))
    return ok("Item added to cart", {"cart": cart.as_api()})


@bp.put("/update/<int:item_id>")
@login_required
def update_item(item_id: int):
    cart = cart_service.update_item(current_user().id, item_id, _payload().get("quantity"))
    return ok("Cart item updated", {"cart": cart.as_api()})


@bp.delete("/remove/<int:item_id>")
@login_required
def remove_item(item_id: int):
    cart = cart_service.remove_item(current_user().id, item_id)
    return ok("Item removed from cart", {"cart": cart.as_api()})


@bp.delete("/clear")
@login_required
def clear_cart():
    cart = cart_service.clear_cart(current_user().id)
    return ok("Cart cleared", {"cart": cart.as_api()})


@bp.post("/apply-coupon")
@login_required
def apply_coupon():
    cart = cart_service.apply_coupon(current_user().id, _payload().get("code"))
    return ok("Coupon applied successfully", {
        "cart": cart.as_api(),
        "discount": cart.applied_coupon_api()["discount"],
    })


@bp.delete("/remove-coupon")
@login_required
def remove_coupon():
    cart = cart_service.remove_coupon(current_user().id)
    return ok("Coupon removed", {"cart": cart.as_api()})

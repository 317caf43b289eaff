# meatcart/services/cart_service.py
from __future__ import annotations
import logging

from ..errors import AppError, InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..model import Cart, CartItem, Coupon, Product
from . import coupon_service

logger = logging.getLogger(__name__)


def get_cart(user_id: int) -> Cart | None:
    return Cart.query.filter_by(user_id=user_id).first()


def get_or_create_cart(user_id: int) -> Cart:
    cart = get_cart(user_id)
    if not cart:
        cart = Cart.for_user(user_id)
        db.session.add(cart)
        db.session.commit()
    return cart


def _require_cart(user_id: int) -> Cart:
    cart = get_cart(user_id)
    if not cart:
        raise NotFoundError("Cart not found")
    return cart


def _parse_qty(raw) -> int:
    # 2.0 is fine, 2.9 and True are not
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError("quantity must be an integer")
    try:
        qty = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be an integer")
    if qty < 1:
        raise ValidationError("Quantity must be at least 1")
    return qty


def _check_stock(product: Product, qty: int):
    if not product.in_stock or int(product.quantity or 0) <= 0:
        raise InsufficientStockError("Product is out of stock")
    if int(product.quantity or 0) < qty:
        raise InsufficientStockError(f"Only {product.quantity} items available")


def _reprice_coupon(cart: Cart):
    """Re-run the attached coupon against the current lines, detaching it when no longer eligible."""
    if not cart.has_coupon:
        return
    coupon = db.session.get(Coupon, cart.applied_coupon_id)
    if coupon is None or not coupon.is_active:
        cart.detach_coupon()
        return
    try:
        discount = coupon_service.price_for_cart(coupon, cart, cart.user_id)
    except AppError as e:
        logger.info("coupon %s dropped from cart %s: %s", coupon.code, cart.id, e.message)
        cart.detach_coupon()
        return
    cart.applied_coupon_discount = discount


def _save(cart: Cart) -> Cart:
    _reprice_coupon(cart)
    cart.recalculate()
    db.session.commit()
    return cart


# ---- line items ------------------------------------------------------------

def add_item(user_id: int, product_id, quantity) -> Cart:
    qty = _parse_qty(quantity if quantity is not None else 1)
    try:
        product_id = int(product_id)
    except (TypeError, ValueError):
        raise ValidationError("product_id is required")

    product = db.session.get(Product, product_id)
    if not product or not product.is_active:
        raise NotFoundError("Product not found")

    cart = get_or_create_cart(user_id)
    item = next((i for i in cart.items if i.product_id == product.id), None)

    # stock validation only; stock moves at checkout
    _check_stock(product, qty + (item.quantity if item else 0))

    if item:
        item.quantity += qty
        item.price_at_time = product.discounted_price
    else:
        cart.items.append(CartItem(
            product_id=product.id,
            product=product,
            quantity=qty,
            price_at_time=product.discounted_price,
        ))
    return _save(cart)


def update_item(user_id: int, item_id: int, quantity) -> Cart:
    qty = _parse_qty(quantity)
    cart = _require_cart(user_id)
    item = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("Item not found in cart")

    product = item.product
    if not product or not product.is_active or not product.in_stock:
        raise InsufficientStockError("Product is no longer available")
    _check_stock(product, qty)

    item.quantity = qty
    item.price_at_time = product.discounted_price
    return _save(cart)


def remove_item(user_id: int, item_id: int) -> Cart:
    cart = _require_cart(user_id)
    item = next((i for i in cart.items if i.id == item_id), None)
    if not item:
        raise NotFoundError("Item not found in cart")
    cart.items.remove(item)
    return _save(cart)


def clear_cart(user_id: int) -> Cart:
    cart = _require_cart(user_id)
    cart.items.clear()
    cart.detach_coupon()
    return _save(cart)


# ---- coupons ---------------------------------------------------------------

def apply_coupon(user_id: int, code: str | None) -> Cart:
    if not (code or "").strip():
        raise ValidationError("Coupon code is required")
    cart = get_cart(user_id)
    if not cart or not cart.items:
        raise ValidationError("Cart is empty")

    coupon = coupon_service.find_active_coupon(code)
    discount = coupon_service.price_for_cart(coupon, cart, user_id)
    cart.attach_coupon(coupon, discount)
    db.session.commit()
    logger.info("coupon %s applied to cart %s (discount %s)", coupon.code, cart.id, discount)
    return cart


def remove_coupon(user_id: int) -> Cart:
    cart = _require_cart(user_id)
    if not cart.has_coupon:
        raise ValidationError("No coupon applied to cart")
    cart.detach_coupon()
    db.session.commit()
    return cart

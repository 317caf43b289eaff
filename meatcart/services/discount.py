# meatcart/services/discount.py
"""
Coupon discount arithmetic.

Pure functions: nothing here touches the session. `coupon` is anything with
the Coupon attributes (type, value, minimum_order_value, maximum_discount,
categories, excluded_products) and `lines` anything with product_id,
quantity, price_at_time and an optional `product` carrying `category`.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Iterable

from ..utils.money import D, ZERO, Money, round_money


def calculate_discount(coupon, applicable_amount) -> Money:
    """
    Discount for `applicable_amount`:
      - below coupon.minimum_order_value -> 0 (callers reject separately)
      - percentage: amount * value / 100
      - fixed: value, never more than the amount
      - capped by maximum_discount when set
    Rounded to cents, half-up.
    """
    amount = D(applicable_amount)
    if amount <= 0 or amount < D(coupon.minimum_order_value):
        return ZERO

    value = D(coupon.value)
    if coupon.type == "percentage":
        discount = amount * value / Decimal("100")
    elif coupon.type == "fixed":
        discount = min(value, amount)
    else:
        return ZERO

    if coupon.maximum_discount is not None:
        discount = min(discount, D(coupon.maximum_discount))

    return round_money(min(discount, amount))


def is_line_eligible(coupon, line) -> bool:
    if line.product_id in coupon.excluded_products:
        return False
    categories = coupon.categories
    if not categories:
        return True
    product = getattr(line, "product", None)
    return product is not None and product.category in categories


def applicable_amount(coupon, lines: Iterable) -> Money:
    # no fallback to the full subtotal: ineligible lines never count
    total = sum(
        (D(line.price_at_time) * int(line.quantity or 0) for line in lines if is_line_eligible(coupon, line)),
        ZERO,
    )
    return round_money(total)

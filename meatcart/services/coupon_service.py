# meatcart/services/coupon_service.py
from __future__ import annotations
import logging
import math
from datetime import datetime
from decimal import InvalidOperation

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..model import Coupon, CouponUsage
from ..model.coupon import COUPON_TYPES
from ..model.product import CATEGORIES
from ..utils.dates import iso, parse_iso8601, utcnow
from ..utils.money import D, Money, format_inr, round_money
from .discount import applicable_amount, calculate_discount

logger = logging.getLogger(__name__)


# ---- eligibility -----------------------------------------------------------

def is_currently_valid(coupon: Coupon, now: datetime | None = None) -> bool:
    return coupon.is_valid_at(now or utcnow())


def can_user_use_coupon(coupon: Coupon, user_id: int) -> bool:
    return coupon.usage_for(user_id) < (coupon.user_usage_limit or 1)


def find_active_coupon(code: str | None) -> Coupon:
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("Coupon code is required")
    c = Coupon.query.filter(Coupon.code == code, Coupon.is_active.is_(True)).first()
    if not c:
        raise NotFoundError("Invalid coupon code")
    return c


def price_for_cart(coupon: Coupon, cart, user_id: int, now: datetime | None = None) -> Money:
    """Run every eligibility rule against `cart` and return the discount it earns."""
    if not is_currently_valid(coupon, now):
        raise ConflictError("Coupon is not valid or has expired")
    if not can_user_use_coupon(coupon, user_id):
        raise ConflictError("You have already used this coupon the maximum number of times")

    amount = applicable_amount(coupon, cart.items)
    if amount <= 0:
        raise ValidationError("Coupon does not apply to any item in your cart")
    if amount < D(coupon.minimum_order_value):
        raise ValidationError(
            f"Minimum order value of {format_inr(coupon.minimum_order_value)} required for this coupon"
        )
    return calculate_discount(coupon, amount)


def validate_coupon(user_id: int, code: str | None, order_amount=None) -> dict:
    """Dry run against a plain amount, reporting the specific reason for a refusal."""
    c = find_active_coupon(code)
    now = utcnow()
    if not is_currently_valid(c, now):
        if c.valid_from > now:
            raise ConflictError("Coupon is not yet active")
        if c.valid_to < now:
            raise ConflictError("Coupon has expired")
        raise ConflictError("Coupon usage limit reached")
    if not can_user_use_coupon(c, user_id):
        raise ConflictError("You have already used this coupon the maximum number of times")

    amount = None
    if order_amount not in (None, ""):
        amount = _decimal(order_amount, "order_amount")
        if amount < D(c.minimum_order_value):
            raise ValidationError(f"Minimum order value of {format_inr(c.minimum_order_value)} required")

    discount = calculate_discount(c, amount) if amount is not None else D(0)
    return {
        "coupon": c.as_api(),
        "discount": float(discount),
        "applicable_amount": float(amount or 0),
    }


# ---- usage accounting ------------------------------------------------------

def apply_coupon_usage(coupon: Coupon, user_id: int, now: datetime | None = None):
    """
    Consume one use of `coupon` for `user_id`.
    Both counters move through guarded UPDATEs so concurrent checkouts cannot
    push either past its limit. Raises ConflictError when a guard fails; the
    caller's transaction must then be rolled back.
    """
    now = now or utcnow()

    res = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            Coupon.is_active.is_(True),
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Coupon usage limit reached")

    res = db.session.execute(
        update(CouponUsage)
        .where(
            CouponUsage.coupon_id == coupon.id,
            CouponUsage.user_id == user_id,
            CouponUsage.usage_count < coupon.user_usage_limit,
        )
        .values(usage_count=CouponUsage.usage_count + 1, last_used=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        already = db.session.query(CouponUsage.id).filter_by(coupon_id=coupon.id, user_id=user_id).first()
        if already:
            raise ConflictError("You have already used this coupon the maximum number of times")
        db.session.add(CouponUsage(coupon_id=coupon.id, user_id=user_id, usage_count=1, last_used=now))
        try:
            db.session.flush()
        except IntegrityError:
            # another checkout inserted the first-use row between our read and write
            raise ConflictError("Coupon is being redeemed concurrently, please retry")

    db.session.expire(coupon)
    logger.info("coupon %s consumed by user %s", coupon.code, user_id)


def release_coupon_usage(coupon_id: int, user_id: int):
    """Compensating action for a cancelled order that had consumed a use."""
    db.session.execute(
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.usage_count > 0)
        .values(usage_count=Coupon.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        update(CouponUsage)
        .where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id, CouponUsage.usage_count > 0)
        .values(usage_count=CouponUsage.usage_count - 1)
        .execution_options(synchronize_session=False)
    )
    c = db.session.get(Coupon, coupon_id)
    if c is not None:
        db.session.expire(c)
    logger.info("coupon %s usage released for user %s", coupon_id, user_id)


# ---- admin management -----------------------------------------------------

def _decimal(raw, field: str, *, minimum=0):
    try:
        value = D(raw)
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"{field} must be numeric")
    if not value.is_finite():
        raise ValidationError(f"{field} must be numeric")
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be ≥ {minimum}")
    return round_money(value)


def _int(raw, field: str, *, minimum: int):
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    return value


def _datetime(raw, field: str):
    dt = parse_iso8601(raw)
    if not dt:
        raise ValidationError(f"Invalid datetime format for {field}")
    return dt


def _categories(raw):
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("applicable_categories must be a list")
    cats = [str(c).strip().lower() for c in raw if str(c).strip()]
    bad = [c for c in cats if c not in CATEGORIES]
    if bad:
        raise ValidationError(f"Unknown categories: {', '.join(bad)}")
    return ",".join(dict.fromkeys(cats)) or None


def _product_ids(raw):
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("excluded_products must be a list of product ids")
    try:
        ids = sorted({int(x) for x in raw})
    except (TypeError, ValueError):
        raise ValidationError("excluded_products must be a list of product ids")
    return ",".join(str(i) for i in ids) or None


def _check_rules(c: Coupon):
    if c.type not in COUPON_TYPES:
        raise ValidationError("type must be 'percentage' or 'fixed'")
    if c.type == "percentage" and D(c.value) > 100:
        raise ValidationError("Percentage discount cannot exceed 100%")
    if not c.valid_from or not c.valid_to:
        raise ValidationError("valid_from and valid_to are required")
    if c.valid_to <= c.valid_from:
        raise ValidationError("Valid to date must be after valid from date")
    if c.usage_limit is not None and (c.usage_count or 0) > c.usage_limit:
        raise ValidationError("usage_limit cannot be below the current usage count")


def _assign_fields(c: Coupon, data: dict):
    if "code" in data:
        code = (data.get("code") or "").strip().upper()
        if not (3 <= len(code) <= 20):
            raise ValidationError("Coupon code must be 3-20 characters")
        c.code = code
    if "description" in data:
        desc = (data.get("description") or "").strip()
        if not desc or len(desc) > 200:
            raise ValidationError("description is required (max 200 characters)")
        c.description = desc
    if "type" in data:
        c.type = (data.get("type") or "").lower().strip()
    if "value" in data:
        c.value = _decimal(data.get("value"), "value")
    if "minimum_order_value" in data:
        c.minimum_order_value = _decimal(data.get("minimum_order_value") or 0, "minimum_order_value")
    if "maximum_discount" in data:
        raw = data.get("maximum_discount")
        c.maximum_discount = None if raw in (None, "") else _decimal(raw, "maximum_discount")
    if "usage_limit" in data:
        raw = data.get("usage_limit")
        c.usage_limit = None if raw in (None, "") else _int(raw, "usage_limit", minimum=1)
    if "user_usage_limit" in data:
        c.user_usage_limit = _int(data.get("user_usage_limit"), "user_usage_limit", minimum=1)
    if "valid_from" in data:
        c.valid_from = _datetime(data.get("valid_from"), "valid_from")
    if "valid_to" in data:
        c.valid_to = _datetime(data.get("valid_to"), "valid_to")
    if "applicable_categories" in data:
        c.applicable_categories = _categories(data.get("applicable_categories"))
    if "excluded_products" in data:
        c.excluded_product_ids = _product_ids(data.get("excluded_products"))
    if "is_active" in data:
        c.is_active = bool(data.get("is_active"))


def _code_taken(code: str, exclude_id: int | None = None) -> bool:
    q = Coupon.query.filter(func.upper(Coupon.code) == code.upper())
    if exclude_id is not None:
        q = q.filter(Coupon.id != exclude_id)
    return db.session.query(q.exists()).scalar()


def create_coupon_from_payload(data: dict, created_by: int | None = None) -> Coupon:
    for field in ("code", "description", "type", "value", "valid_from", "valid_to"):
        if data.get(field) in (None, ""):
            raise ValidationError(f"{field} is required")

    c = Coupon(usage_count=0, user_usage_limit=1, minimum_order_value=0, is_active=True, created_by=created_by)
    _assign_fields(c, data)
    _check_rules(c)
    if _code_taken(c.code):
        raise ConflictError("Coupon code already exists")

    db.session.add(c)
    db.session.commit()
    logger.info("coupon %s created by %s", c.code, created_by)
    return c


def update_coupon_from_payload(coupon_id: int, data: dict) -> Coupon:
    c = get_coupon(coupon_id)
    if "usage_count" in data or "used_by" in data:
        raise ValidationError("usage counters cannot be edited directly")
    _assign_fields(c, data)
    _check_rules(c)
    if "code" in data and _code_taken(c.code, exclude_id=c.id):
        raise ConflictError("Coupon code already exists")
    db.session.commit()
    return c


def soft_delete_coupon(coupon_id: int) -> Coupon:
    c = get_coupon(coupon_id)
    c.is_active = False
    db.session.commit()
    logger.info("coupon %s deactivated", c.code)
    return c


def get_coupon(coupon_id: int) -> Coupon:
    c = db.session.get(Coupon, coupon_id)
    if not c:
        raise NotFoundError("Coupon not found")
    return c


def coupon_stats(coupon_id: int, now: datetime | None = None) -> dict:
    c = get_coupon(coupon_id)
    now = now or utcnow()
    used = c.usage_count or 0
    unique_users = (
        db.session.query(func.count(CouponUsage.id))
        .filter(CouponUsage.coupon_id == c.id, CouponUsage.usage_count > 0)
        .scalar()
    )
    return {
        "total_usage": used,
        "usage_limit": c.usage_limit,
        "remaining_usage": max(c.usage_limit - used, 0) if c.usage_limit is not None else None,
        "unique_users": unique_users or 0,
        "is_active": c.is_active,
        "is_currently_valid": c.is_valid_at(now),
        "valid_from": iso(c.valid_from),
        "valid_to": iso(c.valid_to),
        # whole days, rounded up
        "days_remaining": max(0, math.ceil((c.valid_to - now).total_seconds() / 86400)),
    }


def coupons_query(is_active: str | None = None, ctype: str | None = None, category: str | None = None):
    q = Coupon.query
    if is_active is not None:
        q = q.filter(Coupon.is_active.is_(is_active.lower() == "true"))
    if ctype:
        q = q.filter(Coupon.type == ctype)
    if category:
        q = q.filter(Coupon.applicable_categories.contains(category.lower()))
    return q.order_by(Coupon.created_at.desc(), Coupon.id.desc())


def active_coupons_query(now: datetime | None = None):
    now = now or utcnow()
    return (
        Coupon.query
        .filter(
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_to >= now,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .order_by(Coupon.valid_to.asc())
    )

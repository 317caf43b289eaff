# --- meatcart/model/coupon.py ---
from __future__ import annotations
from datetime import datetime
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import utcnow, iso
from ..utils.money import D, format_inr

COUPON_TYPES = ("percentage", "fixed")


def csv_to_intset(s: str | None) -> set[int]:
    if not s: return set()
    return {int(x) for x in s.split(",") if x.strip().isdigit()}


def csv_to_strlist(s: str | None) -> list[str]:
    if not s: return []
    return [x.strip() for x in s.split(",") if x.strip()]


class Coupon(db.Model):
    __tablename__ = "coupon"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)  # stored uppercase
    description = db.Column(db.String(200), nullable=False, default="")

    # "percentage" or "fixed"
    type = db.Column(db.String(16), nullable=False, default="percentage")
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    minimum_order_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    maximum_discount = db.Column(db.Numeric(12, 2), nullable=True)   # cap, None = no cap

    usage_limit = db.Column(db.Integer, nullable=True)               # global cap, None = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    user_usage_limit = db.Column(db.Integer, nullable=False, default=1)

    valid_from = db.Column(db.DateTime, nullable=False, index=True)
    valid_to = db.Column(db.DateTime, nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # CSV lists; empty categories = all categories
    applicable_categories = db.Column(db.String(255), nullable=True)
    excluded_product_ids = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    used_by = db.relationship(
        "CouponUsage",
        back_populates="coupon",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        db.CheckConstraint("usage_count >= 0", name="ck_coupon_usage_count_non_negative"),
    )

    @property
    def categories(self) -> list[str]:
        return csv_to_strlist(self.applicable_categories)

    @property
    def excluded_products(self) -> set[int]:
        return csv_to_intset(self.excluded_product_ids)

    def is_valid_at(self, now: datetime) -> bool:
        return bool(
            self.is_active
            and self.valid_from <= now <= self.valid_to
            and (self.usage_limit is None or (self.usage_count or 0) < self.usage_limit)
        )

    @property
    def is_currently_valid(self) -> bool:
        return self.is_valid_at(utcnow())

    def usage_for(self, user_id: int) -> int:
        row = next((u for u in self.used_by if u.user_id == user_id), None)
        return row.usage_count if row else 0

    @property
    def formatted_discount(self) -> str:
        if self.type == "percentage":
            return f"{D(self.value).normalize():f}% OFF"
        return f"{format_inr(self.value)} OFF"

    def as_api(self, admin: bool = False):
        out = {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "type": self.type,
            "value": float(D(self.value)),
            "minimum_order_value": float(D(self.minimum_order_value)),
            "maximum_discount": float(D(self.maximum_discount)) if self.maximum_discount is not None else None,
            "user_usage_limit": self.user_usage_limit,
            "valid_from": iso(self.valid_from),
            "valid_to": iso(self.valid_to),
            "applicable_categories": self.categories,
            "excluded_products": sorted(self.excluded_products),
            "formatted_discount": self.formatted_discount,
            "is_currently_valid": self.is_currently_valid,
        }
        if admin:
            out.update({
                "is_active": self.is_active,
                "usage_limit": self.usage_limit,
                "usage_count": self.usage_count,
                "created_by": self.created_by,
            })
        return out


class CouponUsage(db.Model):
    __tablename__ = "coupon_usage"

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id", ondelete="CASCADE"), index=True, nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), index=True, nullable=False)
    usage_count = db.Column(db.Integer, nullable=False, default=1)
    last_used = db.Column(db.DateTime, nullable=False, default=utcnow)

    coupon = db.relationship("Coupon", back_populates="used_by")

    __table_args__ = (
        db.UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_user"),
    )

# meatcart/model/cart.py
from __future__ import annotations
from decimal import Decimal
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import utcnow, iso
from ..utils.money import D, ZERO, round_money, format_inr


class Cart(db.Model):
    __tablename__ = "cart"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id"), unique=True, nullable=False, index=True)

    # applied coupon snapshot
    applied_coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=True)
    applied_coupon_code = db.Column(db.String(20), nullable=True)
    applied_coupon_discount = db.Column(db.Numeric(12, 2), nullable=True)
    applied_coupon_at = db.Column(db.DateTime, nullable=True)

    # derived; written only by recalculate()
    total_items = db.Column(db.Integer, nullable=False, default=0)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    final_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    items = db.relationship(
        "CartItem",
        backref="cart",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CartItem.id.asc()"
    )

    @classmethod
    def for_user(cls, user_id: int) -> "Cart":
        cart = cls(user_id=user_id, items=[])
        cart.recalculate()
        return cart

    # --------- totals ----------
    @property
    def has_coupon(self) -> bool:
        return self.applied_coupon_id is not None

    def lines_subtotal(self) -> Decimal:
        return round_money(sum((i.line_total() for i in self.items), ZERO))

    def attach_coupon(self, coupon, discount: Decimal):
        self.applied_coupon_id = coupon.id
        self.applied_coupon_code = coupon.code
        self.applied_coupon_discount = round_money(discount)
        self.applied_coupon_at = utcnow()
        self.recalculate()

    def detach_coupon(self):
        self.applied_coupon_id = None
        self.applied_coupon_code = None
        self.applied_coupon_discount = None
        self.applied_coupon_at = None
        self.recalculate()

    def recalculate(self):
        """Recompute every derived total from the lines and the coupon snapshot."""
        self.total_items = sum(int(i.quantity or 0) for i in self.items)
        self.subtotal = self.lines_subtotal()
        self.discount_amount = round_money(D(self.applied_coupon_discount)) if self.has_coupon else ZERO
        self.final_amount = round_money(D(self.subtotal) - D(self.discount_amount))

    def applied_coupon_api(self):
        if not self.has_coupon:
            return None
        return {
            "coupon_id": self.applied_coupon_id,
            "code": self.applied_coupon_code,
            "discount": float(D(self.applied_coupon_discount)),
            "applied_at": iso(self.applied_coupon_at),
        }

    def as_api(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "items": [i.as_api() for i in self.items],
            "applied_coupon": self.applied_coupon_api(),
            "totals": {
                "total_items": self.total_items,
                "subtotal": float(D(self.subtotal)),
                "discount_amount": float(D(self.discount_amount)),
                "final_amount": float(D(self.final_amount)),
            },
            "updated_at": iso(self.updated_at),
        }

    def summary(self):
        return {
            "item_count": self.total_items,
            "subtotal": float(D(self.subtotal)),
            "discount_amount": float(D(self.discount_amount)),
            "total_amount": float(D(self.final_amount)),
            "formatted_subtotal": format_inr(self.subtotal),
            "formatted_discount": format_inr(self.discount_amount),
            "formatted_total": format_inr(self.final_amount),
            "applied_coupon": self.applied_coupon_api(),
            "items": [
                {
                    "product_id": i.product_id,
                    "name": i.product.name if i.product else None,
                    "quantity": i.quantity,
                    "price_at_time": float(D(i.price_at_time)),
                    "subtotal": float(i.line_total()),
                }
                for i in self.items
            ],
        }


class CartItem(db.Model):
    __tablename__ = "cart_item"

    id = db.Column(db.Integer, primary_key=True)
    cart_id = db.Column(db.Integer, db.ForeignKey("cart.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    price_at_time = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    product = db.relationship("Product", lazy="joined")

    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_cart_item_quantity_positive"),
    )

    def line_total(self) -> Decimal:
        return round_money(D(self.price_at_time) * Decimal(int(self.quantity or 0)))

    def as_api(self):
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.product.name if self.product else None,
            "category": self.product.category if self.product else None,
            "quantity": self.quantity,
            "price_at_time": float(D(self.price_at_time)),
            "line_total": float(self.line_total()),
        }

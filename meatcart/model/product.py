# meatcart/model/product.py
from decimal import Decimal
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import utcnow
from ..utils.money import D, round_money

CATEGORIES = ("chicken", "mutton", "beef", "pork", "fish", "seafood", "processed")


class Product(db.Model):
    __tablename__ = "product"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    description = db.Column(db.String(1000), nullable=False, default="")
    category = db.Column(db.String(32), nullable=False, index=True)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_percentage = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    discount_valid_until = db.Column(db.DateTime, nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)   # stock on hand
    in_stock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_product_quantity_non_negative"),
    )

    @property
    def discounted_price(self) -> Decimal:
        pct = D(self.discount_percentage)
        if pct > 0 and self.discount_valid_until and self.discount_valid_until > utcnow():
            return round_money(D(self.price) * (Decimal("100") - pct) / Decimal("100"))
        return round_money(D(self.price))

    def can_supply(self, qty: int) -> bool:
        return bool(self.is_active and self.in_stock and int(self.quantity or 0) >= qty)

# meatcart/model/order.py
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from sqlalchemy.orm import validates
from ..errors import ConflictError
from ..extensions import db
from ..utils.dates import utcnow, iso
from ..utils.money import D, ZERO, round_money, format_inr

PENDING = "pending"
CONFIRMED = "confirmed"
PREPARING = "preparing"
OUT_FOR_DELIVERY = "out-for-delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"

STATUSES = (PENDING, CONFIRMED, PREPARING, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)
ACTIVE_STATUSES = (CONFIRMED, PREPARING, OUT_FOR_DELIVERY)
TERMINAL_STATUSES = (DELIVERED, CANCELLED)

# from -> allowed targets
TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {PREPARING, OUT_FOR_DELIVERY, CANCELLED},
    PREPARING: {OUT_FOR_DELIVERY, CANCELLED},
    OUT_FOR_DELIVERY: {DELIVERED, CANCELLED},
    DELIVERED: set(),
    CANCELLED: set(),
}

PAYMENT_METHODS = ("cash-on-delivery", "online", "card")
PAYMENT_STATUSES = ("pending", "completed", "failed", "refunded")


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), unique=True, nullable=False, index=True)  # e.g. "MD17290000000000042"
    customer_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=PENDING, index=True)

    # snapshots
    delivery_address = db.Column(db.JSON, nullable=False)
    contact_phone = db.Column(db.String(32), nullable=False)
    alternate_phone = db.Column(db.String(32), nullable=True)
    special_instructions = db.Column(db.String(500), nullable=True)

    # pricing, fixed at creation
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    delivery_fee = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupon.id"), nullable=True)
    coupon_code = db.Column(db.String(20), nullable=True)

    # payment
    payment_method = db.Column(db.String(20), nullable=False)
    payment_status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    transaction_id = db.Column(db.String(64), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    # delivery
    assigned_to_id = db.Column(db.Integer, db.ForeignKey("delivery_boy.id"), nullable=True, index=True)
    estimated_time = db.Column(db.DateTime, nullable=True)
    actual_delivery_time = db.Column(db.DateTime, nullable=True)
    delivery_notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.id.asc()",
    )
    _history = db.relationship(
        "OrderStatusEvent",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusEvent.id.asc()",
    )
    assigned_to = db.relationship("DeliveryBoy", lazy="joined")

    @classmethod
    def place(cls, *, order_number: str, customer_id: int, items: list["OrderItem"],
              subtotal: Decimal, delivery_fee: Decimal, tax: Decimal, discount: Decimal,
              **fields) -> "Order":
        """Create a pending order; pricing total is computed here once and never again."""
        total = round_money(D(subtotal) + D(delivery_fee) + D(tax) - D(discount))
        if total < 0:
            total = ZERO
        order = cls(
            order_number=order_number,
            customer_id=customer_id,
            items=items,
            subtotal=round_money(subtotal),
            delivery_fee=round_money(delivery_fee),
            tax=round_money(tax),
            discount=round_money(discount),
            total=total,
            status=PENDING,
            **fields,
        )
        order._history.append(OrderStatusEvent(
            status=PENDING, timestamp=utcnow(),
            updated_by_id=customer_id, updated_by_role="customer", notes="Order placed",
        ))
        return order

    @validates("order_number")
    def _freeze_order_number(self, key, value):
        if self.order_number is not None and value != self.order_number:
            raise ConflictError("order number cannot be changed")
        return value

    # ---- status history (append-only) ----
    @property
    def status_history(self) -> tuple["OrderStatusEvent", ...]:
        return tuple(self._history)

    def can_transition_to(self, status: str) -> bool:
        return status in TRANSITIONS.get(self.status, set())

    def append_transition(self, status: str, *, actor_id: int | None = None,
                          actor_role: str | None = None, notes: str | None = None,
                          at: datetime | None = None) -> "OrderStatusEvent":
        """Move to `status` and record it; the only way an order changes state."""
        if not self.can_transition_to(status):
            raise ConflictError(f"Order cannot move from {self.status} to {status}")
        event = OrderStatusEvent(
            status=status,
            timestamp=at or utcnow(),
            updated_by_id=actor_id,
            updated_by_role=actor_role,
            notes=notes,
        )
        self._history.append(event)
        self.status = status
        return event

    def first_reached(self, status: str) -> datetime | None:
        return next((e.timestamp for e in self._history if e.status == status), None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def as_api(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "items": [i.as_api() for i in self.items],
            "delivery_address": self.delivery_address,
            "contact_info": {
                "phone": self.contact_phone,
                "alternate_phone": self.alternate_phone,
            },
            "special_instructions": self.special_instructions,
            "pricing": {
                "subtotal": float(D(self.subtotal)),
                "delivery_fee": float(D(self.delivery_fee)),
                "tax": float(D(self.tax)),
                "discount": float(D(self.discount)),
                "total": float(D(self.total)),
                "formatted_total": format_inr(self.total),
            },
            "coupon_code": self.coupon_code,
            "payment_info": {
                "method": self.payment_method,
                "status": self.payment_status,
                "transaction_id": self.transaction_id,
                "paid_at": iso(self.paid_at),
            },
            "delivery": {
                "assigned_to": {
                    "id": self.assigned_to.id,
                    "name": self.assigned_to.name,
                    "phone": self.assigned_to.phone,
                } if self.assigned_to else None,
                "estimated_time": iso(self.estimated_time),
                "actual_delivery_time": iso(self.actual_delivery_time),
                "notes": self.delivery_notes,
            },
            "status_history": [e.as_api() for e in self._history],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, db.ForeignKey("product.id"), nullable=False, index=True)
    name = db.Column(db.String(100))
    category = db.Column(db.String(32))
    quantity = db.Column(db.Integer, nullable=False)
    price_at_time = db.Column(db.Numeric(12, 2), nullable=False)
    subtotal = db.Column(db.Numeric(12, 2), nullable=False)

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "category": self.category,
            "quantity": self.quantity,
            "price_at_time": float(D(self.price_at_time)),
            "subtotal": float(D(self.subtotal)),
        }


class OrderStatusEvent(db.Model):
    __tablename__ = "order_status_events"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_by_id = db.Column(db.Integer, nullable=True)
    updated_by_role = db.Column(db.String(16), nullable=True)   # customer | admin | delivery
    notes = db.Column(db.String(500), nullable=True)

    def as_api(self):
        return {
            "status": self.status,
            "timestamp": iso(self.timestamp),
            "updated_by": {"id": self.updated_by_id, "role": self.updated_by_role} if self.updated_by_id else None,
            "notes": self.notes,
        }

#  --- meatcart/model/notification.py ---
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import iso


class Notification(db.Model):
    __tablename__ = "notification"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(db.Integer, nullable=False, index=True)
    recipient_role = db.Column(db.String(16), nullable=False, default="customer")  # customer | delivery
    type = db.Column(db.String(40), nullable=False, index=True)
    title = db.Column(db.String(100), nullable=False)
    message = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(16), nullable=False, default="order")
    priority = db.Column(db.String(16), nullable=False, default="medium")
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)  # false = cleared by the recipient
    read_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, server_default=func.now(), index=True)

    def as_api(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "priority": self.priority,
            "order_id": self.order_id,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "created_at": iso(self.created_at),
        }

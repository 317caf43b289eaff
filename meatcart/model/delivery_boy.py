# --- meatcart/model/delivery_boy.py ---
from sqlalchemy.sql import func
from ..extensions import db
from ..utils.dates import iso

STATUSES = ("active", "inactive", "on-leave", "suspended")
AVAILABILITIES = ("available", "busy", "offline")
VEHICLE_TYPES = ("two-wheeler", "three-wheeler", "car")


class DeliveryBoy(db.Model):
    __tablename__ = "delivery_boy"

    id = db.Column(db.Integer, primary_key=True)
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False, default="")

    vehicle_type = db.Column(db.String(20), nullable=False, default="two-wheeler")
    vehicle_registration = db.Column(db.String(32), unique=True, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="active", index=True)
    availability = db.Column(db.String(20), nullable=False, default="offline", index=True)
    is_approved = db.Column(db.Boolean, nullable=False, default=False)
    is_verified = db.Column(db.Boolean, nullable=False, default=False)

    # rolling stats
    total_deliveries = db.Column(db.Integer, nullable=False, default=0)
    completed_deliveries = db.Column(db.Integer, nullable=False, default=0)
    average_delivery_time = db.Column(db.Integer, nullable=False, default=0)  # minutes
    rating = db.Column(db.Float, nullable=False, default=4.5)

    last_active = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def completion_rate(self) -> float:
        total = self.total_deliveries or 0
        if total <= 0:
            return 100.0
        return round((self.completed_deliveries or 0) / total * 100, 1)

    def stats(self):
        return {
            "total_deliveries": self.total_deliveries or 0,
            "completed_deliveries": self.completed_deliveries or 0,
            "completion_rate": self.completion_rate,
            "average_delivery_time": self.average_delivery_time or 0,
            "rating": self.rating,
            "availability": self.availability,
            "status": self.status,
        }

    def as_api(self):
        return {
            "id": self.id,
            "name": self.name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "vehicle": {
                "type": self.vehicle_type,
                "registration_number": self.vehicle_registration,
            },
            "is_approved": self.is_approved,
            "is_verified": self.is_verified,
            "last_active": iso(self.last_active),
            **self.stats(),
        }

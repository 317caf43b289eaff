# ------ meatcart/model/__init__.py ------

from .user import User
from .delivery_boy import DeliveryBoy
from .product import Product
from .coupon import Coupon, CouponUsage
from .cart import Cart, CartItem
from .order import Order, OrderItem, OrderStatusEvent
from .notification import Notification

__all__ = [
    "User",
    "DeliveryBoy",
    "Product",
    "Coupon",
    "CouponUsage",
    "Cart",
    "CartItem",
    "Order",
    "OrderItem",
    "OrderStatusEvent",
    "Notification",
]

from .base import Base
from .order import ALLOWED_STATUSES, Order, OrderItem
from .product import Product
from .fulfillment_record import FAILED_STATUS, PLACING_STATUS, FulfillmentRecord
from .order_tracking import OrderTracking, TrackingStage
from .admin_notification import AdminNotification

__all__ = [
    "Base",
    "ALLOWED_STATUSES",
    "Order",
    "OrderItem",
    "Product",
    "FAILED_STATUS",
    "PLACING_STATUS",
    "FulfillmentRecord",
    "OrderTracking",
    "TrackingStage",
    "AdminNotification",
]

"""Latest tracking snapshot per order."""
import enum

from sqlalchemy import Column, DateTime, ForeignKey, String
from .base import Base


class TrackingStage(str, enum.Enum):
    """Local shipment stage derived from the provider's free-text tracking status.

    Not a strict total order: ``unsuccessful_delivery`` may be followed by a
    new ``out_for_delivery`` attempt.
    """

    PROCESSING = "processing"
    DISPATCHED = "dispatched"
    EN_ROUTE = "en_route"
    ARRIVED_COURIER_FACILITY = "arrived_courier_facility"
    OUT_FOR_DELIVERY = "out_for_delivery"
    AVAILABLE_FOR_PICKUP = "available_for_pickup"
    UNSUCCESSFUL_DELIVERY = "unsuccessful_delivery"
    DELIVERED = "delivered"


class OrderTracking(Base):
    __tablename__ = "order_tracking"

    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), primary_key=True)
    tracking_number = Column(String(128), nullable=True)
    logistic_name = Column(String(128), nullable=True)
    tracking_from = Column(String(64), nullable=True)
    tracking_to = Column(String(64), nullable=True)
    delivery_day = Column(String(64), nullable=True)
    delivery_time = Column(String(64), nullable=True)
    tracking_status = Column(String(255), nullable=True)
    tracking_stage = Column(String(32), nullable=True)
    last_mile_carrier = Column(String(128), nullable=True)
    last_track_number = Column(String(128), nullable=True)
    updated_at = Column(DateTime, nullable=True)

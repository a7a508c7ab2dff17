"""Provider-side placement record, one per order."""
from sqlalchemy import Column, DateTime, ForeignKey, String, Text, func
from .base import Base


FAILED_STATUS = "failed"
# reserved before the provider is called; replaced by the outcome
PLACING_STATUS = "placing"


class FulfillmentRecord(Base):
    __tablename__ = "fulfillment_record"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    # token of the placement attempt that currently owns the record
    attempt_id = Column(String(36), nullable=True)
    external_order_id = Column(String(128), nullable=True)
    external_order_number = Column(String(128), nullable=True)
    external_status = Column(String(64), nullable=True)
    tracking_number = Column(String(128), nullable=True)
    logistic_name = Column(String(128), nullable=True)
    placed_at = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    @property
    def is_failed(self) -> bool:
        return self.external_status == FAILED_STATUS

    @property
    def is_placing(self) -> bool:
        return self.external_status == PLACING_STATUS

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import relationship
from .base import Base


ALLOWED_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled", "refunded")


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True)
    order_number = Column(String(64), nullable=False)
    user_id = Column(String(128), nullable=True)
    status = Column(String(32), nullable=False, default="pending")
    payment_status = Column(String(32), nullable=False, default="pending")
    total = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="ZAR")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivered_at = Column(DateTime, nullable=True)
    tracking_number = Column(String(128), nullable=True)
    tracking_url = Column(String(512), nullable=True)
    customer_notes = Column(Text, nullable=True)

    shipping_name = Column(String(255), nullable=True)
    shipping_address_line1 = Column(String(255), nullable=True)
    shipping_address_line2 = Column(String(255), nullable=True)
    shipping_city = Column(String(128), nullable=True)
    shipping_province = Column(String(128), nullable=True)
    shipping_postal_code = Column(String(32), nullable=True)
    shipping_country = Column(String(128), nullable=True)
    shipping_phone = Column(String(64), nullable=True)

    billing_name = Column(String(255), nullable=True)
    billing_email = Column(String(255), nullable=True)
    billing_country = Column(String(128), nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")


class OrderItem(Base):
    __tablename__ = "order_item"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    variant_id = Column(String(64), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)

    order = relationship("Order", back_populates="items")

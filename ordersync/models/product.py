from sqlalchemy import Column, DateTime, Numeric, String, func
from .base import Base


class Product(Base):
    __tablename__ = "product"

    id = Column(String(36), primary_key=True)
    provider_product_id = Column(String(64), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    # cost in the provider's pricing currency
    base_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

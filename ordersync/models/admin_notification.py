from sqlalchemy import Boolean, Column, DateTime, JSON, String, Text, func
from .base import Base


class AdminNotification(Base):
    __tablename__ = "admin_notification"

    id = Column(String(36), primary_key=True)
    type = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=True)
    link = Column(String(255), nullable=True)
    data = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

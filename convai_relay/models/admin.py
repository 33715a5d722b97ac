"""Admin model - dashboard accounts owning widget configurations"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from convai_relay.database import Base


class Admin(Base):
    __tablename__ = "admins"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    widget_configs = relationship("WidgetConfig", back_populates="admin", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Admin(id={self.id}, email='{self.email}')>"

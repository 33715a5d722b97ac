"""WidgetConfig model - an embeddable widget bound to one provider agent"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from convai_relay.database import Base

DEFAULT_THEME = {
    "primary": "#0066cc",
    "background": "#ffffff",
    "text": "#ffffff",
}


class WidgetConfig(Base):
    __tablename__ = "widget_configs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, ForeignKey("admins.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    agent_id = Column(String(255), nullable=False)

    # Provider API key, Fernet-encrypted (see services.encryption)
    api_key_encrypted = Column(Text, nullable=False)

    theme = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_THEME))
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    admin = relationship("Admin", back_populates="widget_configs")
    conversations = relationship("Conversation", back_populates="config")

    def __repr__(self):
        return f"<WidgetConfig(id={self.id}, name='{self.name}', agent_id='{self.agent_id}')>"

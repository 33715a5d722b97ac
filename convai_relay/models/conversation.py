"""Conversation model - one record per relay session"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from convai_relay.database import Base


class Conversation(Base):
    """Conversation held through one relay connection.

    ``messages``, ``sentiment_trend`` and ``emotional_states`` are JSON arrays
    rewritten as a whole on every append; always assign a new list so the
    change is tracked.
    """

    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    config_id = Column(Integer, ForeignKey("widget_configs.id", ondelete="SET NULL"), nullable=True, index=True)
    agent_id = Column(String(255), nullable=False)

    # Random token held by the owning relay; every ledger write must present it
    owner_token = Column(String(64), nullable=False)

    # [{"role", "content", "timestamp", "sentiment": {"score", "comparative", "mood"} | null}]
    messages = Column(JSON, nullable=False, default=list)

    started_at = Column(DateTime(timezone=True), nullable=False)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration = Column(Integer, nullable=True)  # seconds

    total_turns = Column(Integer, nullable=False, default=0)
    interruptions = Column(Integer, nullable=False, default=0)

    overall_sentiment = Column(Float, nullable=True)
    sentiment_trend = Column(JSON, nullable=False, default=list)  # [{"timestamp", "score"}]
    emotional_states = Column(JSON, nullable=False, default=list)  # [{"timestamp", "score", "mood"}]

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    config = relationship("WidgetConfig", back_populates="conversations")
    metrics = relationship("ConversationMetrics", back_populates="conversation", uselist=False, cascade="all, delete-orphan")
    feedback = relationship("ConversationFeedback", back_populates="conversation", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_conversations_started", "started_at"),
        Index("idx_conversations_agent", "agent_id", "started_at"),
    )

    def __repr__(self):
        return f"<Conversation(id={self.id}, agent_id='{self.agent_id}', turns={self.total_turns})>"

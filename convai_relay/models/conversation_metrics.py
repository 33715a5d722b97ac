"""ConversationMetrics model - written once when a conversation is finalized"""

from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from convai_relay.database import Base


class ConversationMetrics(Base):
    __tablename__ = "conversation_metrics"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)

    avg_response_time = Column(Float, nullable=False)  # seconds per turn
    user_engagement_score = Column(Integer, nullable=False)  # 0-100
    completion_rate = Column(Float, nullable=False)
    successful_interruptions = Column(Integer, nullable=False, default=0)
    failed_interruptions = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    conversation = relationship("Conversation", back_populates="metrics")

    # One row per conversation, also guards against a double finalize
    __table_args__ = (
        UniqueConstraint("conversation_id", name="uq_conversation_metrics_conversation"),
    )

    def __repr__(self):
        return f"<ConversationMetrics(conversation_id={self.conversation_id}, engagement={self.user_engagement_score})>"

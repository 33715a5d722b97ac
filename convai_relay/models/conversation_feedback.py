"""ConversationFeedback model - optional rating left after a conversation"""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from convai_relay.database import Base


class ConversationFeedback(Base):
    __tablename__ = "conversation_feedback"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    feedback = Column(Text, nullable=True)
    sentiment = Column(String(20), nullable=False)  # positive | neutral | negative
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    conversation = relationship("Conversation", back_populates="feedback")

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_conversation_feedback_rating"),
        Index("idx_conversation_feedback_created", "created_at"),
    )

    def __repr__(self):
        return f"<ConversationFeedback(conversation_id={self.conversation_id}, rating={self.rating})>"

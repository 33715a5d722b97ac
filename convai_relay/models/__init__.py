"""SQLAlchemy ORM models"""

from convai_relay.models.admin import Admin
from convai_relay.models.widget_config import WidgetConfig
from convai_relay.models.conversation import Conversation
from convai_relay.models.conversation_metrics import ConversationMetrics
from convai_relay.models.conversation_feedback import ConversationFeedback

__all__ = [
    "Admin",
    "WidgetConfig",
    "Conversation",
    "ConversationMetrics",
    "ConversationFeedback",
]

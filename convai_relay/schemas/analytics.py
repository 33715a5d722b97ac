"""Analytics dashboard response schemas.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SentimentTrendPoint(CamelModel):
    timestamp: datetime
    score: float


class MoodCount(CamelModel):
    mood: str
    count: int


class MetricsSummaryResponse(CamelModel):
    """Response schema for ``GET /api/analytics/metrics``."""

    total_conversations: int = 0
    avg_duration: float = Field(0.0, description="Mean conversation duration in seconds")
    avg_engagement: float = Field(0.0, description="Mean user engagement score (0-100)")
    avg_sentiment: float = Field(0.0, description="Mean overall sentiment across conversations")
    sentiment_trend: List[SentimentTrendPoint] = Field(default_factory=list)
    emotional_state_distribution: List[MoodCount] = Field(default_factory=list)
    satisfaction_rate: float = Field(0.0, description="Percent of feedback rated 4 or 5")


class SentimentCount(CamelModel):
    sentiment: str
    count: int


class FeedbackItem(CamelModel):
    id: int
    conversation_id: int
    rating: int
    feedback: Optional[str] = None
    sentiment: str
    created_at: datetime


class FeedbackSummaryResponse(CamelModel):
    """Response schema for ``GET /api/analytics/feedback``."""

    sentiment_distribution: List[SentimentCount] = Field(default_factory=list)
    recent_feedback: List[FeedbackItem] = Field(default_factory=list)
    total_feedback: int = 0
    avg_rating: float = 0.0


class MessageSentiment(CamelModel):
    score: float
    comparative: float
    mood: str


class ConversationMessage(CamelModel):
    id: int
    role: str
    content: str
    timestamp: datetime
    sentiment: Optional[MessageSentiment] = None


class ConversationMetricsInfo(CamelModel):
    avg_response_time: float = Field(..., description="Seconds per turn")
    user_engagement_score: int
    completion_rate: float
    successful_interruptions: int
    failed_interruptions: int


class ConversationDetailResponse(CamelModel):
    """Response schema for ``GET /api/analytics/conversation``."""

    id: int
    agent_id: str
    config_id: Optional[int] = None
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="Seconds")
    total_turns: int
    interruptions: int
    overall_sentiment: Optional[float] = None
    messages: List[ConversationMessage] = Field(default_factory=list)
    sentiment_trend: List[Dict[str, Any]] = Field(default_factory=list)
    emotional_states: List[Dict[str, Any]] = Field(default_factory=list)
    metrics: Optional[ConversationMetricsInfo] = None

"""Read-only analytics over the conversation ledger.

All queries accept an optional ``[start_date, end_date]`` range (inclusive,
naive datetimes are taken as UTC) and return zeroed/empty results when there
is no data.  Conversations are filtered on ``started_at``, feedback on
``created_at``.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from convai_relay.exceptions import NotFoundError
from convai_relay.models.conversation import Conversation
from convai_relay.models.conversation_feedback import ConversationFeedback
from convai_relay.models.conversation_metrics import ConversationMetrics
from convai_relay.schemas.analytics import (
    ConversationDetailResponse,
    ConversationMessage,
    ConversationMetricsInfo,
    FeedbackItem,
    FeedbackSummaryResponse,
    MessageSentiment,
    MetricsSummaryResponse,
    MoodCount,
    SentimentCount,
    SentimentTrendPoint,
)
from convai_relay.services.sentiment import MOOD_NEGATIVE, MOOD_NEUTRAL, MOOD_POSITIVE

SATISFIED_MIN_RATING = 4
MOOD_ORDER = (MOOD_POSITIVE, MOOD_NEUTRAL, MOOD_NEGATIVE)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return _as_utc(parsed)


def _round(value: Optional[float], digits: int = 2) -> float:
    if value is None:
        return 0.0
    return round(float(value), digits)


def _date_filters(column, start_date: Optional[datetime], end_date: Optional[datetime]) -> list:
    filters = []
    if start_date is not None:
        filters.append(column >= _as_utc(start_date))
    if end_date is not None:
        filters.append(column <= _as_utc(end_date))
    return filters


def _ordered_counts(counter: Counter) -> list[tuple[str, int]]:
    """Known moods first in fixed order, then anything else alphabetically."""
    known = [(mood, counter[mood]) for mood in MOOD_ORDER if counter.get(mood)]
    extra = sorted((key, count) for key, count in counter.items() if key not in MOOD_ORDER and count)
    return known + extra


async def get_metrics_summary(
    db: AsyncSession,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> MetricsSummaryResponse:
    """Dashboard headline numbers for conversations started in the range."""
    conv_filters = _date_filters(Conversation.started_at, start_date, end_date)

    totals = (
        await db.execute(
            select(
                func.count(Conversation.id),
                func.avg(Conversation.duration),
                func.avg(Conversation.overall_sentiment),
            ).where(*conv_filters)
        )
    ).one()
    total_conversations = int(totals[0] or 0)
    if total_conversations == 0:
        satisfaction = await _satisfaction_rate(db, start_date, end_date)
        return MetricsSummaryResponse(satisfaction_rate=satisfaction)

    avg_engagement = (
        await db.execute(
            select(func.avg(ConversationMetrics.user_engagement_score))
            .join(Conversation, Conversation.id == ConversationMetrics.conversation_id)
            .where(*conv_filters)
        )
    ).scalar_one_or_none()

    rows = (
        await db.execute(
            select(Conversation.started_at, Conversation.overall_sentiment, Conversation.emotional_states)
            .where(*conv_filters)
            .order_by(Conversation.started_at.asc(), Conversation.id.asc())
        )
    ).all()

    trend: list[SentimentTrendPoint] = []
    moods: Counter = Counter()
    for started_at, overall, states in rows:
        if overall is not None:
            trend.append(SentimentTrendPoint(timestamp=_as_utc(started_at), score=float(overall)))
        for state in states or []:
            if isinstance(state, dict) and isinstance(state.get("mood"), str):
                moods[state["mood"]] += 1

    return MetricsSummaryResponse(
        total_conversations=total_conversations,
        avg_duration=_round(totals[1]),
        avg_engagement=_round(avg_engagement),
        avg_sentiment=_round(totals[2], 4),
        sentiment_trend=trend,
        emotional_state_distribution=[MoodCount(mood=mood, count=count) for mood, count in _ordered_counts(moods)],
        satisfaction_rate=await _satisfaction_rate(db, start_date, end_date),
    )


async def _satisfaction_rate(
    db: AsyncSession,
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> float:
    filters = _date_filters(ConversationFeedback.created_at, start_date, end_date)
    total, satisfied = (
        await db.execute(
            select(
                func.count(ConversationFeedback.id),
                func.sum(case((ConversationFeedback.rating >= SATISFIED_MIN_RATING, 1), else_=0)),
            ).where(*filters)
        )
    ).one()
    if not total:
        return 0.0
    return round(100.0 * int(satisfied or 0) / int(total), 2)


async def get_feedback_summary(
    db: AsyncSession,
    limit: int = 10,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> FeedbackSummaryResponse:
    """Feedback label distribution plus the most recent ``limit`` entries."""
    filters = _date_filters(ConversationFeedback.created_at, start_date, end_date)

    total, avg_rating = (
        await db.execute(
            select(func.count(ConversationFeedback.id), func.avg(ConversationFeedback.rating)).where(*filters)
        )
    ).one()
    if not total:
        return FeedbackSummaryResponse()

    label_rows = (
        await db.execute(
            select(ConversationFeedback.sentiment, func.count(ConversationFeedback.id))
            .where(*filters)
            .group_by(ConversationFeedback.sentiment)
        )
    ).all()
    labels = Counter({label: int(count) for label, count in label_rows})

    recent = (
        await db.execute(
            select(ConversationFeedback)
            .where(*filters)
            .order_by(ConversationFeedback.created_at.desc(), ConversationFeedback.id.desc())
            .limit(max(0, limit))
        )
    ).scalars().all()

    return FeedbackSummaryResponse(
        sentiment_distribution=[
            SentimentCount(sentiment=label, count=count) for label, count in _ordered_counts(labels)
        ],
        recent_feedback=[
            FeedbackItem(
                id=row.id,
                conversation_id=row.conversation_id,
                rating=row.rating,
                feedback=row.feedback,
                sentiment=row.sentiment,
                created_at=_as_utc(row.created_at),
            )
            for row in recent
        ],
        total_feedback=int(total),
        avg_rating=_round(avg_rating),
    )


def normalize_messages(raw_messages: Any, fallback: datetime) -> list[ConversationMessage]:
    """Stored message array -> sequentially numbered messages with UTC timestamps."""
    normalized: list[ConversationMessage] = []
    for raw in raw_messages or []:
        if not isinstance(raw, dict):
            continue
        sentiment = raw.get("sentiment")
        normalized.append(
            ConversationMessage(
                id=len(normalized) + 1,
                role=str(raw.get("role") or "assistant"),
                content=str(raw.get("content") or ""),
                timestamp=_parse_timestamp(raw.get("timestamp")) or fallback,
                sentiment=MessageSentiment(**sentiment) if isinstance(sentiment, dict) else None,
            )
        )
    return normalized


async def get_conversation_detail(
    db: AsyncSession,
    conversation_id: Optional[int] = None,
) -> ConversationDetailResponse:
    """One conversation by id, or the most recently started one.

    Raises:
        NotFoundError: unknown id, or no conversations at all
    """
    query = select(Conversation)
    if conversation_id is not None:
        query = query.where(Conversation.id == conversation_id)
    else:
        query = query.order_by(Conversation.started_at.desc(), Conversation.id.desc()).limit(1)

    conversation = (await db.execute(query)).scalars().first()
    if conversation is None:
        if conversation_id is None:
            raise NotFoundError("No conversations recorded yet")
        raise NotFoundError(f"Conversation {conversation_id} not found")

    metrics_row = (
        await db.execute(
            select(ConversationMetrics).where(ConversationMetrics.conversation_id == conversation.id)
        )
    ).scalar_one_or_none()

    started_at = _as_utc(conversation.started_at)
    return ConversationDetailResponse(
        id=conversation.id,
        agent_id=conversation.agent_id,
        config_id=conversation.config_id,
        started_at=started_at,
        ended_at=_as_utc(conversation.ended_at),
        duration=conversation.duration,
        total_turns=conversation.total_turns or 0,
        interruptions=conversation.interruptions or 0,
        overall_sentiment=conversation.overall_sentiment,
        messages=normalize_messages(conversation.messages, started_at),
        sentiment_trend=list(conversation.sentiment_trend or []),
        emotional_states=list(conversation.emotional_states or []),
        metrics=ConversationMetricsInfo(
            avg_response_time=metrics_row.avg_response_time,
            user_engagement_score=metrics_row.user_engagement_score,
            completion_rate=metrics_row.completion_rate,
            successful_interruptions=metrics_row.successful_interruptions,
            failed_interruptions=metrics_row.failed_interruptions,
        )
        if metrics_row is not None
        else None,
    )

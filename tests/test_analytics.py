"""Tests for analytics aggregation (service and API)."""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

from convai_relay.exceptions import NotFoundError
from convai_relay.services.analytics import (
    get_conversation_detail,
    get_feedback_summary,
    get_metrics_summary,
    normalize_messages,
)
from convai_relay.services.ledger import ROLE_ASSISTANT, ROLE_USER, LedgerMessage
from convai_relay.services.sentiment import score

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _record(ledger, started_at, turns, duration_seconds):
    handle = await ledger.create_conversation(agent_id="agent-1", started_at=started_at)
    for offset, (role, text) in enumerate(turns):
        await ledger.append_message(
            handle,
            LedgerMessage(
                role=role,
                content=text,
                timestamp=started_at + timedelta(seconds=offset),
                sentiment=score(text),
            ),
        )
    await ledger.finalize(handle, total_turns=len(turns), ended_at=started_at + timedelta(seconds=duration_seconds))
    return handle


@pytest.fixture
def seeded(ledger):
    """Two finished conversations a day apart, one rating each."""

    async def _seed():
        first = await _record(
            ledger,
            T0,
            [(ROLE_USER, "I love this!"), (ROLE_ASSISTANT, "thanks")],
            60,
        )
        second = await _record(ledger, T0 + timedelta(days=1), [(ROLE_USER, "this is bad")], 30)
        good = await ledger.record_feedback(first.id, rating=5, feedback="Great support")
        bad = await ledger.record_feedback(second.id, rating=2, feedback="Awful wait")
        return first, second, good, bad

    return _seed


# ---- metrics summary ----

@pytest.mark.asyncio
async def test_metrics_summary_empty_store(db_session):
    summary = await get_metrics_summary(db_session)

    assert summary.total_conversations == 0
    assert summary.avg_duration == 0
    assert summary.avg_engagement == 0
    assert summary.avg_sentiment == 0
    assert summary.sentiment_trend == []
    assert summary.emotional_state_distribution == []
    assert summary.satisfaction_rate == 0


@pytest.mark.asyncio
async def test_metrics_summary_aggregates(db_session, seeded):
    await seeded()

    summary = await get_metrics_summary(db_session)

    assert summary.total_conversations == 2
    assert summary.avg_duration == pytest.approx(45.0)
    assert summary.avg_engagement == pytest.approx(30.0)
    assert summary.avg_sentiment == pytest.approx((2.5 + -3.0) / 2)
    assert [point.score for point in summary.sentiment_trend] == [pytest.approx(2.5), pytest.approx(-3.0)]
    assert summary.sentiment_trend[0].timestamp == T0
    assert [(m.mood, m.count) for m in summary.emotional_state_distribution] == [("positive", 2), ("negative", 1)]
    assert summary.satisfaction_rate == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_metrics_summary_date_range(db_session, seeded):
    await seeded()

    summary = await get_metrics_summary(db_session, start_date=T0 + timedelta(hours=12))
    assert summary.total_conversations == 1
    assert summary.avg_duration == pytest.approx(30.0)
    assert [(m.mood, m.count) for m in summary.emotional_state_distribution] == [("negative", 1)]

    # Naive bounds are read as UTC
    summary = await get_metrics_summary(db_session, end_date=(T0 + timedelta(hours=1)).replace(tzinfo=None))
    assert summary.total_conversations == 1
    assert summary.avg_engagement == pytest.approx(40.0)


# ---- feedback summary ----

@pytest.mark.asyncio
async def test_feedback_summary_empty_store(db_session):
    summary = await get_feedback_summary(db_session)
    assert summary.total_feedback == 0
    assert summary.avg_rating == 0
    assert summary.sentiment_distribution == []
    assert summary.recent_feedback == []


@pytest.mark.asyncio
async def test_feedback_summary(db_session, seeded):
    _, _, good, bad = await seeded()

    summary = await get_feedback_summary(db_session, limit=10)

    assert summary.total_feedback == 2
    assert summary.avg_rating == pytest.approx(3.5)
    assert [(s.sentiment, s.count) for s in summary.sentiment_distribution] == [("positive", 1), ("negative", 1)]
    assert [item.id for item in summary.recent_feedback] == [bad.id, good.id]

    limited = await get_feedback_summary(db_session, limit=1)
    assert [item.id for item in limited.recent_feedback] == [bad.id]
    assert limited.total_feedback == 2


# ---- conversation detail ----

@pytest.mark.asyncio
async def test_conversation_detail_by_id(db_session, seeded):
    first, _, _, _ = await seeded()

    detail = await get_conversation_detail(db_session, first.id)

    assert detail.id == first.id
    assert detail.duration == 60
    assert detail.total_turns == 2
    assert [m.id for m in detail.messages] == [1, 2]
    assert [m.role for m in detail.messages] == [ROLE_USER, ROLE_ASSISTANT]
    assert detail.messages[0].timestamp == T0
    assert detail.messages[1].sentiment.mood == "positive"
    assert detail.metrics.avg_response_time == pytest.approx(30.0)
    assert detail.metrics.completion_rate == 100


@pytest.mark.asyncio
async def test_conversation_detail_defaults_to_most_recent(db_session, seeded):
    _, second, _, _ = await seeded()
    detail = await get_conversation_detail(db_session)
    assert detail.id == second.id


@pytest.mark.asyncio
async def test_conversation_detail_not_found(db_session):
    with pytest.raises(NotFoundError):
        await get_conversation_detail(db_session)
    with pytest.raises(NotFoundError):
        await get_conversation_detail(db_session, 42)


def test_normalize_messages_repairs_timestamps():
    messages = normalize_messages(
        [
            {"role": "user", "content": "hi", "timestamp": "2026-03-01T12:00:05Z", "sentiment": None},
            "garbage",
            {"role": "assistant", "content": "hello", "timestamp": "not a date"},
        ],
        fallback=T0,
    )
    assert [m.id for m in messages] == [1, 2]
    assert messages[0].timestamp == T0 + timedelta(seconds=5)
    assert messages[1].timestamp == T0


# ---- API ----

@pytest.mark.asyncio
async def test_metrics_endpoint_camel_case(client: AsyncClient, seeded):
    await seeded()

    response = await client.get("/api/analytics/metrics")
    assert response.status_code == 200
    body = response.json()
    assert body["totalConversations"] == 2
    assert body["avgDuration"] == 45.0
    assert body["satisfactionRate"] == 50.0
    assert body["emotionalStateDistribution"][0] == {"mood": "positive", "count": 2}
    assert len(body["sentimentTrend"]) == 2


@pytest.mark.asyncio
async def test_metrics_endpoint_empty_store(client: AsyncClient):
    response = await client.get("/api/analytics/metrics")
    assert response.status_code == 200
    assert response.json() == {
        "totalConversations": 0,
        "avgDuration": 0.0,
        "avgEngagement": 0.0,
        "avgSentiment": 0.0,
        "sentimentTrend": [],
        "emotionalStateDistribution": [],
        "satisfactionRate": 0.0,
    }


@pytest.mark.asyncio
async def test_metrics_endpoint_date_filter(client: AsyncClient, seeded):
    await seeded()
    response = await client.get("/api/analytics/metrics", params={"startDate": "2026-03-02T00:00:00Z"})
    assert response.json()["totalConversations"] == 1


@pytest.mark.asyncio
async def test_metrics_endpoint_rejects_inverted_range(client: AsyncClient):
    response = await client.get(
        "/api/analytics/metrics",
        params={"startDate": "2026-03-02T00:00:00Z", "endDate": "2026-03-01T00:00:00Z"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_feedback_endpoint(client: AsyncClient, seeded):
    await seeded()
    response = await client.get("/api/analytics/feedback", params={"limit": 1})
    assert response.status_code == 200
    body = response.json()
    assert body["totalFeedback"] == 2
    assert body["avgRating"] == 3.5
    assert len(body["recentFeedback"]) == 1
    assert set(body["recentFeedback"][0]) >= {"id", "conversationId", "rating", "feedback", "sentiment", "createdAt"}


@pytest.mark.asyncio
async def test_conversation_endpoint(client: AsyncClient, seeded):
    first, _, _, _ = await seeded()

    response = await client.get("/api/analytics/conversation", params={"conversationId": first.id})
    assert response.status_code == 200
    body = response.json()
    assert body["id"] == first.id
    assert body["messages"][0]["id"] == 1
    assert body["metrics"]["avgResponseTime"] == 30.0

    missing = await client.get("/api/analytics/conversation", params={"conversationId": 9999})
    assert missing.status_code == 404

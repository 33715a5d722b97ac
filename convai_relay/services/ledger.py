"""Conversation ledger - persistence for relay sessions.

The ledger owns the Conversation / ConversationMetrics / ConversationFeedback
records.  A conversation is written only through the :class:`ConversationHandle`
returned by :meth:`ConversationLedger.create_conversation`: every write matches
on ``(id, owner_token)`` so a second writer is rejected instead of silently
interleaving its read-modify-write with the owner's.

Appends rewrite the whole message array and recompute aggregates from
scratch.  That keeps the stored shape simple and is fine for short sessions,
but cost grows linearly with conversation length.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from convai_relay.exceptions import (
    ConversationOwnershipError,
    NotFoundError,
    PersistenceError,
)
from convai_relay.models.conversation import Conversation
from convai_relay.models.conversation_feedback import ConversationFeedback
from convai_relay.models.conversation_metrics import ConversationMetrics
from convai_relay.services.sentiment import SentimentResult, score

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

COMPLETION_RATE = 100.0
ENGAGEMENT_PER_TURN = 20
MAX_ENGAGEMENT = 100

# asyncpg raises connection failures and timeouts unwrapped.
STORAGE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ConversationHandle:
    """Write capability for one conversation, held by its owning relay."""

    id: int
    owner_token: str
    started_at: datetime


@dataclass
class LedgerMessage:
    role: str
    content: str
    timestamp: datetime = field(default_factory=utcnow)
    sentiment: Optional[SentimentResult] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": as_utc(self.timestamp).isoformat(),
            "sentiment": self.sentiment.as_dict() if self.sentiment else None,
        }


@dataclass(frozen=True)
class FinalizedMetrics:
    conversation_id: int
    ended_at: datetime
    duration: int
    total_turns: int
    avg_response_time: float
    user_engagement_score: int
    completion_rate: float


def mean_sentiment(messages: List[Dict[str, Any]]) -> Optional[float]:
    """Arithmetic mean of message sentiment scores, skipping unscored messages."""
    scores = [
        float(message["sentiment"]["score"])
        for message in messages
        if isinstance(message.get("sentiment"), dict) and message["sentiment"].get("score") is not None
    ]
    if not scores:
        return None
    return sum(scores) / len(scores)


def compute_metrics(duration: int, total_turns: int) -> Dict[str, Any]:
    return {
        "avg_response_time": duration / max(total_turns, 1),
        "user_engagement_score": min(MAX_ENGAGEMENT, total_turns * ENGAGEMENT_PER_TURN),
        "completion_rate": COMPLETION_RATE,
        "successful_interruptions": 0,
        "failed_interruptions": 0,
    }


class ConversationLedger:
    """Async persistence for conversation records.

    Every public method opens its own session from ``session_factory`` so
    concurrent relays never share a session.  Database failures surface as
    :class:`PersistenceError`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _load_owned(self, db: AsyncSession, handle: ConversationHandle) -> Conversation:
        result = await db.execute(
            select(Conversation).where(
                Conversation.id == handle.id,
                Conversation.owner_token == handle.owner_token,
            )
        )
        conversation = result.scalar_one_or_none()
        if conversation is None:
            raise ConversationOwnershipError(handle.id)
        return conversation

    async def create_conversation(
        self,
        *,
        agent_id: str,
        config_id: Optional[int] = None,
        started_at: Optional[datetime] = None,
    ) -> ConversationHandle:
        started = as_utc(started_at or utcnow())
        token = secrets.token_hex(16)
        try:
            async with self._session_factory() as db:
                conversation = Conversation(
                    config_id=config_id,
                    agent_id=agent_id,
                    owner_token=token,
                    messages=[],
                    started_at=started,
                    total_turns=0,
                    interruptions=0,
                    sentiment_trend=[],
                    emotional_states=[],
                )
                db.add(conversation)
                await db.commit()
                conversation_id = conversation.id
        except STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to create conversation: {exc}") from exc

        logger.info("Conversation created: id=%s agent_id=%s config_id=%s", conversation_id, agent_id, config_id)
        return ConversationHandle(id=conversation_id, owner_token=token, started_at=started)

    async def append_message(self, handle: ConversationHandle, message: LedgerMessage) -> None:
        """Append ``message`` and refresh the sentiment aggregates."""
        try:
            async with self._session_factory() as db:
                conversation = await self._load_owned(db, handle)

                messages = [*(conversation.messages or []), message.to_record()]
                conversation.messages = messages
                conversation.total_turns = len(messages)

                if message.sentiment is not None:
                    overall = mean_sentiment(messages)
                    conversation.overall_sentiment = overall
                    stamp = as_utc(message.timestamp).isoformat()
                    conversation.sentiment_trend = [
                        *(conversation.sentiment_trend or []),
                        {"timestamp": stamp, "score": overall},
                    ]
                    conversation.emotional_states = [
                        *(conversation.emotional_states or []),
                        {"timestamp": stamp, "score": message.sentiment.score, "mood": message.sentiment.mood},
                    ]

                await db.commit()
        except STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to append message to conversation {handle.id}: {exc}") from exc

    async def finalize(
        self,
        handle: ConversationHandle,
        *,
        total_turns: int,
        ended_at: Optional[datetime] = None,
    ) -> Optional[FinalizedMetrics]:
        """Close the conversation and write its metrics row.

        Returns ``None`` when the conversation was already finalized.
        """
        ended = as_utc(ended_at or utcnow())
        try:
            async with self._session_factory() as db:
                conversation = await self._load_owned(db, handle)
                if conversation.ended_at is not None:
                    logger.debug("Conversation %s already finalized", handle.id)
                    return None

                started = as_utc(conversation.started_at)
                duration = max(0, int((ended - started).total_seconds()))
                values = compute_metrics(duration, total_turns)

                conversation.ended_at = ended
                conversation.duration = duration
                conversation.total_turns = total_turns
                db.add(ConversationMetrics(conversation_id=conversation.id, **values))
                await db.commit()
        except STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to finalize conversation {handle.id}: {exc}") from exc

        logger.info(
            "Conversation finalized: id=%s duration=%ss turns=%s",
            handle.id,
            duration,
            total_turns,
        )
        return FinalizedMetrics(
            conversation_id=handle.id,
            ended_at=ended,
            duration=duration,
            total_turns=total_turns,
            avg_response_time=values["avg_response_time"],
            user_engagement_score=values["user_engagement_score"],
            completion_rate=values["completion_rate"],
        )

    async def record_feedback(
        self,
        conversation_id: int,
        *,
        rating: int,
        feedback: Optional[str] = None,
    ) -> ConversationFeedback:
        """Store out-of-band feedback; the sentiment label is the mood of the text."""
        label = score(feedback or "").mood
        try:
            async with self._session_factory() as db:
                exists = await db.execute(select(Conversation.id).where(Conversation.id == conversation_id))
                if exists.scalar_one_or_none() is None:
                    raise NotFoundError(f"Conversation {conversation_id} not found")

                row = ConversationFeedback(
                    conversation_id=conversation_id,
                    rating=rating,
                    feedback=feedback,
                    sentiment=label,
                )
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except STORAGE_ERRORS as exc:
            raise PersistenceError(f"Failed to store feedback for conversation {conversation_id}: {exc}") from exc

        logger.info("Feedback stored: conversation_id=%s rating=%s sentiment=%s", conversation_id, rating, label)
        return row


_ledger: Optional[ConversationLedger] = None


def get_ledger() -> ConversationLedger:
    """Ledger bound to the application session factory."""
    global _ledger
    if _ledger is None:
        from convai_relay.database import AsyncSessionLocal

        _ledger = ConversationLedger(AsyncSessionLocal)
    return _ledger

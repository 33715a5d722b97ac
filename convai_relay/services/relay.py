"""Session relay - bridges one client socket and one provider socket.

Each client connection gets one :class:`SessionRelay`.  Two pump tasks read
the client leg and the upstream leg and push frames onto a single inbound
queue; :meth:`SessionRelay.run` drains that queue in one sequential loop, so
every state transition happens in exactly one place.  Frames keep their order
within a leg; there is no ordering between legs.

States::

    INIT -> CONNECTING_UPSTREAM -> ACTIVE -> CLOSING -> CLOSED
                               \\-> DEGRADED -/

``DEGRADED`` means the upstream connect failed: the client was told, the
socket stays open, and reconnecting is the client's call.

Failure policy:
- malformed or unexpected client events are dropped and logged
- upstream connect/send failures become ``{"type": "error"}`` frames
- ledger failures are logged; relaying continues
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from prometheus_client import Counter, Gauge

from convai_relay.exceptions import PersistenceError, ProtocolError, UpstreamError
from convai_relay.services.ledger import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ConversationHandle,
    ConversationLedger,
    LedgerMessage,
    utcnow,
)
from convai_relay.services.sentiment import SentimentResult, score
from convai_relay.services.upstream import UpstreamConnection, UpstreamConnector, connect_upstream

logger = logging.getLogger(__name__)

RELAY_ACTIVE_SESSIONS = Gauge(
    "relay_active_sessions",
    "Relay sessions currently running",
)
RELAY_EVENTS_TOTAL = Counter(
    "relay_events_total",
    "Relay events processed",
    ["source", "kind"],
)
RELAY_ERRORS_TOTAL = Counter(
    "relay_errors_total",
    "Relay errors recovered without closing the session",
    ["kind"],
)

# Native provider status spellings -> normalized voice status.
VOICE_STATUS_ALIASES: Dict[str, str] = {
    "listening": "listening",
    "user_speaking": "listening",
    "waiting": "listening",
    "speaking": "speaking",
    "agent_speaking": "speaking",
    "talking": "speaking",
    "thinking": "thinking",
    "processing": "thinking",
    "agent_thinking": "thinking",
}


class RelayState(str, Enum):
    INIT = "init"
    CONNECTING_UPSTREAM = "connecting_upstream"
    ACTIVE = "active"
    DEGRADED = "degraded"
    CLOSING = "closing"
    CLOSED = "closed"


class EventKind(str, Enum):
    CLIENT_FRAME = "client_frame"
    CLIENT_CLOSED = "client_closed"
    UPSTREAM_FRAME = "upstream_frame"
    UPSTREAM_CLOSED = "upstream_closed"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class RelayEvent:
    kind: EventKind
    data: Optional[str] = None


class ClientChannel(Protocol):
    async def receive(self) -> Optional[str]:
        """Next client frame as text, or ``None`` once the client is gone."""
        ...

    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


def parse_event(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON object frame or raise :class:`ProtocolError`."""
    try:
        payload = json.loads(raw or "")
    except (TypeError, ValueError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProtocolError("event must be a JSON object")
    return payload


def normalize_voice_status(payload: Dict[str, Any]) -> Optional[str]:
    """Map the provider's native status/mode field onto listening|speaking|thinking."""
    for field in ("status", "mode"):
        value = payload.get(field)
        if isinstance(value, str):
            normalized = VOICE_STATUS_ALIASES.get(value.strip().lower())
            if normalized:
                return normalized
    return None


def extract_content(payload: Dict[str, Any]) -> Optional[str]:
    """Assistant text carried by an upstream frame, if any."""
    for key in ("content", "text"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    event = payload.get("agent_response_event")
    if isinstance(event, dict):
        value = event.get("agent_response")
        if isinstance(value, str) and value.strip():
            return value
    return None


class SessionRelay:
    """Per-connection actor driving the relay state machine."""

    def __init__(
        self,
        client: ClientChannel,
        *,
        ledger: ConversationLedger,
        connect: UpstreamConnector = connect_upstream,
        analyzer: Callable[[str], SentimentResult] = score,
        default_config_id: Optional[int] = None,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._connect = connect
        self._analyzer = analyzer
        self._default_config_id = default_config_id

        self._state = RelayState.INIT
        self._events: asyncio.Queue[RelayEvent] = asyncio.Queue()
        self._upstream: Optional[UpstreamConnection] = None
        self._client_task: Optional[asyncio.Task] = None
        self._upstream_task: Optional[asyncio.Task] = None

        self._conversation: Optional[ConversationHandle] = None
        self._total_turns = 0
        self._finalized = False

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def conversation(self) -> Optional[ConversationHandle]:
        return self._conversation

    @property
    def total_turns(self) -> int:
        return self._total_turns

    # Loop ---------------------------------------------------------------------
    async def run(self) -> None:
        """Pump both legs until the session is closed."""
        RELAY_ACTIVE_SESSIONS.inc()
        self._client_task = asyncio.create_task(self._pump_client())
        try:
            while self._state is not RelayState.CLOSED:
                event = await self._events.get()
                await self.dispatch(event)
        finally:
            RELAY_ACTIVE_SESSIONS.dec()
            if self._state is not RelayState.CLOSED:
                await self.close("relay stopped")
            await self._stop_pumps()

    async def dispatch(self, event: RelayEvent) -> None:
        """Apply a single inbound event to the state machine."""
        if self._state is RelayState.CLOSED:
            return

        if event.kind is EventKind.CLIENT_FRAME:
            await self._on_client_frame(event.data)
        elif event.kind is EventKind.UPSTREAM_FRAME:
            await self._on_upstream_frame(event.data)
        elif event.kind is EventKind.CLIENT_CLOSED:
            await self.close("client disconnected")
        elif event.kind is EventKind.UPSTREAM_CLOSED:
            await self.close("upstream disconnected")

    async def close(self, reason: str = "closed") -> None:
        """Close both legs and finalize the conversation. Safe to call repeatedly."""
        if self._state in (RelayState.CLOSING, RelayState.CLOSED):
            return
        self._state = RelayState.CLOSING
        logger.info(
            "Closing relay session: conversation_id=%s reason=%s turns=%s",
            self._conversation.id if self._conversation else None,
            reason,
            self._total_turns,
        )

        if self._upstream is not None:
            await self._upstream.close()
        try:
            await self._client.close()
        except Exception as exc:
            logger.debug("Error while closing client socket: %s", exc)

        await self._finalize()
        self._state = RelayState.CLOSED
        self._events.put_nowait(RelayEvent(EventKind.SHUTDOWN))

    # Client leg -----------------------------------------------------------------
    async def _on_client_frame(self, raw: Optional[str]) -> None:
        try:
            payload = parse_event(raw)
        except ProtocolError as exc:
            self._protocol_error(f"dropping client event: {exc}")
            return

        kind = payload.get("type")
        if kind == "init":
            RELAY_EVENTS_TOTAL.labels(source="client", kind="init").inc()
            await self._handle_init(payload)
        elif kind == "message":
            RELAY_EVENTS_TOTAL.labels(source="client", kind="message").inc()
            await self._handle_outbound(payload)
        else:
            self._protocol_error(f"unknown client event type: {kind!r}")

    async def _handle_init(self, payload: Dict[str, Any]) -> None:
        if self._state is not RelayState.INIT:
            self._protocol_error(f"init ignored in state {self._state.value}")
            return

        agent_id = payload.get("agentId")
        signed_url = payload.get("signedUrl")
        if not isinstance(agent_id, str) or not agent_id or not isinstance(signed_url, str) or not signed_url:
            self._protocol_error("init requires agentId and signedUrl")
            return

        config_id = payload.get("configId", self._default_config_id)
        if config_id is not None and (isinstance(config_id, bool) or not isinstance(config_id, int)):
            config_id = self._default_config_id

        self._state = RelayState.CONNECTING_UPSTREAM

        try:
            self._conversation = await self._ledger.create_conversation(agent_id=agent_id, config_id=config_id)
        except PersistenceError as exc:
            RELAY_ERRORS_TOTAL.labels(kind="persistence").inc()
            logger.error("Conversation record not created, relaying without persistence: %s", exc)

        try:
            upstream = await self._connect(signed_url)
        except UpstreamError as exc:
            RELAY_ERRORS_TOTAL.labels(kind="upstream").inc()
            logger.warning("Upstream connect failed for agent_id=%s: %s", agent_id, exc)
            self._state = RelayState.DEGRADED
            await self._send_error("Failed to connect to conversational AI agent")
            return

        self._upstream = upstream
        self._state = RelayState.ACTIVE
        self._upstream_task = asyncio.create_task(self._pump_upstream(upstream))
        logger.info(
            "Relay session active: conversation_id=%s agent_id=%s",
            self._conversation.id if self._conversation else None,
            agent_id,
        )

    async def _handle_outbound(self, payload: Dict[str, Any]) -> None:
        content = payload.get("content")
        if not isinstance(content, str):
            self._protocol_error("message requires string content")
            return

        if self._state is RelayState.DEGRADED:
            await self._send_error("Not connected to conversational AI agent")
            return
        if self._state is not RelayState.ACTIVE or self._upstream is None:
            self._protocol_error(f"message ignored in state {self._state.value}")
            return

        try:
            await self._upstream.send_text(json.dumps({"text": content}))
        except UpstreamError as exc:
            RELAY_ERRORS_TOTAL.labels(kind="upstream").inc()
            logger.warning("Upstream send failed: %s", exc)
            await self._send_error("Failed to deliver message to conversational AI agent")

        await self._record_turn(ROLE_USER, content)

    # Upstream leg ---------------------------------------------------------------
    async def _on_upstream_frame(self, raw: Optional[str]) -> None:
        if raw is None:
            return
        await self._send_client(raw)

        try:
            payload = parse_event(raw)
        except ProtocolError as exc:
            RELAY_EVENTS_TOTAL.labels(source="upstream", kind="opaque").inc()
            logger.debug("Upstream frame forwarded without inspection: %s", exc)
            return

        status = normalize_voice_status(payload)
        if status:
            RELAY_EVENTS_TOTAL.labels(source="upstream", kind="status").inc()
            await self._send_client(json.dumps({"type": "voice_status", "status": status}))

        content = extract_content(payload)
        if content:
            RELAY_EVENTS_TOTAL.labels(source="upstream", kind="content").inc()
            await self._record_turn(ROLE_ASSISTANT, content)

    # Helpers --------------------------------------------------------------------
    async def _record_turn(self, role: str, content: str) -> None:
        sentiment = self._analyzer(content)
        self._total_turns += 1
        if self._conversation is None:
            return
        try:
            await self._ledger.append_message(
                self._conversation,
                LedgerMessage(role=role, content=content, timestamp=utcnow(), sentiment=sentiment),
            )
        except PersistenceError as exc:
            RELAY_ERRORS_TOTAL.labels(kind="persistence").inc()
            logger.error("Ledger append failed for conversation %s: %s", self._conversation.id, exc)

    async def _finalize(self) -> None:
        if self._finalized or self._conversation is None:
            return
        self._finalized = True
        try:
            await self._ledger.finalize(self._conversation, total_turns=self._total_turns)
        except PersistenceError as exc:
            RELAY_ERRORS_TOTAL.labels(kind="persistence").inc()
            logger.error("Failed to finalize conversation %s: %s", self._conversation.id, exc)

    async def _send_client(self, data: str) -> None:
        try:
            await self._client.send_text(data)
        except Exception as exc:
            # The client pump reports the disconnect; nothing to do here.
            logger.debug("Client send failed: %s", exc)

    async def _send_error(self, message: str) -> None:
        await self._send_client(json.dumps({"type": "error", "message": message}))

    def _protocol_error(self, detail: str) -> None:
        RELAY_ERRORS_TOTAL.labels(kind="protocol").inc()
        logger.warning("Relay protocol error: %s", detail)

    async def _pump_client(self) -> None:
        try:
            while True:
                frame = await self._client.receive()
                if frame is None:
                    break
                self._events.put_nowait(RelayEvent(EventKind.CLIENT_FRAME, frame))
        except Exception as exc:
            logger.warning("Client transport error: %s", exc)
        finally:
            self._events.put_nowait(RelayEvent(EventKind.CLIENT_CLOSED))

    async def _pump_upstream(self, upstream: UpstreamConnection) -> None:
        try:
            while True:
                frame = await upstream.receive()
                if frame is None:
                    break
                self._events.put_nowait(RelayEvent(EventKind.UPSTREAM_FRAME, frame))
        except Exception as exc:
            logger.warning("Upstream transport error: %s", exc)
        finally:
            self._events.put_nowait(RelayEvent(EventKind.UPSTREAM_CLOSED))

    async def _stop_pumps(self) -> None:
        tasks = [task for task in (self._client_task, self._upstream_task) if task is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

"""Relay WebSocket endpoint"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketState

from convai_relay.config import get_settings
from convai_relay.services.ledger import ConversationLedger, get_ledger
from convai_relay.services.relay import SessionRelay
from convai_relay.services.upstream import UpstreamConnector, get_upstream_connector

logger = logging.getLogger(__name__)
router = APIRouter(tags=["chat"])


class WebSocketClientChannel:
    """Client leg of the relay on top of a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    async def receive(self) -> Optional[str]:
        message = await self._websocket.receive()
        if message["type"] == "websocket.disconnect":
            return None
        if message.get("text") is not None:
            return message["text"]
        if message.get("bytes") is not None:
            return message["bytes"].decode("utf-8", errors="replace")
        return ""

    async def send_text(self, data: str) -> None:
        await self._websocket.send_text(data)

    async def close(self) -> None:
        if (
            self._websocket.client_state == WebSocketState.CONNECTED
            and self._websocket.application_state == WebSocketState.CONNECTED
        ):
            await self._websocket.close()


@router.websocket("/chat")
async def chat_socket(
    websocket: WebSocket,
    ledger: ConversationLedger = Depends(get_ledger),
    connect: UpstreamConnector = Depends(get_upstream_connector),
):
    await websocket.accept()
    client = websocket.client
    logger.info("Relay client connected: %s", f"{client.host}:{client.port}" if client else "unknown")

    relay = SessionRelay(
        WebSocketClientChannel(websocket),
        ledger=ledger,
        connect=connect,
        default_config_id=get_settings().DEFAULT_WIDGET_CONFIG_ID,
    )
    await relay.run()

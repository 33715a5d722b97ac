"""Upstream conversation socket to the AI provider.

The relay only depends on the small :class:`UpstreamConnection` protocol so
tests can substitute an in-memory peer; :func:`connect_upstream` is the
production implementation on top of ``websockets``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from convai_relay.config import get_settings
from convai_relay.exceptions import UpstreamError

logger = logging.getLogger(__name__)


class UpstreamConnection(Protocol):
    async def receive(self) -> Optional[str]:
        """Next frame as text, or ``None`` once the peer has closed."""
        ...

    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


UpstreamConnector = Callable[[str], Awaitable[UpstreamConnection]]


class WebSocketUpstream:
    """:class:`UpstreamConnection` backed by a ``websockets`` client connection."""

    def __init__(self, connection) -> None:
        self._connection = connection

    async def receive(self) -> Optional[str]:
        try:
            frame = await self._connection.recv()
        except ConnectionClosed:
            return None
        if isinstance(frame, bytes):
            return frame.decode("utf-8", errors="replace")
        return frame

    async def send_text(self, data: str) -> None:
        try:
            await self._connection.send(data)
        except (WebSocketException, OSError) as exc:
            raise UpstreamError(f"Failed to send to provider: {exc}") from exc

    async def close(self) -> None:
        try:
            await self._connection.close()
        except (WebSocketException, OSError) as exc:
            logger.debug("Error while closing upstream socket: %s", exc)


async def connect_upstream(signed_url: str) -> UpstreamConnection:
    """Open the provider conversation socket.

    Raises:
        UpstreamError: invalid URL, handshake failure, network error or timeout
    """
    timeout = get_settings().UPSTREAM_CONNECT_TIMEOUT_SECONDS
    try:
        connection = await websockets.connect(signed_url, open_timeout=timeout)
    except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
        raise UpstreamError(f"Failed to connect to provider: {exc}") from exc
    logger.info("Upstream connection established")
    return WebSocketUpstream(connection)


def get_upstream_connector() -> UpstreamConnector:
    """Dependency hook so the chat route's connector can be overridden."""
    return connect_upstream

"""WebSocket implementation of the BrokerSocket port."""
from __future__ import annotations

import logging

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI
from websockets.typing import Subprotocol

from chat_sync.application.exceptions import CredentialRejected, TransportFailure
from chat_sync.application.ports.broker import SocketClosed

logger = logging.getLogger(__name__)

STOMP_SUBPROTOCOLS = [Subprotocol("v12.stomp"), Subprotocol("v11.stomp")]


class WebSocketBrokerSocket:
    """Implements application.ports.broker.BrokerSocket."""

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    async def send(self, data: str) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise SocketClosed(str(exc)) from exc

    async def recv(self) -> str:
        try:
            data = await self._ws.recv()
        except ConnectionClosed as exc:
            raise SocketClosed(str(exc)) from exc
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data

    async def close(self) -> None:
        await self._ws.close()


async def open_websocket(url: str) -> WebSocketBrokerSocket:
    """Default socket factory. STOMP heart-beats replace WebSocket pings."""
    try:
        ws = await connect(url, subprotocols=STOMP_SUBPROTOCOLS, ping_interval=None)
    except InvalidStatus as exc:
        status = exc.response.status_code
        if status in {401, 403}:
            raise CredentialRejected(f"broker_handshake_rejected_{status}") from exc
        raise TransportFailure(f"broker_handshake_failed_{status}") from exc
    except (InvalidURI, InvalidHandshake, OSError, TimeoutError) as exc:
        raise TransportFailure(f"broker_unreachable: {exc}") from exc
    logger.debug("WebSocket opened to %s (subprotocol=%s)", url, ws.subprotocol)
    return WebSocketBrokerSocket(ws)

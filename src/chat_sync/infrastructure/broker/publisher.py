from __future__ import annotations

import logging

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.application.exceptions import ChatConnectionError, NotConnected
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings
from chat_sync.infrastructure.broker.connection import TransportConnection
from chat_sync.infrastructure.broker.protocol import SendPayload
from chat_sync.infrastructure.broker.stomp import Frame

logger = logging.getLogger(__name__)


class OutboundPublisher:
    """Publishes chat messages to the shared application destination."""

    def __init__(
        self,
        connection: TransportConnection,
        settings: Settings = default_settings,
    ) -> None:
        self._connection = connection
        self._destination = settings.SEND_DESTINATION

    async def publish(self, message: OutgoingMessage) -> None:
        try:
            connected = await self._connection.ensure_connected()
        except ChatConnectionError as exc:
            raise NotConnected(f"Broker unavailable: {exc.detail}") from exc
        if not connected or not self._connection.is_connected:
            raise NotConnected("Broker not connected")

        body = SendPayload.from_dto(message).model_dump_json(by_alias=True, exclude_none=True)
        await self._connection.send_frame(
            Frame(
                "SEND",
                {"destination": self._destination, "content-type": "application/json"},
                body,
            )
        )
        logger.debug("Published message %s -> %s", message.sender_id, message.receiver_id)

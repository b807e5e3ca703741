"""UI-facing chat client: one broker session plus the REST collaborator."""
from __future__ import annotations

import logging
from typing import Any, Callable

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.application.exceptions import AppError, ChatConnectionError, FetchError
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.application.ports.broker import SocketFactory
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.status_changed import MessageStatusChanged
from chat_sync.domain.value_objects.enums import ChannelKind, ConnectionState
from chat_sync.infrastructure.broker.connection import TransportConnection
from chat_sync.infrastructure.broker.publisher import OutboundPublisher
from chat_sync.infrastructure.broker.subscriptions import SubscriptionRegistry
from chat_sync.infrastructure.broker.websocket import open_websocket
from chat_sync.infrastructure.http.chat_api import HttpChatApi
from chat_sync.services.background import BackgroundTasks

logger = logging.getLogger(__name__)


class ChatClient:
    """Explicit session object; build one per signed-in user.

    ``ChatConnectionError`` is absorbed here and only visible through
    ``connected`` / state listeners. ``AuthError`` always propagates.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        settings: Settings = default_settings,
        *,
        api: ChatApi | None = None,
        socket_factory: SocketFactory | None = None,
    ) -> None:
        self.settings = settings
        self.connection = TransportConnection(
            socket_factory or open_websocket, credentials, settings,
        )
        self.subscriptions = SubscriptionRegistry(self.connection, settings)
        self.publisher = OutboundPublisher(self.connection, settings)
        self.api: ChatApi = api or HttpChatApi(credentials, settings)
        self.background = BackgroundTasks()

    @property
    def connected(self) -> bool:
        return self.connection.is_connected

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    async def connect(self) -> bool:
        try:
            return await self.connection.connect()
        except ChatConnectionError as exc:
            logger.warning("Chat connection unavailable: %s", exc.detail)
            return False

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def subscribe_to_messages(
        self, user_id: str, on_message: Callable[[Message], Any],
    ) -> bool:
        return await self.subscriptions.subscribe(user_id, ChannelKind.MESSAGES, on_message)

    async def subscribe_to_status(
        self, user_id: str, on_status: Callable[[MessageStatusChanged], Any],
    ) -> bool:
        return await self.subscriptions.subscribe(user_id, ChannelKind.STATUS, on_status)

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        content: str,
        *,
        client_msg_id: str | None = None,
    ) -> None:
        """Raises SendError (or AuthError); the caller owns any rollback."""
        if not self.settings.RECONCILE_BY_CLIENT_MSG_ID:
            client_msg_id = None
        await self.publisher.publish(
            OutgoingMessage(
                sender_id=str(sender_id),
                receiver_id=str(receiver_id),
                content=content,
                client_msg_id=client_msg_id,
            )
        )

    async def load_history(self, user_a: str, user_b: str) -> list[Message]:
        return await self.api.fetch_history(str(user_a), str(user_b))

    async def mark_as_read(self, sender_id: str, receiver_id: str) -> None:
        """Best-effort; failures are logged only."""
        try:
            await self.api.mark_as_read(str(sender_id), str(receiver_id))
        except AppError:
            logger.warning("Mark as read failed for %s -> %s", sender_id, receiver_id, exc_info=True)

    def mark_as_read_later(self, sender_id: str, receiver_id: str) -> None:
        self.background.spawn(
            self.mark_as_read(sender_id, receiver_id),
            what=f"mark-read-{sender_id}-{receiver_id}",
        )

    async def mark_as_delivered(self, message_id: str, receiver_id: str) -> None:
        """Best-effort; failures are logged only."""
        try:
            await self.api.mark_as_delivered(str(message_id), str(receiver_id))
        except AppError:
            logger.warning("Mark as delivered failed for %s", message_id, exc_info=True)

    async def get_unread_count(self, user_id: str) -> int:
        try:
            return await self.api.fetch_unread_count(str(user_id))
        except FetchError as exc:
            logger.warning("Unread count unavailable: %s", exc.detail)
            return 0

    async def check_status(self) -> dict[str, Any]:
        return await self.api.debug_status()

    async def aclose(self) -> None:
        await self.disconnect()
        await self.background.aclose()
        close = getattr(self.api, "aclose", None)
        if close is not None:
            await close()

"""Conversation view controller for one signed-in user."""
from __future__ import annotations

import logging
from enum import StrEnum
from typing import Callable

from chat_sync.application.exceptions import AuthError, FetchError, SendError, ValidationError
from chat_sync.application.ports.clock import Clock
from chat_sync.config import Settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.status_changed import MessageStatusChanged
from chat_sync.domain.value_objects.enums import ChannelKind
from chat_sync.domain.value_objects.ids import ConversationKey
from chat_sync.services.chat_client import ChatClient
from chat_sync.services.conversation_store import ConversationStore
from chat_sync.services.notices import NoticeBoard
from chat_sync.services.status_tracker import StatusTracker
from chat_sync.services.unread_counter import UnreadCounter

logger = logging.getLogger(__name__)

SEND_FAILED_NOTICE = "Failed to send message. Please try again."


class LoadState(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


class ChatSession:
    """Routes the user's live channels into whichever conversation is open.

    Subscriptions belong to the session and survive switching conversations;
    a store and its status tracker live only while their view is open.
    """

    def __init__(
        self,
        client: ChatClient,
        user_id: str,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.client = client
        self.user_id = str(user_id)
        self.settings = settings or client.settings
        self.unread = UnreadCounter(client.api, self.settings)
        self.notices = NoticeBoard(self.settings.NOTICE_TTL_SECONDS)
        self.store: ConversationStore | None = None
        self.tracker: StatusTracker | None = None
        self.load_state = LoadState.IDLE
        self.load_error: str | None = None
        self.draft = ""
        self._clock = clock
        self._message_listeners: list[Callable[[Message], None]] = []

    @property
    def connected(self) -> bool:
        return self.client.connected

    def add_message_listener(self, listener: Callable[[Message], None]) -> None:
        """Called for every message ingested into the open conversation."""
        self._message_listeners.append(listener)

    @property
    def active_key(self) -> ConversationKey | None:
        return self.store.key if self.store is not None else None

    async def start(self) -> bool:
        """Subscribe to the user's message and status channels."""
        messages_ok = await self.client.subscribe_to_messages(self.user_id, self._on_message)
        status_ok = await self.client.subscribe_to_status(self.user_id, self._on_status)
        if self.store is None:
            self.unread.start_polling(self.user_id)
        return messages_ok and status_ok

    async def stop(self) -> None:
        self.close_conversation()
        await self.unread.aclose()
        self.notices.clear()
        await self.client.subscriptions.unsubscribe(self.user_id, ChannelKind.MESSAGES)
        await self.client.subscriptions.unsubscribe(self.user_id, ChannelKind.STATUS)

    async def open_conversation(self, counterpart_id: str) -> None:
        store = ConversationStore(
            self.user_id,
            counterpart_id,
            read_receipt=self.client.mark_as_read_later,
            clock=self._clock,
            match_client_msg_id=self.settings.RECONCILE_BY_CLIENT_MSG_ID,
        )
        self.store = store
        self.tracker = StatusTracker(store)
        self.draft = ""
        self.unread.mark_opened_optimistically(self.user_id)
        if await self._load(store.key):
            await self.client.mark_as_read(store.counterpart_id, self.user_id)

    async def retry_load(self) -> None:
        if self.store is not None:
            await self._load(self.store.key)

    def close_conversation(self) -> None:
        """Drop the view. In-flight sends and fetches are left to finish."""
        if self.store is None:
            return
        logger.debug("Closing conversation %s", self.store.key)
        self.store = None
        self.tracker = None
        self.load_state = LoadState.IDLE
        self.load_error = None
        self.unread.start_polling(self.user_id)

    async def send(self, content: str) -> Message | None:
        """Optimistically append ``content`` and publish it.

        On SendError the entry is rolled back, ``draft`` gets the text back
        and a transient notice is posted. AuthError rolls back the same way
        and propagates. Returns the optimistic entry or None.
        """
        store = self.store
        text = content.strip()
        if store is None or not text:
            return None
        if len(text) > self.settings.MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message exceeds {self.settings.MAX_MESSAGE_LENGTH} characters"
            )

        message = store.append_local_send(text)
        self.draft = ""
        try:
            await self.client.send_message(
                self.user_id, store.counterpart_id, text, client_msg_id=message.id,
            )
        except SendError as exc:
            logger.warning("Send failed, rolling back %s: %s", message.id, exc.detail)
            store.remove_optimistic(message.id)
            self.draft = text
            self.notices.post(SEND_FAILED_NOTICE)
            return None
        except AuthError:
            store.remove_optimistic(message.id)
            self.draft = text
            raise
        return message

    async def _load(self, key: ConversationKey) -> bool:
        self.load_state = LoadState.LOADING
        self.load_error = None
        user_a, user_b = self.user_id, key.counterpart_of(self.user_id)
        try:
            history = await self.client.load_history(user_a, user_b)
        except FetchError as exc:
            if self.active_key == key:
                logger.warning("History load failed for %s: %s", key, exc.detail)
                self.load_state = LoadState.ERROR
                self.load_error = exc.detail or "Failed to load conversation"
            return False

        store = self.store
        if store is None or store.key != key:
            logger.debug("Discarding stale history for %s", key)
            return False
        store.load_history(history)
        self.load_state = LoadState.READY
        return True

    def _on_message(self, message: Message) -> None:
        store = self.store
        if store is None:
            logger.debug("Message %s arrived with no open conversation", message.id)
            self.client.background.spawn(
                self.unread.refresh(self.user_id), what="unread-refresh",
            )
            return
        if store.ingest(message) and message.conversation_key == store.key:
            for listener in list(self._message_listeners):
                listener(message)

    def _on_status(self, event: MessageStatusChanged) -> None:
        if self.tracker is not None:
            self.tracker.apply(event)

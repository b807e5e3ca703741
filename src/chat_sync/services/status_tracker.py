from __future__ import annotations

import logging
from dataclasses import replace

from chat_sync.domain.events.status_changed import MessageStatusChanged
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.services.conversation_store import ConversationStore

logger = logging.getLogger(__name__)


class StatusTracker:
    """Applies monotonic status transitions to messages in a store."""

    def __init__(self, store: ConversationStore) -> None:
        self._store = store

    def apply(self, event: MessageStatusChanged) -> bool:
        return self.apply_status(event.message_id, event.status)

    def apply_status(self, message_id: str, status: MessageStatus) -> bool:
        message = self._store.find(message_id)
        if message is None:
            logger.debug("Status %s for unknown message %s dropped", status, message_id)
            return False
        if not status.advances(message.status):
            logger.debug(
                "Ignoring status %s for %s (already %s)", status, message_id, message.status,
            )
            return False
        self._store.replace(replace(message, status=status))
        return True

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import ConversationKey


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    status: MessageStatus
    optimistic: bool = False
    client_msg_id: str | None = None

    @property
    def conversation_key(self) -> ConversationKey:
        return ConversationKey.of(self.sender_id, self.receiver_id)

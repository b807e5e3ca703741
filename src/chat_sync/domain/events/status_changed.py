from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import MessageStatus


@dataclass(frozen=True, slots=True)
class MessageStatusChanged:
    message_id: str
    status: MessageStatus
    sender_id: str | None = None
    receiver_id: str | None = None

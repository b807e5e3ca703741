"""Broker payload models (camelCase on the wire)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel

from chat_sync.application.dto.message import OutgoingMessage
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.status_changed import MessageStatusChanged
from chat_sync.domain.value_objects.enums import MessageStatus

_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    coerce_numbers_to_str=True,
    extra="ignore",
)


def _coerce_status(value: object) -> object:
    if isinstance(value, str):
        return value.upper()
    return value


WireStatus = Annotated[MessageStatus, BeforeValidator(_coerce_status)]


class MessagePayload(BaseModel):
    """Server -> client chat message (history entries and live events)."""

    model_config = _WIRE_CONFIG

    id: str
    sender_id: str
    receiver_id: str
    content: str
    timestamp: datetime | None = None
    status: WireStatus = MessageStatus.SENT
    client_msg_id: str | None = None

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            sender_id=self.sender_id,
            receiver_id=self.receiver_id,
            content=self.content,
            created_at=self.timestamp or datetime.now(timezone.utc),
            status=self.status,
            optimistic=False,
            client_msg_id=self.client_msg_id,
        )


class StatusPayload(BaseModel):
    """Server -> client delivery/read status update."""

    model_config = _WIRE_CONFIG

    message_id: str
    status: WireStatus
    sender_id: str | None = None
    receiver_id: str | None = None

    def to_event(self) -> MessageStatusChanged:
        return MessageStatusChanged(
            message_id=self.message_id,
            status=self.status,
            sender_id=self.sender_id,
            receiver_id=self.receiver_id,
        )


class SendPayload(BaseModel):
    """Client -> server publish request."""

    model_config = _WIRE_CONFIG

    sender_id: str
    receiver_id: str
    content: str
    client_msg_id: str | None = None

    @classmethod
    def from_dto(cls, dto: OutgoingMessage) -> SendPayload:
        return cls(
            sender_id=dto.sender_id,
            receiver_id=dto.receiver_id,
            content=dto.content,
            client_msg_id=dto.client_msg_id,
        )


def parse_message(body: str) -> Message:
    return MessagePayload.model_validate_json(body).to_entity()


def parse_status(body: str) -> MessageStatusChanged:
    return StatusPayload.model_validate_json(body).to_event()

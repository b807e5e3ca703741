from __future__ import annotations

from enum import StrEnum


class MessageStatus(StrEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def advances(self, current: MessageStatus) -> bool:
        """True if moving from ``current`` to this status goes strictly forward."""
        return self.rank > current.rank


_STATUS_ORDER = (
    MessageStatus.PENDING,
    MessageStatus.SENT,
    MessageStatus.DELIVERED,
    MessageStatus.READ,
)


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERRORED = "errored"


class ChannelKind(StrEnum):
    MESSAGES = "messages"
    STATUS = "status"

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    sender_id: str
    receiver_id: str
    content: str
    client_msg_id: str | None = None

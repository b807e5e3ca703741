from __future__ import annotations

from typing import Any, Protocol

from chat_sync.domain.entities.message import Message


class ChatApi(Protocol):
    async def fetch_history(self, user_a: str, user_b: str) -> list[Message]: ...

    async def mark_as_read(self, sender_id: str, receiver_id: str) -> None: ...

    async def mark_as_delivered(self, message_id: str, receiver_id: str) -> None: ...

    async def fetch_unread_count(self, user_id: str) -> int: ...

    async def debug_status(self) -> dict[str, Any]: ...

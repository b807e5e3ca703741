"""Ordered, deduplicated message log with optimistic-send reconciliation."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Iterable

from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.domain.value_objects.ids import ConversationKey, new_temp_id

logger = logging.getLogger(__name__)

ReadReceipt = Callable[[str, str], None]


def _noop_receipt(sender_id: str, receiver_id: str) -> None:
    return None


class ConversationStore:
    """Message logs for the conversation between ``owner_id`` and ``counterpart_id``.

    Lives as long as one conversation view. Messages arriving for other
    conversations on the same channel are filed under their own key.

    Reconciliation: an authoritative message replaces the oldest optimistic
    entry with the same sender and content. With ``match_client_msg_id`` an
    echo that carries the temporary id back is matched exactly first.
    """

    def __init__(
        self,
        owner_id: str,
        counterpart_id: str,
        *,
        read_receipt: ReadReceipt = _noop_receipt,
        clock: Clock | None = None,
        match_client_msg_id: bool = False,
    ) -> None:
        self.owner_id = str(owner_id)
        self.counterpart_id = str(counterpart_id)
        self.key = ConversationKey.of(self.owner_id, self.counterpart_id)
        self._read_receipt = read_receipt
        self._clock = clock or SystemClock()
        self._match_client_msg_id = match_client_msg_id
        self._logs: dict[ConversationKey, list[Message]] = {}
        self._seen_ids: set[str] = set()

    def __len__(self) -> int:
        return len(self._logs.get(self.key, []))

    def messages(self, key: ConversationKey | None = None) -> list[Message]:
        return list(self._logs.get(key or self.key, []))

    def optimistic(self) -> list[Message]:
        return [m for m in self._logs.get(self.key, []) if m.optimistic]

    def find(self, message_id: str) -> Message | None:
        for log in self._logs.values():
            for message in log:
                if message.id == message_id:
                    return message
        return None

    def replace(self, message: Message) -> bool:
        """Swap the entry with the same id for ``message``, keeping its position."""
        log = self._logs.get(message.conversation_key, [])
        for index, existing in enumerate(log):
            if existing.id == message.id:
                log[index] = message
                return True
        return False

    def load_history(self, messages: Iterable[Message]) -> int:
        """Seed the active log with server history.

        Entries already present (live ingests, pending sends) stay after the
        loaded history; a pending send already contained in the history is
        reconciled away. Returns the number of entries loaded.
        """
        existing = self._logs.get(self.key, [])
        present = {m.id for m in existing}
        loaded: list[Message] = []
        for message in messages:
            if message.id in present:
                continue
            present.add(message.id)
            self._seen_ids.add(message.id)
            message = replace(message, optimistic=False)
            index = self._match_optimistic(existing, message)
            if index is not None:
                del existing[index]
            loaded.append(message)
        self._logs[self.key] = loaded + existing
        return len(loaded)

    def append_local_send(self, content: str) -> Message:
        message = Message(
            id=new_temp_id(),
            sender_id=self.owner_id,
            receiver_id=self.counterpart_id,
            content=content,
            created_at=self._clock.now(),
            status=MessageStatus.PENDING,
            optimistic=True,
        )
        self._logs.setdefault(self.key, []).append(message)
        return message

    def remove_optimistic(self, message_id: str) -> bool:
        log = self._logs.get(self.key, [])
        for index, message in enumerate(log):
            if message.id == message_id and message.optimistic:
                del log[index]
                return True
        return False

    def ingest(self, message: Message) -> bool:
        """Add an authoritative message. Returns False for duplicates."""
        if message.id in self._seen_ids:
            logger.debug("Duplicate message %s skipped", message.id)
            return False
        self._seen_ids.add(message.id)
        if message.optimistic:
            message = replace(message, optimistic=False)

        log = self._logs.setdefault(message.conversation_key, [])
        index = self._match_optimistic(log, message)
        if index is not None:
            logger.debug("Message %s reconciled with %s", message.id, log[index].id)
            del log[index]
        log.append(message)

        if message.sender_id == self.counterpart_id:
            self._read_receipt(self.counterpart_id, self.owner_id)
        return True

    def _match_optimistic(self, log: list[Message], message: Message) -> int | None:
        if self._match_client_msg_id and message.client_msg_id:
            for index, entry in enumerate(log):
                if entry.optimistic and entry.id == message.client_msg_id:
                    return index
        for index, entry in enumerate(log):
            if (
                entry.optimistic
                and entry.sender_id == message.sender_id
                and entry.content == message.content
            ):
                return index
        return None

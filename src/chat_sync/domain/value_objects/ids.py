from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import NewType

MessageId = NewType("MessageId", str)

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> MessageId:
    return MessageId(f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}")


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)


@dataclass(frozen=True, slots=True)
class ConversationKey:
    """Unordered pair of the two participants of a conversation."""

    participants: frozenset[str]

    @classmethod
    def of(cls, a: str, b: str) -> ConversationKey:
        return cls(frozenset((str(a), str(b))))

    def counterpart_of(self, user_id: str) -> str:
        others = self.participants - {str(user_id)}
        # Self-conversation collapses to a single participant.
        return next(iter(others), str(user_id))

    def __str__(self) -> str:
        return ":".join(sorted(self.participants))

from __future__ import annotations

from typing import Protocol


class CredentialProvider(Protocol):
    def get_token(self) -> str | None: ...

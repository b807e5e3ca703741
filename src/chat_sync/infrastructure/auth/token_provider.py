from __future__ import annotations

from typing import Any

import jwt

from chat_sync.application.exceptions import CredentialRejected
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings


def _claims(token: str) -> dict[str, Any] | None:
    """Decode JWT claims without verifying the signature.

    The broker and the REST API verify the signature; locally we only look at
    ``exp`` and ``sub``. Opaque (non-JWT) tokens yield None.
    """
    try:
        return jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError as exc:
        raise CredentialRejected("Authentication token has expired") from exc
    except jwt.InvalidTokenError:
        return None


def token_subject(token: str) -> str | None:
    claims = _claims(token)
    if not claims or claims.get("sub") is None:
        return None
    return str(claims["sub"])


class StaticCredentialProvider:
    """Implements application.ports.auth.CredentialProvider for a fixed token."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    def get_token(self) -> str | None:
        if not self._token:
            return None
        _claims(self._token)
        return self._token


class SettingsCredentialProvider(StaticCredentialProvider):
    """Reads the bearer token from ``CHAT_TOKEN``."""

    def __init__(self, settings: Settings = default_settings) -> None:
        super().__init__(settings.CHAT_TOKEN)

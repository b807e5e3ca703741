"""REST collaborator for history, receipts and unread counts."""
from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError as PayloadError

from chat_sync.application.exceptions import (
    AppError,
    CountUnavailable,
    CredentialRejected,
    FetchError,
    HistoryUnavailable,
    MissingCredential,
    ReadReceiptError,
)
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.broker.protocol import MessagePayload

logger = logging.getLogger(__name__)


class HttpChatApi:
    """Implements application.ports.chat_api.ChatApi over httpx."""

    def __init__(
        self,
        credentials: CredentialProvider,
        settings: Settings = default_settings,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._credentials = credentials
        self.http = http or httpx.AsyncClient(
            base_url=settings.API_BASE_URL,
            timeout=httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS),
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    def _auth_headers(self) -> dict[str, str]:
        token = self._credentials.get_token()
        if not token:
            raise MissingCredential("No authentication token found")
        return {"Authorization": f"Bearer {token}"}

    async def _call(
        self,
        method: str,
        path: str,
        *,
        error: type[AppError],
    ) -> Any:
        # Missing credentials fail here, before any network traffic.
        headers = self._auth_headers()
        try:
            response = await self.http.request(method, path, headers=headers)
        except httpx.TimeoutException as exc:
            raise error(f"chat_api_timeout: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise error(f"chat_api_connection_failed: {exc}") from exc

        if response.status_code in {401, 403}:
            raise CredentialRejected(f"chat_api_auth_failed_{response.status_code}")
        if response.status_code >= 400:
            raise error(f"chat_api_error_{response.status_code}")
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise error(f"chat_api_invalid_json: {path}") from exc

    async def fetch_history(self, user_a: str, user_b: str) -> list[Message]:
        data = await self._call("GET", f"/chat/conversation/{user_a}/{user_b}", error=HistoryUnavailable)
        if not isinstance(data, list):
            raise HistoryUnavailable("chat_api_unexpected_history_payload")
        try:
            messages = [MessagePayload.model_validate(item).to_entity() for item in data]
        except PayloadError as exc:
            raise HistoryUnavailable(f"chat_api_invalid_message: {exc.error_count()} errors") from exc
        logger.info("Loaded %d messages for %s <-> %s", len(messages), user_a, user_b)
        return messages

    async def mark_as_read(self, sender_id: str, receiver_id: str) -> None:
        await self._call("POST", f"/chat/markAsRead/{sender_id}/{receiver_id}", error=ReadReceiptError)
        logger.debug("Messages marked as read: %s -> %s", sender_id, receiver_id)

    async def mark_as_delivered(self, message_id: str, receiver_id: str) -> None:
        await self._call("POST", f"/chat/markDelivered/{message_id}/{receiver_id}", error=ReadReceiptError)
        logger.debug("Message %s marked as delivered to %s", message_id, receiver_id)

    async def fetch_unread_count(self, user_id: str) -> int:
        data = await self._call("GET", f"/chat/unreadCount/{user_id}", error=CountUnavailable)
        if not isinstance(data, dict):
            return 0
        try:
            return int(data.get("count") or 0)
        except (TypeError, ValueError) as exc:
            raise CountUnavailable("chat_api_invalid_count") from exc

    async def debug_status(self) -> dict[str, Any]:
        data = await self._call("GET", "/chat/debug/status", error=FetchError)
        return data if isinstance(data, dict) else {"status": data}

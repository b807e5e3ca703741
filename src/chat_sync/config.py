from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    BROKER_URL: str = "ws://localhost:8080/ws/websocket"
    API_BASE_URL: str = "http://localhost:8080/api"

    CHAT_TOKEN: str | None = None

    CONNECT_TIMEOUT_SECONDS: float = 10.0
    HEARTBEAT_OUTGOING_MS: int = 10000
    HEARTBEAT_INCOMING_MS: int = 10000
    HEARTBEAT_TOLERANCE: float = 2.0

    RECONNECT_BASE_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0
    RECONNECT_MAX_ATTEMPTS: int = 5

    HTTP_TIMEOUT_SECONDS: float = 10.0

    MESSAGES_DESTINATION: str = "/user/{participant_id}/queue/messages"
    STATUS_DESTINATION: str = "/user/{participant_id}/queue/message-status"
    SEND_DESTINATION: str = "/app/sendMessage"

    UNREAD_POLL_INTERVAL_SECONDS: float = 10.0
    UNREAD_GRACE_DELAY_SECONDS: float = 1.5

    NOTICE_TTL_SECONDS: float = 5.0
    MAX_MESSAGE_LENGTH: int = 500

    RECONCILE_BY_CLIENT_MSG_ID: bool = False

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()

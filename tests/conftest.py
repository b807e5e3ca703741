"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import pytest
import pytest_asyncio

from chat_sync.application.exceptions import (
    CountUnavailable,
    CredentialRejected,
    HistoryUnavailable,
    ReadReceiptError,
    TransportFailure,
)
from chat_sync.application.ports.broker import SocketClosed
from chat_sync.config import Settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.infrastructure.auth.token_provider import StaticCredentialProvider
from chat_sync.infrastructure.broker.stomp import Frame, decode_frames, encode_frame
from chat_sync.services.chat_client import ChatClient

_ids = itertools.count(1000)


def make_message(
    *,
    message_id: str | None = None,
    sender_id: str = "2",
    receiver_id: str = "1",
    content: str = "hello",
    status: MessageStatus = MessageStatus.SENT,
) -> Message:
    return Message(
        id=message_id or str(next(_ids)),
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=datetime.now(timezone.utc),
        status=status,
    )


def message_body(
    message_id: int | str,
    sender_id: int | str,
    receiver_id: int | str,
    content: str,
    status: str = "SENT",
    **extra: Any,
) -> str:
    return json.dumps({
        "id": message_id,
        "senderId": sender_id,
        "receiverId": receiver_id,
        "content": content,
        "timestamp": "2024-05-01T10:00:00",
        "status": status,
        **extra,
    })


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeBrokerSocket:
    """In-memory STOMP peer.

    mode: "ok" acknowledges CONNECT, "reject" answers with ERROR,
    "hang" never answers.
    """

    def __init__(self, mode: str = "ok", server_heartbeat: str = "0,0") -> None:
        self.mode = mode
        self.server_heartbeat = server_heartbeat
        self.sent: list[str] = []
        self.closed = False
        self.fail_sends = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed or self.fail_sends:
            raise SocketClosed("fake socket closed")
        self.sent.append(data)
        if data.startswith("CONNECT\n"):
            if self.mode == "ok":
                self.push(Frame("CONNECTED", {"version": "1.2", "heart-beat": self.server_heartbeat}))
            elif self.mode == "reject":
                self.push(Frame("ERROR", {"message": "Invalid token"}))

    async def recv(self) -> str:
        data = await self._inbox.get()
        if data is None:
            raise SocketClosed("fake socket dropped")
        return data

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def push(self, frame: Frame) -> None:
        self._inbox.put_nowait(encode_frame(frame))

    def drop(self) -> None:
        """Simulate the server going away."""
        self.closed = True
        self._inbox.put_nowait(None)

    def frames(self, command: str | None = None) -> list[Frame]:
        out: list[Frame] = []
        for raw in self.sent:
            out.extend(decode_frames(raw))
        if command is not None:
            out = [f for f in out if f.command == command]
        return out

    def subscription_id(self, destination: str) -> str:
        for frame in reversed(self.frames("SUBSCRIBE")):
            if frame.headers["destination"] == destination:
                return frame.headers["id"]
        raise AssertionError(f"no SUBSCRIBE for {destination}")

    def deliver(self, destination: str, body: str) -> None:
        self.push(Frame(
            "MESSAGE",
            {
                "destination": destination,
                "subscription": self.subscription_id(destination),
                "message-id": str(next(_ids)),
            },
            body,
        ))


@dataclass
class FakeSocketFactory:
    script: list[str] = field(default_factory=list)
    default: str = "ok"
    server_heartbeat: str = "0,0"
    sockets: list[FakeBrokerSocket] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)

    async def __call__(self, url: str) -> FakeBrokerSocket:
        self.urls.append(url)
        mode = self.script.pop(0) if self.script else self.default
        if mode == "fail":
            raise TransportFailure("connection refused")
        socket = FakeBrokerSocket(mode, self.server_heartbeat)
        self.sockets.append(socket)
        return socket

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def last(self) -> FakeBrokerSocket:
        return self.sockets[-1]


@dataclass
class FakeChatApi:
    history: dict[frozenset[str], list[Message]] = field(default_factory=dict)
    unread: int = 0
    fail_history: bool = False
    fail_count: bool = False
    reject_count: bool = False
    fail_read: bool = False
    history_gates: dict[str, asyncio.Event] = field(default_factory=dict)
    history_calls: list[tuple[str, str]] = field(default_factory=list)
    read_calls: list[tuple[str, str]] = field(default_factory=list)
    delivered_calls: list[tuple[str, str]] = field(default_factory=list)
    count_calls: int = 0

    async def fetch_history(self, user_a: str, user_b: str) -> list[Message]:
        self.history_calls.append((user_a, user_b))
        gate = self.history_gates.get(user_b)
        if gate is not None:
            await gate.wait()
        if self.fail_history:
            raise HistoryUnavailable("chat_api_error_503")
        return list(self.history.get(frozenset((user_a, user_b)), []))

    async def mark_as_read(self, sender_id: str, receiver_id: str) -> None:
        self.read_calls.append((sender_id, receiver_id))
        if self.fail_read:
            raise ReadReceiptError("chat_api_error_500")

    async def mark_as_delivered(self, message_id: str, receiver_id: str) -> None:
        self.delivered_calls.append((message_id, receiver_id))
        if self.fail_read:
            raise ReadReceiptError("chat_api_error_500")

    async def fetch_unread_count(self, user_id: str) -> int:
        self.count_calls += 1
        if self.reject_count:
            raise CredentialRejected("chat_api_auth_failed_401")
        if self.fail_count:
            raise CountUnavailable("chat_api_error_503")
        return self.unread

    async def debug_status(self) -> dict[str, Any]:
        return {"status": "ok"}


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        BROKER_URL="ws://broker.test/ws/websocket",
        CONNECT_TIMEOUT_SECONDS=0.2,
        HEARTBEAT_OUTGOING_MS=0,
        HEARTBEAT_INCOMING_MS=0,
        RECONNECT_BASE_DELAY_SECONDS=0.01,
        RECONNECT_MAX_DELAY_SECONDS=0.04,
        RECONNECT_MAX_ATTEMPTS=3,
        UNREAD_POLL_INTERVAL_SECONDS=0.05,
        UNREAD_GRACE_DELAY_SECONDS=0.02,
        NOTICE_TTL_SECONDS=0.05,
    )


@pytest.fixture
def credentials() -> StaticCredentialProvider:
    return StaticCredentialProvider("test-token")


@pytest.fixture
def socket_factory() -> FakeSocketFactory:
    return FakeSocketFactory()


@pytest.fixture
def chat_api() -> FakeChatApi:
    return FakeChatApi()


@pytest_asyncio.fixture
async def client(fast_settings, credentials, socket_factory, chat_api):
    chat_client = ChatClient(
        credentials, fast_settings, api=chat_api, socket_factory=socket_factory,
    )
    yield chat_client
    await chat_client.aclose()

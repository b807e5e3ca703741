"""HttpChatApi against an in-process httpx transport."""
from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from chat_sync.application.exceptions import (
    CountUnavailable,
    CredentialRejected,
    HistoryUnavailable,
    MissingCredential,
    ReadReceiptError,
)
from chat_sync.domain.value_objects.enums import MessageStatus
from chat_sync.infrastructure.auth.token_provider import StaticCredentialProvider
from chat_sync.infrastructure.http.chat_api import HttpChatApi
from chat_sync.services.chat_client import ChatClient


class FakeChatServer:
    """Minimal stand-in for the chat REST endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: dict[tuple[str, str], httpx.Response] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"detail": "not found"})
        return response

    def on(self, method: str, path: str, response: httpx.Response) -> None:
        self.responses[(method, path)] = response


@pytest.fixture
def server():
    return FakeChatServer()


def _api(server, token="test-token"):
    http = httpx.AsyncClient(base_url="http://test/api", transport=httpx.MockTransport(server))
    return HttpChatApi(StaticCredentialProvider(token), http=http)


@pytest_asyncio.fixture
async def api(server):
    chat_api = _api(server)
    yield chat_api
    await chat_api.aclose()


@pytest.mark.asyncio
async def test_fetch_history_parses_camel_case(api, server):
    server.on("GET", "/api/chat/conversation/1/2", httpx.Response(200, json=[
        {"id": 1, "senderId": 2, "receiverId": 1, "content": "hi",
         "timestamp": "2024-05-01T10:00:00", "status": "delivered"},
        {"id": 2, "senderId": 1, "receiverId": 2, "content": "yo"},
    ]))

    messages = await api.fetch_history("1", "2")

    assert [m.id for m in messages] == ["1", "2"]
    assert messages[0].sender_id == "2"
    assert messages[0].status is MessageStatus.DELIVERED
    assert messages[1].status is MessageStatus.SENT
    assert not any(m.optimistic for m in messages)
    assert server.requests[0].headers["Authorization"] == "Bearer test-token"


@pytest.mark.asyncio
async def test_fetch_history_server_error(api, server):
    server.on("GET", "/api/chat/conversation/1/2", httpx.Response(500))
    with pytest.raises(HistoryUnavailable, match="chat_api_error_500"):
        await api.fetch_history("1", "2")


@pytest.mark.asyncio
async def test_fetch_history_rejects_unexpected_payload(api, server):
    server.on("GET", "/api/chat/conversation/1/2", httpx.Response(200, json={"items": []}))
    with pytest.raises(HistoryUnavailable):
        await api.fetch_history("1", "2")


@pytest.mark.asyncio
async def test_fetch_history_rejects_invalid_entries(api, server):
    server.on("GET", "/api/chat/conversation/1/2", httpx.Response(200, json=[{"id": 1}]))
    with pytest.raises(HistoryUnavailable, match="chat_api_invalid_message"):
        await api.fetch_history("1", "2")


@pytest.mark.asyncio
async def test_rejected_credential(api, server):
    server.on("GET", "/api/chat/conversation/1/2", httpx.Response(401))
    with pytest.raises(CredentialRejected):
        await api.fetch_history("1", "2")


@pytest.mark.asyncio
async def test_missing_credential_makes_no_request(server):
    api = _api(server, token=None)
    with pytest.raises(MissingCredential):
        await api.fetch_unread_count("1")
    assert server.requests == []
    await api.aclose()


@pytest.mark.asyncio
async def test_mark_as_read_posts(api, server):
    server.on("POST", "/api/chat/markAsRead/2/1", httpx.Response(200))
    await api.mark_as_read("2", "1")
    assert server.requests[0].method == "POST"


@pytest.mark.asyncio
async def test_mark_as_delivered_failure(api, server):
    server.on("POST", "/api/chat/markDelivered/9/1", httpx.Response(503))
    with pytest.raises(ReadReceiptError):
        await api.mark_as_delivered("9", "1")


@pytest.mark.parametrize(
    ("payload", "expected"),
    [({"count": 5}, 5), ({"count": None}, 0), ({}, 0), ([], 0)],
)
@pytest.mark.asyncio
async def test_unread_count(api, server, payload, expected):
    server.on("GET", "/api/chat/unreadCount/1", httpx.Response(200, json=payload))
    assert await api.fetch_unread_count("1") == expected


@pytest.mark.asyncio
async def test_unread_count_invalid_value(api, server):
    server.on("GET", "/api/chat/unreadCount/1", httpx.Response(200, json={"count": "many"}))
    with pytest.raises(CountUnavailable):
        await api.fetch_unread_count("1")


@pytest.mark.asyncio
async def test_transport_error_maps_to_fetch_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(base_url="http://test/api", transport=httpx.MockTransport(refuse))
    api = HttpChatApi(StaticCredentialProvider("test-token"), http=http)
    with pytest.raises(CountUnavailable, match="chat_api_connection_failed"):
        await api.fetch_unread_count("1")
    await api.aclose()


@pytest.mark.asyncio
async def test_debug_status(api, server):
    server.on("GET", "/api/chat/debug/status", httpx.Response(200, json={"connections": 3}))
    assert await api.debug_status() == {"connections": 3}


@pytest.mark.asyncio
async def test_client_swallows_receipt_and_count_failures(api, server, fast_settings, socket_factory):
    server.on("POST", "/api/chat/markAsRead/2/1", httpx.Response(500))
    server.on("GET", "/api/chat/unreadCount/1", httpx.Response(502))
    server.on("GET", "/api/chat/debug/status", httpx.Response(200, json={"connections": 3}))
    client = ChatClient(
        StaticCredentialProvider("test-token"), fast_settings,
        api=api, socket_factory=socket_factory,
    )

    await client.mark_as_read("2", "1")
    assert await client.get_unread_count("1") == 0
    await client.mark_as_delivered("9", "1")
    assert await client.check_status() == {"connections": 3}
    await client.aclose()

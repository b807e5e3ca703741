from __future__ import annotations

from typing import Awaitable, Callable, Protocol


class SocketClosed(Exception):
    """The underlying socket is gone; raised by ``send``/``recv``."""


class BrokerSocket(Protocol):
    async def send(self, data: str) -> None: ...

    async def recv(self) -> str: ...

    async def close(self) -> None: ...


SocketFactory = Callable[[str], Awaitable[BrokerSocket]]

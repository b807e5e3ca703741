"""Keyed subscription bookkeeping on top of a TransportConnection."""
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, TypeVar

from pydantic import ValidationError as PayloadError

from chat_sync.application.exceptions import ChatConnectionError, SendError
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings
from chat_sync.domain.value_objects.enums import ChannelKind
from chat_sync.infrastructure.broker.connection import TransportConnection
from chat_sync.infrastructure.broker.protocol import parse_message, parse_status
from chat_sync.infrastructure.broker.stomp import Frame

logger = logging.getLogger(__name__)

T = TypeVar("T")

SubscriptionKey = tuple[str, ChannelKind]
EventHandler = Callable[[Any], Any]

_PARSERS: dict[ChannelKind, Callable[[str], Any]] = {
    ChannelKind.MESSAGES: parse_message,
    ChannelKind.STATUS: parse_status,
}

_END = object()


class Subscription(Generic[T]):
    """Cancellable, lazily consumed stream of events from one destination.

    Iterate with ``async for``; iteration ends after ``close()``.
    """

    def __init__(self, key: SubscriptionKey, destination: str, parse: Callable[[str], T]) -> None:
        self.key = key
        self.destination = destination
        self.subscription_id: str | None = None
        self._parse = parse
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._pump: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, frame: Frame) -> None:
        if self._closed:
            return
        try:
            event = self._parse(frame.body)
        except (PayloadError, ValueError):
            logger.warning("Dropping unparseable event on %s: %r", self.destination, frame.body[:200])
            return
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_END)

    def attach(self, handler: EventHandler) -> None:
        self._pump = asyncio.create_task(
            self._run_handler(handler), name=f"subscription-{self.destination}",
        )

    def __aiter__(self) -> Subscription[T]:
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        return item

    async def _run_handler(self, handler: EventHandler) -> None:
        async for event in self:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Handler failed for event on %s", self.destination)


class SubscriptionRegistry:
    """At most one live subscription per (participant, channel kind)."""

    def __init__(
        self,
        connection: TransportConnection,
        settings: Settings = default_settings,
    ) -> None:
        self._connection = connection
        self._settings = settings
        self._subscriptions: dict[SubscriptionKey, Subscription[Any]] = {}
        connection.add_teardown_hook(self.unsubscribe_all)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __contains__(self, key: object) -> bool:
        return key in self._subscriptions

    def destination_for(self, participant_id: str, kind: ChannelKind) -> str:
        template = (
            self._settings.MESSAGES_DESTINATION
            if kind is ChannelKind.MESSAGES
            else self._settings.STATUS_DESTINATION
        )
        return template.format(participant_id=participant_id)

    def stream(self, participant_id: str, kind: ChannelKind) -> Subscription[Any] | None:
        return self._subscriptions.get((str(participant_id), kind))

    async def subscribe(
        self,
        participant_id: str,
        kind: ChannelKind,
        handler: EventHandler | None = None,
    ) -> bool:
        """Ensure a subscription exists for the key. AuthError propagates."""
        participant_id = str(participant_id)
        try:
            connected = await self._connection.ensure_connected()
        except ChatConnectionError as exc:
            logger.warning("Cannot subscribe %s/%s: %s", participant_id, kind, exc.detail)
            return False
        if not connected:
            return False

        key = (participant_id, kind)
        if key in self._subscriptions:
            logger.debug("Already subscribed to %s for %s", kind, participant_id)
            return True

        destination = self.destination_for(participant_id, kind)
        subscription: Subscription[Any] = Subscription(key, destination, _PARSERS[kind])
        self._subscriptions[key] = subscription
        try:
            subscription.subscription_id = await self._connection.open_subscription(
                destination, subscription.feed,
            )
        except SendError as exc:
            logger.warning("SUBSCRIBE to %s failed: %s", destination, exc.detail)
            self._subscriptions.pop(key, None)
            subscription.close()
            return False

        if handler is not None:
            subscription.attach(handler)
        logger.info("Subscribed to %s", destination)
        return True

    async def unsubscribe(self, participant_id: str, kind: ChannelKind) -> bool:
        subscription = self._subscriptions.pop((str(participant_id), kind), None)
        if subscription is None:
            return False
        await self._release(subscription)
        return True

    async def unsubscribe_all(self) -> None:
        """Best-effort release of every handle; never raises."""
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            await self._release(subscription)

    async def _release(self, subscription: Subscription[Any]) -> None:
        try:
            if subscription.subscription_id is not None:
                await self._connection.close_subscription(subscription.subscription_id)
        except Exception:
            logger.warning("Error unsubscribing from %s", subscription.destination, exc_info=True)
        finally:
            subscription.close()

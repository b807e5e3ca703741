"""Broker session: STOMP handshake, heart-beats and reconnection."""
from __future__ import annotations

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from chat_sync.application.exceptions import (
    AppError,
    AuthError,
    ChatConnectionError,
    ConnectTimeout,
    CredentialRejected,
    MissingCredential,
    NotConnected,
    PublishFailed,
    SendError,
    TransportFailure,
)
from chat_sync.application.ports.auth import CredentialProvider
from chat_sync.application.ports.broker import BrokerSocket, SocketClosed, SocketFactory
from chat_sync.config import Settings
from chat_sync.config import settings as default_settings
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.broker.stomp import (
    HEARTBEAT,
    Frame,
    FrameError,
    decode_frames,
    encode_frame,
    negotiate_heartbeat,
)

logger = logging.getLogger(__name__)

FrameSink = Callable[[Frame], None]
StateListener = Callable[[ConnectionState], None]
TeardownHook = Callable[[], Awaitable[None]]


def _calc_backoff(attempts: int, base: float, maximum: float) -> float:
    return min(base * (2 ** attempts), maximum)


def _consume_result(future: asyncio.Future[bool]) -> None:
    # A failed attempt nobody awaited must not be reported as unretrieved.
    if not future.cancelled():
        future.exception()


async def _cancel(task: asyncio.Task[None] | None) -> None:
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@dataclass(slots=True)
class _Route:
    destination: str
    sink: FrameSink


class TransportConnection:
    """A STOMP session over one persistent socket, owned by its caller.

    ``connect()`` is idempotent while connected and coalesces concurrent
    callers onto a single in-flight attempt. Once connected, heart-beats run
    in both directions; losing the link starts a background reconnect with
    bounded exponential backoff that restores every open route.
    """

    def __init__(
        self,
        socket_factory: SocketFactory,
        credentials: CredentialProvider,
        settings: Settings = default_settings,
        *,
        url: str | None = None,
    ) -> None:
        self._factory = socket_factory
        self._credentials = credentials
        self._settings = settings
        self._url = url or settings.BROKER_URL
        self._host = urlsplit(self._url).hostname or "localhost"

        self._state = ConnectionState.DISCONNECTED
        self._socket: BrokerSocket | None = None
        self._credential: str | None = None
        self._pending: asyncio.Future[bool] | None = None

        self._attempt_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None

        self._send_every_ms = 0
        self._expect_every_ms = 0
        self._last_sent = 0.0
        self._last_received = 0.0
        self._reconnect_attempts = 0

        self._routes: dict[str, _Route] = {}
        self._sub_ids = itertools.count(1)
        self._listeners: list[StateListener] = []
        self._teardown_hooks: list[TeardownHook] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._socket is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def add_teardown_hook(self, hook: TeardownHook) -> None:
        self._teardown_hooks.append(hook)

    # -- lifecycle ---------------------------------------------------------

    async def connect(self, credential: str | None = None) -> bool:
        """Resolve to True once the broker acknowledged the session.

        Raises ConnectTimeout / TransportFailure / AuthError on failure and
        resolves to False if ``disconnect()`` aborts the attempt.
        """
        if self._state is ConnectionState.CONNECTED:
            return True

        if self._pending is None:
            token = credential or self._credentials.get_token()
            if not token:
                raise MissingCredential("No authentication token available")
            if self._state is ConnectionState.ERRORED:
                self._set_state(ConnectionState.DISCONNECTED)
            self._credential = token
            self._pending = self._new_pending()
            self._set_state(ConnectionState.CONNECTING)
            self._attempt_task = asyncio.create_task(
                self._run_attempt(self._pending), name="broker-connect",
            )
        else:
            logger.debug("Connection already in progress, joining it")

        return await asyncio.shield(self._pending)

    async def ensure_connected(self, credential: str | None = None) -> bool:
        if self.is_connected:
            return True
        return await self.connect(credential)

    async def disconnect(self) -> None:
        """Tear everything down. Safe to call in any state, any number of times."""
        logger.info("Disconnecting from broker (state=%s)", self._state)

        for hook in list(self._teardown_hooks):
            try:
                await hook()
            except Exception:
                logger.exception("Teardown hook failed")

        pending, self._pending = self._pending, None
        await _cancel(self._attempt_task)
        await _cancel(self._reconnect_task)
        self._attempt_task = self._reconnect_task = None

        if self.is_connected and self._socket is not None:
            try:
                await self._socket.send(encode_frame(Frame("DISCONNECT")))
            except SocketClosed:
                logger.debug("Socket already closed before DISCONNECT")

        await self._stop_session()
        self._routes.clear()
        self._credential = None
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.DISCONNECTED)

        if pending is not None and not pending.done():
            pending.set_result(False)

    # -- routing -----------------------------------------------------------

    async def send_frame(self, frame: Frame) -> None:
        socket = self._socket
        if self._state is not ConnectionState.CONNECTED or socket is None:
            raise NotConnected(f"Cannot send {frame.command}: broker is {self._state}")
        try:
            await socket.send(encode_frame(frame))
        except (SocketClosed, OSError) as exc:
            raise PublishFailed(f"{frame.command} failed: {exc}") from exc
        self._last_sent = time.monotonic()

    async def open_subscription(self, destination: str, sink: FrameSink) -> str:
        sub_id = f"sub-{next(self._sub_ids)}"
        self._routes[sub_id] = _Route(destination, sink)
        try:
            await self.send_frame(
                Frame("SUBSCRIBE", {"id": sub_id, "destination": destination, "ack": "auto"})
            )
        except SendError:
            self._routes.pop(sub_id, None)
            raise
        logger.debug("Subscribed %s to %s", sub_id, destination)
        return sub_id

    async def close_subscription(self, sub_id: str) -> None:
        if self._routes.pop(sub_id, None) is None:
            return
        if self.is_connected:
            await self.send_frame(Frame("UNSUBSCRIBE", {"id": sub_id}))
        logger.debug("Unsubscribed %s", sub_id)

    # -- internals ---------------------------------------------------------

    def _new_pending(self) -> asyncio.Future[bool]:
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_result)
        return future

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        logger.debug("Connection state %s -> %s", self._state, state)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    async def _run_attempt(self, pending: asyncio.Future[bool]) -> None:
        try:
            await self._open_session()
            # Routes survive an ERRORED session; restore them on the fresh socket.
            if self._routes:
                await self._resubscribe()
        except AppError as exc:
            await self._fail(pending, exc)
            return
        except Exception as exc:
            logger.exception("Unexpected error while connecting")
            await self._fail(pending, TransportFailure(str(exc)))
            return
        self._on_connected(pending)

    async def _open_session(self) -> None:
        send_ms = self._settings.HEARTBEAT_OUTGOING_MS
        recv_ms = self._settings.HEARTBEAT_INCOMING_MS
        timeout = self._settings.CONNECT_TIMEOUT_SECONDS
        try:
            async with asyncio.timeout(timeout):
                socket = await self._factory(self._url)
                self._socket = socket
                await socket.send(encode_frame(Frame("CONNECT", {
                    "accept-version": "1.2,1.1",
                    "host": self._host,
                    "heart-beat": f"{send_ms},{recv_ms}",
                    "Authorization": f"Bearer {self._credential}",
                })))
                connected = await self._await_connected(socket)
        except BaseException as exc:
            await self._close_socket()
            if isinstance(exc, TimeoutError):
                raise ConnectTimeout(f"No broker acknowledgment after {timeout}s") from exc
            if isinstance(exc, (SocketClosed, FrameError)):
                raise TransportFailure(f"Handshake failed: {exc}") from exc
            raise

        self._send_every_ms, self._expect_every_ms = negotiate_heartbeat(
            (send_ms, recv_ms), connected.headers.get("heart-beat"),
        )
        self._last_sent = self._last_received = time.monotonic()
        self._reader_task = asyncio.create_task(self._read_loop(socket), name="broker-reader")
        if self._send_every_ms or self._expect_every_ms:
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(socket), name="broker-heartbeat",
            )
        logger.info(
            "Broker session established (version=%s, heart-beat=%d/%d ms)",
            connected.headers.get("version", "?"),
            self._send_every_ms,
            self._expect_every_ms,
        )

    async def _await_connected(self, socket: BrokerSocket) -> Frame:
        while True:
            for frame in decode_frames(await socket.recv()):
                if frame.command == "CONNECTED":
                    return frame
                if frame.command == "ERROR":
                    raise CredentialRejected(
                        frame.headers.get("message") or frame.body or "Broker rejected CONNECT"
                    )
                logger.debug("Ignoring %s frame before CONNECTED", frame.command)

    def _on_connected(self, pending: asyncio.Future[bool]) -> None:
        if self._pending is pending:
            self._pending = None
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        if not pending.done():
            pending.set_result(True)

    async def _fail(self, pending: asyncio.Future[bool], exc: AppError) -> None:
        await self._stop_session()
        if self._pending is pending:
            self._pending = None
        self._set_state(ConnectionState.ERRORED)
        logger.warning("Broker connection failed: %s", exc.detail or type(exc).__name__)
        if not pending.done():
            pending.set_exception(exc)

    async def _read_loop(self, socket: BrokerSocket) -> None:
        try:
            while True:
                raw = await socket.recv()
                self._last_received = time.monotonic()
                try:
                    frames = decode_frames(raw)
                except FrameError:
                    logger.warning("Dropping malformed frame: %r", raw[:200])
                    continue
                for frame in frames:
                    self._dispatch(frame)
        except SocketClosed as exc:
            logger.warning("Broker socket closed: %s", exc)
        except Exception:
            logger.exception("Broker reader crashed")
        self._link_lost(socket)

    def _dispatch(self, frame: Frame) -> None:
        if frame.command == "MESSAGE":
            sub_id = frame.headers.get("subscription", "")
            route = self._routes.get(sub_id)
            if route is None:
                logger.debug("MESSAGE for unknown subscription %r", sub_id)
                return
            try:
                route.sink(frame)
            except Exception:
                logger.exception("Error delivering frame for %s", route.destination)
        elif frame.command == "ERROR":
            logger.error("Broker error: %s", frame.headers.get("message") or frame.body)
        else:
            logger.debug("Ignoring %s frame", frame.command)

    async def _heartbeat_loop(self, socket: BrokerSocket) -> None:
        intervals = [ms for ms in (self._send_every_ms, self._expect_every_ms) if ms]
        tick = min(intervals) / 1000 / 2
        tolerance = self._settings.HEARTBEAT_TOLERANCE
        while True:
            await asyncio.sleep(tick)
            now = time.monotonic()
            if self._send_every_ms and now - self._last_sent >= self._send_every_ms / 1000:
                try:
                    await socket.send(HEARTBEAT)
                except SocketClosed:
                    logger.warning("Heart-beat send failed, socket closed")
                    break
                self._last_sent = now
            silence = now - self._last_received
            if self._expect_every_ms and silence > self._expect_every_ms / 1000 * tolerance:
                logger.warning("No heart-beat from broker for %.1fs", silence)
                break
        self._link_lost(socket)

    def _link_lost(self, socket: BrokerSocket) -> None:
        if socket is not self._socket or self._state is not ConnectionState.CONNECTED:
            return
        logger.warning("Broker link lost, reconnecting")
        self._set_state(ConnectionState.CONNECTING)
        self._pending = self._new_pending()
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(self._pending), name="broker-reconnect",
        )

    async def _reconnect_loop(self, pending: asyncio.Future[bool]) -> None:
        await self._stop_session()
        max_attempts = self._settings.RECONNECT_MAX_ATTEMPTS
        while self._reconnect_attempts < max_attempts:
            delay = _calc_backoff(
                self._reconnect_attempts,
                self._settings.RECONNECT_BASE_DELAY_SECONDS,
                self._settings.RECONNECT_MAX_DELAY_SECONDS,
            )
            self._reconnect_attempts += 1
            logger.info(
                "Reconnecting in %.1fs (attempt %d/%d)",
                delay, self._reconnect_attempts, max_attempts,
            )
            await asyncio.sleep(delay)
            try:
                await self._open_session()
                await self._resubscribe()
            except AuthError as exc:
                await self._fail(pending, exc)
                return
            except ChatConnectionError as exc:
                logger.warning("Reconnect attempt %d failed: %s", self._reconnect_attempts, exc.detail)
                await self._stop_session()
                continue
            self._on_connected(pending)
            logger.info("Reconnected to broker")
            return
        await self._fail(pending, TransportFailure(f"Gave up after {max_attempts} reconnect attempts"))

    async def _resubscribe(self) -> None:
        socket = self._socket
        if socket is None:
            raise TransportFailure("Socket vanished before resubscribe")
        for sub_id, route in list(self._routes.items()):
            frame = Frame("SUBSCRIBE", {"id": sub_id, "destination": route.destination, "ack": "auto"})
            try:
                await socket.send(encode_frame(frame))
            except SocketClosed as exc:
                raise TransportFailure(f"Resubscribe failed: {exc}") from exc
        self._last_sent = time.monotonic()
        if self._routes:
            logger.info("Restored %d subscriptions", len(self._routes))

    async def _stop_session(self) -> None:
        reader, heartbeat = self._reader_task, self._heartbeat_task
        self._reader_task = self._heartbeat_task = None
        await _cancel(reader)
        await _cancel(heartbeat)
        await self._close_socket()

    async def _close_socket(self) -> None:
        socket, self._socket = self._socket, None
        if socket is None:
            return
        try:
            await socket.close()
        except Exception:
            logger.debug("Error closing broker socket", exc_info=True)

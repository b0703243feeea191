"""Reference client for the realtime hub.

Models the connection lifecycle as an explicit state machine, retries with
a fixed backoff schedule, re-joins the last opened room after a reconnect,
keeps a bounded buffer of recent notifications and auto-stops typing after
a quiet period.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from .events import (
    NOTIFICATION_EVENTS,
    ClientPong,
    JoinRoom,
    LeaveRoom,
    Ping,
    SendMessage,
    StartTyping,
    StopTyping,
    WireModel,
    parse_server_event,
)

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAYS: tuple[float, ...] = (0.0, 2.0, 5.0, 10.0, 30.0)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ConnectionEvent(str, Enum):
    START = "start"
    OPENED = "opened"
    FAILED = "failed"
    LOST = "lost"
    GIVE_UP = "give_up"
    STOP = "stop"


TRANSITIONS: dict[tuple[ConnectionState, ConnectionEvent], ConnectionState] = {
    (ConnectionState.DISCONNECTED, ConnectionEvent.START): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionEvent.OPENED): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.FAILED): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, ConnectionEvent.LOST): ConnectionState.RECONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.OPENED): ConnectionState.CONNECTED,
    (ConnectionState.RECONNECTING, ConnectionEvent.FAILED): ConnectionState.RECONNECTING,
    (ConnectionState.RECONNECTING, ConnectionEvent.GIVE_UP): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTING, ConnectionEvent.STOP): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, ConnectionEvent.STOP): ConnectionState.DISCONNECTED,
    (ConnectionState.RECONNECTING, ConnectionEvent.STOP): ConnectionState.DISCONNECTED,
    (ConnectionState.DISCONNECTED, ConnectionEvent.STOP): ConnectionState.DISCONNECTED,
}


class InvalidTransition(RuntimeError):
    """Raised when an event is not allowed in the current state."""


StateListener = Callable[[ConnectionState, ConnectionState, ConnectionEvent], None]


class ConnectionStateMachine:
    """Applies :data:`TRANSITIONS` and notifies listeners on every change."""

    def __init__(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def can(self, event: ConnectionEvent) -> bool:
        return (self._state, event) in TRANSITIONS

    def apply(self, event: ConnectionEvent) -> ConnectionState:
        try:
            target = TRANSITIONS[(self._state, event)]
        except KeyError:
            raise InvalidTransition(f"{event.value!r} is not allowed while {self._state.value}") from None
        previous, self._state = self._state, target
        for listener in list(self._listeners):
            listener(previous, target, event)
        return target


class ReconnectPolicy:
    """Fixed backoff schedule; ``None`` means stop retrying."""

    def __init__(self, delays: Sequence[float] = DEFAULT_RECONNECT_DELAYS) -> None:
        self.delays = tuple(float(delay) for delay in delays)

    def next_delay(self, attempt: int) -> float | None:
        if 0 <= attempt < len(self.delays):
            return self.delays[attempt]
        return None


class RecentNotifications:
    """Most-recent-first buffer of notification events, capped at *limit*."""

    def __init__(self, limit: int = 50) -> None:
        self._items: deque[tuple[WireModel, bool]] = deque(maxlen=limit)

    def add(self, event: WireModel) -> None:
        self._items.appendleft((event, False))

    def items(self) -> list[WireModel]:
        return [event for event, _ in self._items]

    @property
    def unread_count(self) -> int:
        return sum(1 for _, read in self._items if not read)

    def mark_all_read(self) -> None:
        self._items = deque(((event, True) for event, _ in self._items), maxlen=self._items.maxlen)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


Connector = Callable[[str], Awaitable[Any]]
EventHandler = Callable[[WireModel], Any]


def _default_connector(url: str) -> Awaitable[Any]:
    return websockets.connect(url)


class HubClient:
    """Asynchronous client speaking the hub protocol."""

    def __init__(
        self,
        url: str,
        token: str,
        *,
        connector: Connector | None = None,
        reconnect_delays: Sequence[float] = DEFAULT_RECONNECT_DELAYS,
        typing_idle_seconds: float = 3.0,
        notification_limit: int = 50,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        separator = "&" if "?" in url else "?"
        self._url = f"{url}{separator}token={token}"
        self._connector = connector or _default_connector
        self._policy = ReconnectPolicy(reconnect_delays)
        self._typing_idle = typing_idle_seconds
        self._sleep = sleep
        self._socket: Any = None
        self._handlers: dict[str, list[EventHandler]] = {}
        self._typing_timer: asyncio.TimerHandle | None = None
        self._typing_room: int | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self.machine = ConnectionStateMachine()
        self.notifications = RecentNotifications(notification_limit)
        self.current_room: int | None = None
        self.machine.add_listener(self._on_state_change)

    @property
    def state(self) -> ConnectionState:
        return self.machine.state

    def on(self, event_type: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def off(self, event_type: str, handler: EventHandler | None = None) -> None:
        if handler is None:
            self._handlers.pop(event_type, None)
            return
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self.machine.apply(ConnectionEvent.START)
        try:
            self._socket = await self._connector(self._url)
        except (OSError, WebSocketException):
            self.machine.apply(ConnectionEvent.FAILED)
            raise
        self.machine.apply(ConnectionEvent.OPENED)

    async def run(self) -> None:
        """Receive until stopped, reconnecting whenever the socket drops."""

        if self.state is ConnectionState.DISCONNECTED:
            await self.connect()
        while self.state is ConnectionState.CONNECTED:
            await self._receive_loop()
            if self.state is not ConnectionState.CONNECTED:
                break
            self.machine.apply(ConnectionEvent.LOST)
            if not await self._reconnect():
                break

    async def disconnect(self) -> None:
        self._cancel_typing_timer()
        socket, self._socket = self._socket, None
        self.machine.apply(ConnectionEvent.STOP)
        if socket is not None:
            await socket.close()

    async def _reconnect(self) -> bool:
        attempt = 0
        while self.state is ConnectionState.RECONNECTING:
            delay = self._policy.next_delay(attempt)
            if delay is None:
                logger.warning("Giving up after %s reconnect attempts", attempt)
                self.machine.apply(ConnectionEvent.GIVE_UP)
                return False
            attempt += 1
            await self._sleep(delay)
            if self.state is not ConnectionState.RECONNECTING:
                return False
            try:
                self._socket = await self._connector(self._url)
            except (OSError, WebSocketException) as exc:
                logger.info("Reconnect attempt %s failed: %s", attempt, exc)
                self.machine.apply(ConnectionEvent.FAILED)
                continue
            self.machine.apply(ConnectionEvent.OPENED)
            if self.current_room is not None:
                await self._send(JoinRoom(type="JoinRoom", room_id=self.current_room))
            return True
        return False

    async def _receive_loop(self) -> None:
        while self._socket is not None:
            try:
                raw = await self._socket.recv()
            except (ConnectionClosed, OSError):
                return
            try:
                event = parse_server_event(json.loads(raw))
            except (json.JSONDecodeError, ValidationError):
                logger.debug("Ignoring malformed frame: %r", raw)
                continue
            await self._dispatch(event)

    async def _dispatch(self, event: WireModel) -> None:
        if isinstance(event, Ping):
            await self._send(ClientPong(type="pong"))
            return
        if isinstance(event, NOTIFICATION_EVENTS):
            self.notifications.add(event)
        for handler in list(self._handlers.get(getattr(event, "type", ""), [])):
            result = handler(event)
            if asyncio.iscoroutine(result):
                await result

    def _on_state_change(
        self, previous: ConnectionState, current: ConnectionState, event: ConnectionEvent
    ) -> None:
        logger.debug("Hub client %s -> %s (%s)", previous.value, current.value, event.value)
        if current is ConnectionState.DISCONNECTED:
            self.notifications.clear()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def join_room(self, room_id: int) -> None:
        self.current_room = room_id
        await self._send(JoinRoom(type="JoinRoom", room_id=room_id))

    async def leave_room(self, room_id: int) -> None:
        if self.current_room == room_id:
            self.current_room = None
        await self._send(LeaveRoom(type="LeaveRoom", room_id=room_id))

    async def send_message(self, room_id: int, content: str, reply_to_id: int | None = None) -> None:
        if self._typing_room == room_id:
            await self.stop_typing()
        await self._send(
            SendMessage(type="SendMessage", room_id=room_id, content=content, reply_to_id=reply_to_id)
        )

    async def typing(self, room_id: int) -> None:
        """Signal a keystroke; StopTyping follows after the idle period."""

        if self._typing_room is not None and self._typing_room != room_id:
            await self.stop_typing()
        self._typing_room = room_id
        self._cancel_typing_timer()
        await self._send(StartTyping(type="StartTyping", room_id=room_id))
        loop = asyncio.get_running_loop()
        self._typing_timer = loop.call_later(self._typing_idle, self._spawn_stop_typing)

    def _spawn_stop_typing(self) -> None:
        task = asyncio.get_running_loop().create_task(self.stop_typing())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def stop_typing(self) -> None:
        self._cancel_typing_timer()
        room_id, self._typing_room = self._typing_room, None
        if room_id is not None:
            await self._send(StopTyping(type="StopTyping", room_id=room_id))

    def _cancel_typing_timer(self) -> None:
        if self._typing_timer is not None:
            self._typing_timer.cancel()
            self._typing_timer = None

    async def _send(self, command: WireModel) -> bool:
        if self.state is not ConnectionState.CONNECTED or self._socket is None:
            logger.warning("Hub not connected; dropping %s", getattr(command, "type", "command"))
            return False
        try:
            await self._socket.send(json.dumps(command.to_payload()))
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Send failed: %s", exc)
            return False
        return True

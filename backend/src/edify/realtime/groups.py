"""In-memory room membership and fan-out."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, Iterable, Set, Union

from app.monitoring.metrics import realtime_events_total, realtime_subscriptions

from .connection import Connection
from .events import WireModel

logger = logging.getLogger(__name__)

EventFactory = Callable[[Connection], Union[WireModel, None]]


def chat_group(chat_room_id: int) -> str:
    return f"chat:{chat_room_id}"


def course_group(course_id: int) -> str:
    return f"course:{course_id}"


def user_group(user_id: int) -> str:
    return f"user:{user_id}"


def group_kind(group: str) -> str:
    return group.split(":", 1)[0]


class GroupManager:
    """Map logical groups to subscribed connections, and back.

    Authorization happens before anything reaches this class; it only
    records decisions and delivers payloads. Sends always happen on a
    snapshot taken outside the lock.
    """

    def __init__(self) -> None:
        self._members: Dict[str, Set[Connection]] = defaultdict(set)
        self._groups: Dict[Connection, Set[str]] = defaultdict(set)
        self._lock = threading.Lock()

    def subscribe(self, group: str, connection: Connection) -> bool:
        with self._lock:
            members = self._members[group]
            if connection in members:
                return False
            members.add(connection)
            self._groups[connection].add(group)
        realtime_subscriptions.labels(group_kind(group)).inc()
        return True

    def unsubscribe(self, group: str, connection: Connection) -> bool:
        with self._lock:
            if not self._discard_locked(group, connection):
                return False
        realtime_subscriptions.labels(group_kind(group)).dec()
        return True

    def drop_connection(self, connection: Connection) -> set[str]:
        """Forget every subscription of *connection*; returns the groups it left."""

        with self._lock:
            groups = set(self._groups.get(connection, ()))
            for group in groups:
                self._discard_locked(group, connection)
            self._groups.pop(connection, None)
        for group in groups:
            realtime_subscriptions.labels(group_kind(group)).dec()
        return groups

    def is_member(self, group: str, connection: Connection) -> bool:
        with self._lock:
            return connection in self._members.get(group, ())

    def members(self, group: str) -> list[Connection]:
        with self._lock:
            return list(self._members.get(group, ()))

    def groups_of(self, connection: Connection) -> set[str]:
        with self._lock:
            return set(self._groups.get(connection, ()))

    def rooms_of(self, connection: Connection) -> list[int]:
        """Chat room ids the connection is currently subscribed to."""

        return sorted(
            int(group.split(":", 1)[1]) for group in self.groups_of(connection) if group_kind(group) == "chat"
        )

    def _discard_locked(self, group: str, connection: Connection) -> bool:
        members = self._members.get(group)
        if not members or connection not in members:
            return False
        members.discard(connection)
        if not members:
            self._members.pop(group, None)
        groups = self._groups.get(connection)
        if groups is not None:
            groups.discard(group)
            if not groups:
                self._groups.pop(connection, None)
        return True

    async def broadcast(
        self,
        group: str,
        event: WireModel | EventFactory,
        *,
        exclude: Iterable[Connection] | None = None,
    ) -> int:
        """Deliver *event* to every member of *group*.

        *event* may be a callable producing a per-recipient event (or None
        to skip that recipient). Returns the number of successful sends.
        """

        return await self.deliver(self.members(group), event, exclude=exclude, label=group_kind(group))

    async def deliver(
        self,
        connections: Iterable[Connection],
        event: WireModel | EventFactory,
        *,
        exclude: Iterable[Connection] | None = None,
        label: str = "direct",
    ) -> int:
        exclude_set = set(exclude or ())
        delivered = 0
        for connection in connections:
            if connection in exclude_set:
                continue
            payload = event(connection) if callable(event) else event
            if payload is None:
                continue
            if await connection.send(payload):
                delivered += 1
            else:
                logger.debug("Dropped %s for %r", getattr(payload, "type", "event"), connection)
        if delivered:
            event_name = getattr(event, "type", "personalized")
            realtime_events_total.labels(label, "out", event_name).inc(delivered)
        return delivered

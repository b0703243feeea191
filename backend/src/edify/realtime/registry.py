"""Process-wide index of live connections per user."""

from __future__ import annotations

import threading
from typing import Dict, Set

from app.monitoring.metrics import realtime_connections, realtime_online_users

from .connection import Connection


class ConnectionRegistry:
    """Track which users are online and through which connections.

    A user key exists only while at least one of its connections is live,
    so presence is a key lookup. Callers may use the registry from worker
    threads; every critical section is pure bookkeeping.
    """

    def __init__(self) -> None:
        self._connections: Dict[int, Set[Connection]] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, connection: Connection) -> bool:
        """Add *connection*; returns True when this is the user's first one."""

        with self._lock:
            bucket = self._connections.get(user_id)
            first = bucket is None
            if bucket is None:
                bucket = self._connections[user_id] = set()
            if connection in bucket:
                return False
            bucket.add(connection)
            online = len(self._connections)
        realtime_connections.labels("hub").inc()
        realtime_online_users.set(online)
        return first

    def unregister(self, user_id: int, connection: Connection) -> bool:
        """Remove *connection*; returns True when the user went offline."""

        with self._lock:
            bucket = self._connections.get(user_id)
            if not bucket or connection not in bucket:
                return False
            bucket.discard(connection)
            went_offline = not bucket
            if went_offline:
                self._connections.pop(user_id, None)
            online = len(self._connections)
        realtime_connections.labels("hub").dec()
        realtime_online_users.set(online)
        return went_offline

    def is_online(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._connections

    def connections_for(self, user_id: int) -> set[Connection]:
        with self._lock:
            return set(self._connections.get(user_id, ()))

    def online_user_ids(self) -> set[int]:
        with self._lock:
            return set(self._connections)

    def count(self) -> int:
        with self._lock:
            return len(self._connections)

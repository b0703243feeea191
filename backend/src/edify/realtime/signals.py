"""Ephemeral typing indicators with server-side expiry."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[int, int], Awaitable[None]]


class TypingTracker:
    """Remember who is typing where, and expire stale indicators.

    Each start schedules an expiry ``ttl_seconds`` later; a refresh cancels
    and reschedules it. When the timer fires without a refresh the entry is
    dropped and *on_expire(room_id, user_id)* is awaited so members can
    clear their indicator. Timers run on the event loop of the caller.
    """

    def __init__(self, ttl_seconds: float, on_expire: ExpiryCallback | None = None) -> None:
        self._ttl = ttl_seconds
        self._on_expire = on_expire
        self._timers: Dict[Tuple[int, int], asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl

    def set_expiry_callback(self, on_expire: ExpiryCallback) -> None:
        self._on_expire = on_expire

    def start(self, room_id: int, user_id: int) -> bool:
        """Mark *user_id* typing in *room_id*; returns True if newly typing."""

        loop = asyncio.get_running_loop()
        key = (room_id, user_id)
        with self._lock:
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()
            self._timers[key] = loop.call_later(self._ttl, self._expire, key)
        return previous is None

    def stop(self, room_id: int, user_id: int) -> bool:
        """Clear the indicator; returns True if the user was typing."""

        with self._lock:
            handle = self._timers.pop((room_id, user_id), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def clear_user(self, user_id: int) -> list[int]:
        """Drop every indicator of *user_id*; returns the affected rooms."""

        with self._lock:
            keys = [key for key in self._timers if key[1] == user_id]
            handles = [self._timers.pop(key) for key in keys]
        for handle in handles:
            handle.cancel()
        return sorted(room_id for room_id, _ in keys)

    def is_typing(self, room_id: int, user_id: int) -> bool:
        with self._lock:
            return (room_id, user_id) in self._timers

    def typing_in(self, room_id: int) -> list[int]:
        with self._lock:
            return sorted(user for room, user in self._timers if room == room_id)

    def close(self) -> None:
        with self._lock:
            handles = list(self._timers.values())
            self._timers.clear()
        for handle in handles:
            handle.cancel()
        for task in list(self._tasks):
            task.cancel()

    def _expire(self, key: Tuple[int, int]) -> None:
        with self._lock:
            if self._timers.pop(key, None) is None:
                return
        if self._on_expire is None:
            return
        task = asyncio.get_running_loop().create_task(self._on_expire(*key))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Typing expiry broadcast failed", exc_info=exc)

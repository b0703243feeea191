"""Realtime primitives shared by the websocket hub and its clients."""

from .connection import Connection, safe_send_json  # noqa: F401
from .groups import GroupManager, chat_group, course_group, user_group  # noqa: F401
from .hub import RealtimeHub  # noqa: F401
from .registry import ConnectionRegistry  # noqa: F401
from .signals import TypingTracker  # noqa: F401

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "GroupManager",
    "RealtimeHub",
    "TypingTracker",
    "chat_group",
    "course_group",
    "safe_send_json",
    "user_group",
]

"""Database models package."""

from .base import Base
from .chat import (
    DELETED_MESSAGE_PLACEHOLDER,
    ChatMessage,
    ChatRoom,
    Course,
    Enrollment,
    User,
)
from .enums import EnrollmentStatus

__all__ = [
    "Base",
    "User",
    "Course",
    "Enrollment",
    "ChatRoom",
    "ChatMessage",
    "EnrollmentStatus",
    "DELETED_MESSAGE_PLACEHOLDER",
]

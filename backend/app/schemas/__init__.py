"""Pydantic schemas for API payloads."""

from .chat import ChatMessagesPage, ChatRoomRead, SendMessageRequest, UpdateMessageRequest

__all__ = [
    "ChatMessagesPage",
    "ChatRoomRead",
    "SendMessageRequest",
    "UpdateMessageRequest",
]

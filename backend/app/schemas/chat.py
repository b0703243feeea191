"""Schemas for the chat REST endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from edify.realtime.events import MessageView, WireModel


class ChatRoomRead(WireModel):
    """Chat room summary shown in room lists and headers."""

    id: int
    name: str
    course_id: int
    course_name: str
    created_at: datetime
    last_message_at: datetime | None = None
    member_count: int = Field(..., ge=0, description="Teacher plus approved students")
    last_message: MessageView | None = None


class ChatMessagesPage(WireModel):
    """Oldest-first slice of a room's history."""

    messages: list[MessageView] = Field(default_factory=list)
    has_more: bool = False


class SendMessageRequest(WireModel):
    chat_room_id: int
    content: str
    reply_to_message_id: int | None = None


class UpdateMessageRequest(WireModel):
    content: str

"""Chat message pipeline: validate, persist, then fan out.

Persistence always completes before the broadcast, so per-room broadcast
order follows message ids. A deleted message keeps its row but its content
is overwritten with :data:`DELETED_MESSAGE_PLACEHOLDER`; it can never be
edited or deleted again.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from edify.realtime import RealtimeHub, chat_group
from edify.realtime.events import MessageDeleted, MessageUpdated, MessageView, ReceiveMessage

from app.config import Settings
from app.models import DELETED_MESSAGE_PLACEHOLDER, ChatMessage
from app.monitoring.metrics import chat_messages_total
from app.schemas.chat import ChatMessagesPage
from app.services import access
from app.services.errors import AccessDenied, NotFound, ValidationFailed
from app.services.store import Store

logger = logging.getLogger(__name__)


def ensure_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def normalize_content(content: str | None, max_length: int) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationFailed("Message content cannot be empty")
    if len(text) > max_length:
        raise ValidationFailed(f"Message exceeds maximum length of {max_length} characters")
    return text


def clamp_page_size(page_size: int | None, *, default: int, maximum: int) -> int:
    if page_size is None:
        return default
    return max(1, min(int(page_size), maximum))


def serialize_message(message: ChatMessage, teacher_id: int | None, *, with_reply: bool = True) -> MessageView:
    """Denormalize a row; the reply preview is embedded one level deep."""

    sender = message.sender
    reply = None
    if with_reply and message.reply_to is not None:
        reply = serialize_message(message.reply_to, teacher_id, with_reply=False)
    return MessageView(
        id=message.id,
        chat_room_id=message.chat_room_id,
        content=message.visible_content,
        sender_id=message.sender_id,
        sender_name=sender.display_name,
        sender_initials=sender.initials,
        is_teacher=message.sender_id == teacher_id,
        created_at=ensure_utc(message.created_at),
        is_edited=message.is_edited,
        is_deleted=message.is_deleted,
        reply_to_message_id=message.reply_to_message_id,
        reply_to_message=reply,
    )


def _load_message(db: Session, message_id: int) -> ChatMessage:
    message = db.get(ChatMessage, message_id)
    if message is None or message.is_deleted:
        raise NotFound("Message not found")
    return message


def persist_message(
    db: Session, user_id: int, room_id: int, content: str, reply_to_id: int | None
) -> MessageView:
    room = access.require_room_access(db, user_id, room_id)
    if reply_to_id is not None:
        parent = db.get(ChatMessage, reply_to_id)
        if parent is None or parent.chat_room_id != room.id or parent.is_deleted:
            raise ValidationFailed("Invalid reply message")
    message = ChatMessage(
        chat_room_id=room.id,
        sender_id=user_id,
        content=content,
        reply_to_message_id=reply_to_id,
    )
    db.add(message)
    db.flush()
    room.last_message_at = message.created_at
    db.commit()
    return serialize_message(message, room.course.teacher_id)


def edit_message(
    db: Session, user_id: int, message_id: int, content: str, edit_window: timedelta | None
) -> MessageView:
    message = _load_message(db, message_id)
    if message.sender_id != user_id:
        raise AccessDenied("You can only edit your own messages")
    room = message.chat_room
    if not access.has_course_access(db, user_id, room.course_id):
        raise AccessDenied()
    if edit_window is not None and datetime.now(timezone.utc) - ensure_utc(message.created_at) > edit_window:
        minutes = int(edit_window.total_seconds() // 60)
        raise ValidationFailed(f"Messages can only be edited within {minutes} minutes")
    message.content = content
    message.is_edited = True
    db.commit()
    return serialize_message(message, room.course.teacher_id)


def delete_message(db: Session, user_id: int, message_id: int) -> MessageDeleted:
    message = _load_message(db, message_id)
    room = message.chat_room
    if message.sender_id != user_id and not access.is_course_teacher(db, user_id, room.course_id):
        raise AccessDenied("You can only delete your own messages")
    message.is_deleted = True
    message.content = DELETED_MESSAGE_PLACEHOLDER
    db.commit()
    return MessageDeleted(message_id=message.id, room_id=room.id)


def fetch_page(
    db: Session, user_id: int, room_id: int, page_size: int, before_message_id: int | None
) -> ChatMessagesPage:
    room = access.require_room_access(db, user_id, room_id)
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.chat_room_id == room.id)
        .options(
            selectinload(ChatMessage.sender),
            selectinload(ChatMessage.reply_to).selectinload(ChatMessage.sender),
        )
        .order_by(ChatMessage.id.desc())
        .limit(page_size + 1)
    )
    if before_message_id is not None:
        stmt = stmt.where(ChatMessage.id < before_message_id)
    rows = db.scalars(stmt).all()
    has_more = len(rows) > page_size
    teacher_id = room.course.teacher_id
    messages = [
        serialize_message(row, teacher_id).for_viewer(user_id) for row in reversed(rows[:page_size])
    ]
    return ChatMessagesPage(messages=messages, has_more=has_more)


class MessageService:
    """Async facade used by both the websocket hub and the REST routes."""

    def __init__(self, hub: RealtimeHub, store: Store, settings: Settings) -> None:
        self._hub = hub
        self._store = store
        self._max_length = settings.chat_message_max_length
        self._default_page = settings.chat_history_default_limit
        self._max_page = settings.chat_history_max_limit
        minutes = settings.chat_edit_window_minutes
        self._edit_window = timedelta(minutes=minutes) if minutes > 0 else None
        self._send_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    async def send(
        self, user_id: int, room_id: int, content: str | None, reply_to_id: int | None = None
    ) -> MessageView:
        text = normalize_content(content, self._max_length)
        lock = self._send_locks.get(room_id)
        if lock is None:
            lock = self._send_locks[room_id] = asyncio.Lock()
        # Held from commit to fan-out so members see messages in id order.
        async with lock:
            view = await self._store.run(persist_message, user_id, room_id, text, reply_to_id)
            chat_messages_total.labels("send").inc()
            await self._hub.groups.broadcast(
                chat_group(room_id), lambda connection: ReceiveMessage(message=view.for_viewer(connection.user_id))
            )
        return view.for_viewer(user_id)

    async def edit(self, user_id: int, message_id: int, content: str | None) -> MessageView:
        text = normalize_content(content, self._max_length)
        view = await self._store.run(edit_message, user_id, message_id, text, self._edit_window)
        chat_messages_total.labels("edit").inc()
        await self._hub.groups.broadcast(
            chat_group(view.chat_room_id),
            lambda connection: MessageUpdated(message=view.for_viewer(connection.user_id)),
        )
        return view.for_viewer(user_id)

    async def delete(self, user_id: int, message_id: int) -> MessageDeleted:
        event = await self._store.run(delete_message, user_id, message_id)
        chat_messages_total.labels("delete").inc()
        logger.info("User %s deleted message %s in room %s", user_id, event.message_id, event.room_id)
        await self._hub.groups.broadcast(chat_group(event.room_id), event)
        return event

    async def fetch_page(
        self,
        user_id: int,
        room_id: int,
        page_size: int | None = None,
        before_message_id: int | None = None,
    ) -> ChatMessagesPage:
        size = clamp_page_size(page_size, default=self._default_page, maximum=self._max_page)
        return await self._store.run(fetch_page, user_id, room_id, size, before_message_id)

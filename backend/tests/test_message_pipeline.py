"""Send, edit, delete and paging through the message service."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

import anyio
import pytest
from fastapi.websockets import WebSocketState
from sqlalchemy import select

from conftest import make_connection

from app.models import DELETED_MESSAGE_PLACEHOLDER, ChatMessage, ChatRoom
from app.monitoring.metrics import chat_messages_total
from app.services.errors import AccessDenied, NotFound, ValidationFailed
from app.services import messages as messages_module
from app.services.messages import clamp_page_size
from edify.realtime import chat_group


def _subscribe(services, room_id: int, *connections) -> None:
    for connection in connections:
        services.hub.registry.register(connection.user_id, connection)
        services.hub.groups.subscribe(chat_group(room_id), connection)


@pytest.mark.anyio("asyncio")
async def test_send_persists_then_broadcasts_personalized_copies(campus, services, session_factory) -> None:
    teacher = make_connection(campus.teacher_id, "Tina Teach")
    student = make_connection(campus.student_id, "Sam Study")
    _subscribe(services, campus.room_id, teacher, student)

    view = await services.messages.send(campus.teacher_id, campus.room_id, "  Welcome!  ")

    assert view.content == "Welcome!"
    assert view.is_own_message is True
    assert view.is_teacher is True
    assert view.sender_initials == "TT"

    [to_student] = student.websocket.sent
    assert to_student["type"] == "ReceiveMessage"
    assert to_student["message"]["content"] == "Welcome!"
    assert to_student["message"]["senderId"] == campus.teacher_id
    assert to_student["message"]["isOwnMessage"] is False
    [to_teacher] = teacher.websocket.sent
    assert to_teacher["message"]["isOwnMessage"] is True

    with session_factory() as session:
        room = session.get(ChatRoom, campus.room_id)
        stored = session.get(ChatMessage, view.id)
        assert stored.content == "Welcome!"
        assert room.last_message_at is not None
    assert chat_messages_total.value("send") == 1


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("content", ["", "   ", None, "x" * 4001])
async def test_send_rejects_blank_or_oversized_content(campus, services, content) -> None:
    with pytest.raises(ValidationFailed):
        await services.messages.send(campus.teacher_id, campus.room_id, content)


@pytest.mark.anyio("asyncio")
async def test_send_without_access_writes_nothing(campus, services, session_factory) -> None:
    watcher = make_connection(campus.teacher_id)
    _subscribe(services, campus.room_id, watcher)

    with pytest.raises(AccessDenied):
        await services.messages.send(campus.outsider_id, campus.room_id, "let me in")
    with pytest.raises(NotFound):
        await services.messages.send(campus.teacher_id, 9999, "anyone?")

    with session_factory() as session:
        assert session.scalars(select(ChatMessage)).all() == []
    assert watcher.websocket.sent == []


@pytest.mark.anyio("asyncio")
async def test_reply_target_must_be_live_and_in_the_same_room(campus, services) -> None:
    foreign = await services.messages.send(campus.other_teacher_id, campus.other_room_id, "elsewhere")
    parent = await services.messages.send(campus.teacher_id, campus.room_id, "question?")

    with pytest.raises(ValidationFailed):
        await services.messages.send(campus.student_id, campus.room_id, "reply", reply_to_id=foreign.id)
    with pytest.raises(ValidationFailed):
        await services.messages.send(campus.student_id, campus.room_id, "reply", reply_to_id=12345)

    await services.messages.delete(campus.teacher_id, parent.id)
    with pytest.raises(ValidationFailed):
        await services.messages.send(campus.student_id, campus.room_id, "reply", reply_to_id=parent.id)


@pytest.mark.anyio("asyncio")
async def test_reply_preview_is_embedded_in_history(campus, services) -> None:
    welcome = await services.messages.send(campus.teacher_id, campus.room_id, "Welcome!")
    reply = await services.messages.send(campus.student_id, campus.room_id, "Thanks!", reply_to_id=welcome.id)

    assert reply.reply_to_message_id == welcome.id
    page = await services.messages.fetch_page(campus.student_id, campus.room_id)

    latest = page.messages[-1]
    assert latest.content == "Thanks!"
    assert latest.is_own_message is True
    assert latest.reply_to_message.id == welcome.id
    assert latest.reply_to_message.content == "Welcome!"
    assert latest.reply_to_message.is_teacher is True


@pytest.mark.anyio("asyncio")
async def test_edit_by_sender_broadcasts_update(campus, services) -> None:
    student = make_connection(campus.student_id)
    _subscribe(services, campus.room_id, student)
    original = await services.messages.send(campus.teacher_id, campus.room_id, "Hw due Monday")
    student.websocket.sent.clear()

    edited = await services.messages.edit(campus.teacher_id, original.id, "Hw due Tuesday")

    assert edited.is_edited is True
    [event] = student.websocket.sent
    assert event["type"] == "MessageUpdated"
    assert event["message"]["isEdited"] is True
    assert event["message"]["content"] == "Hw due Tuesday"


@pytest.mark.anyio("asyncio")
async def test_edit_by_someone_else_is_denied_without_broadcast(campus, services) -> None:
    watcher = make_connection(campus.teacher_id)
    _subscribe(services, campus.room_id, watcher)
    original = await services.messages.send(campus.student_id, campus.room_id, "mine")
    watcher.websocket.sent.clear()

    with pytest.raises(AccessDenied):
        await services.messages.edit(campus.teacher_id, original.id, "not yours")

    assert watcher.websocket.sent == []


@pytest.mark.anyio("asyncio")
async def test_edit_window_closes_after_configured_minutes(campus, services, session_factory) -> None:
    original = await services.messages.send(campus.student_id, campus.room_id, "old news")
    with session_factory() as session:
        stored = session.get(ChatMessage, original.id)
        stored.created_at = datetime.now(timezone.utc) - timedelta(minutes=16)
        session.commit()

    with pytest.raises(ValidationFailed):
        await services.messages.edit(campus.student_id, original.id, "fresh news")


@pytest.mark.anyio("asyncio")
async def test_delete_stores_tombstone_and_is_terminal(campus, services, session_factory) -> None:
    student = make_connection(campus.student_id)
    _subscribe(services, campus.room_id, student)
    secret = await services.messages.send(campus.student_id, campus.room_id, "my phone number")
    student.websocket.sent.clear()

    event = await services.messages.delete(campus.student_id, secret.id)

    assert (event.message_id, event.room_id) == (secret.id, campus.room_id)
    assert student.websocket.sent == [{"type": "MessageDeleted", "messageId": secret.id, "roomId": campus.room_id}]
    with session_factory() as session:
        stored = session.get(ChatMessage, secret.id)
        assert stored.is_deleted is True
        assert stored.content == DELETED_MESSAGE_PLACEHOLDER

    for _ in range(2):
        page = await services.messages.fetch_page(campus.teacher_id, campus.room_id)
        assert [message.content for message in page.messages] == [DELETED_MESSAGE_PLACEHOLDER]
        assert page.messages[0].is_deleted is True

    with pytest.raises(NotFound):
        await services.messages.delete(campus.student_id, secret.id)
    with pytest.raises(NotFound):
        await services.messages.edit(campus.student_id, secret.id, "undo")


@pytest.mark.anyio("asyncio")
async def test_teacher_may_delete_student_messages_but_not_vice_versa(campus, services) -> None:
    from_student = await services.messages.send(campus.student_id, campus.room_id, "spam")
    from_teacher = await services.messages.send(campus.teacher_id, campus.room_id, "notice")

    with pytest.raises(AccessDenied):
        await services.messages.delete(campus.student_id, from_teacher.id)

    event = await services.messages.delete(campus.teacher_id, from_student.id)
    assert event.message_id == from_student.id


@pytest.mark.anyio("asyncio")
async def test_ids_follow_commit_order_and_pages_are_cursor_stable(campus, services) -> None:
    sent = [await services.messages.send(campus.teacher_id, campus.room_id, f"m{index}") for index in range(7)]
    ids = [message.id for message in sent]
    assert ids == sorted(ids)

    newest = await services.messages.fetch_page(campus.student_id, campus.room_id, page_size=3)
    assert [message.content for message in newest.messages] == ["m4", "m5", "m6"]
    assert newest.has_more is True

    cursor = newest.messages[0].id
    await services.messages.send(campus.student_id, campus.room_id, "late arrival")

    older = await services.messages.fetch_page(campus.student_id, campus.room_id, page_size=3, before_message_id=cursor)
    oldest = await services.messages.fetch_page(
        campus.student_id, campus.room_id, page_size=3, before_message_id=older.messages[0].id
    )

    assert [message.content for message in older.messages] == ["m1", "m2", "m3"]
    assert older.has_more is True
    assert [message.content for message in oldest.messages] == ["m0"]
    assert oldest.has_more is False


@pytest.mark.anyio("asyncio")
async def test_fetch_page_requires_read_access(campus, services) -> None:
    with pytest.raises(AccessDenied):
        await services.messages.fetch_page(campus.pending_id, campus.room_id)


def test_page_size_is_clamped() -> None:
    assert clamp_page_size(None, default=50, maximum=100) == 50
    assert clamp_page_size(0, default=50, maximum=100) == 1
    assert clamp_page_size(-5, default=50, maximum=100) == 1
    assert clamp_page_size(500, default=50, maximum=100) == 100
    assert clamp_page_size(20, default=50, maximum=100) == 20


@pytest.mark.anyio("asyncio")
async def test_overlapping_sends_are_broadcast_in_commit_order(campus, services, monkeypatch) -> None:
    watcher = make_connection(campus.teacher_id)
    _subscribe(services, campus.room_id, watcher)
    original = messages_module.serialize_message

    def slow_for_first(message, *args, **kwargs):
        if message.content == "first":
            time.sleep(0.3)
        return original(message, *args, **kwargs)

    monkeypatch.setattr(messages_module, "serialize_message", slow_for_first)

    async with anyio.create_task_group() as tg:
        tg.start_soon(services.messages.send, campus.teacher_id, campus.room_id, "first")
        await anyio.sleep(0.05)
        tg.start_soon(services.messages.send, campus.student_id, campus.room_id, "second")

    received = [(event["message"]["id"], event["message"]["content"]) for event in watcher.websocket.sent]
    assert [content for _, content in received] == ["first", "second"]
    assert [message_id for message_id, _ in received] == sorted(message_id for message_id, _ in received)


@pytest.mark.anyio("asyncio")
async def test_send_completes_when_sender_tab_closes_midway(campus, services, monkeypatch, session_factory) -> None:
    closing_tab = make_connection(campus.student_id, "Sam Study")
    other_tab = make_connection(campus.student_id, "Sam Study")
    teacher = make_connection(campus.teacher_id, "Tina Teach")
    _subscribe(services, campus.room_id, closing_tab, other_tab, teacher)
    original = messages_module.serialize_message

    def close_tab_during_write(message, *args, **kwargs):
        closing_tab.websocket.application_state = WebSocketState.DISCONNECTED
        return original(message, *args, **kwargs)

    monkeypatch.setattr(messages_module, "serialize_message", close_tab_during_write)

    view = await services.messages.send(campus.student_id, campus.room_id, "sent while closing")

    with session_factory() as session:
        assert session.get(ChatMessage, view.id).content == "sent while closing"
    assert closing_tab.websocket.sent == []
    [own_copy] = other_tab.websocket.sent
    assert own_copy["type"] == "ReceiveMessage"
    assert own_copy["message"]["isOwnMessage"] is True
    assert teacher.websocket.types() == ["ReceiveMessage"]

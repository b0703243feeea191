"""REST endpoints for course chat rooms and message history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, status

from edify.realtime.events import MessageView

from app.api.deps import get_current_user, get_services
from app.models import User
from app.schemas.chat import ChatMessagesPage, ChatRoomRead, SendMessageRequest, UpdateMessageRequest
from app.services import RealtimeServices
from app.services import chat_rooms

router = APIRouter(prefix="/chats", tags=["chats"])


@router.get("/course/{course_id}", response_model=ChatRoomRead)
async def get_course_chat(
    course_id: int,
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ChatRoomRead:
    """Return the course chat room, creating it on first access."""

    return await services.store.run(chat_rooms.get_or_create_course_chat, current_user.id, course_id)


@router.get("/my-chats", response_model=list[ChatRoomRead])
async def list_my_chats(
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> list[ChatRoomRead]:
    return await services.store.run(chat_rooms.list_user_rooms, current_user.id)


@router.get("/{room_id}", response_model=ChatRoomRead)
async def get_chat_room(
    room_id: int,
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ChatRoomRead:
    return await services.store.run(chat_rooms.get_room, current_user.id, room_id)


@router.get("/{room_id}/messages", response_model=ChatMessagesPage)
async def get_chat_messages(
    room_id: int,
    page_size: int | None = Query(default=None, alias="pageSize"),
    before_message_id: int | None = Query(default=None, alias="beforeMessageId"),
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ChatMessagesPage:
    """Page backwards through history using a message id cursor."""

    return await services.messages.fetch_page(current_user.id, room_id, page_size, before_message_id)


@router.post("/messages", response_model=MessageView, status_code=status.HTTP_201_CREATED)
async def send_message(
    payload: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> MessageView:
    return await services.messages.send(
        current_user.id, payload.chat_room_id, payload.content, payload.reply_to_message_id
    )


@router.put("/messages/{message_id}", response_model=MessageView)
async def update_message(
    message_id: int,
    payload: UpdateMessageRequest,
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> MessageView:
    return await services.messages.edit(current_user.id, message_id, payload.content)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> Response:
    await services.messages.delete(current_user.id, message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

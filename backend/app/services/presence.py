"""Typing indicators and online snapshots for chat rooms."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from edify.realtime import Connection, RealtimeHub, chat_group
from edify.realtime.events import OnlineUser, OnlineUsers, UserStoppedTyping, UserTyping

from app.services import access
from app.services.errors import AccessDenied
from app.services.store import Store

logger = logging.getLogger(__name__)


def room_member_entries(db: Session, room_id: int) -> list[OnlineUser]:
    room = access.get_active_room(db, room_id)
    teacher_id = room.course.teacher_id
    return [
        OnlineUser(user_id=member.id, display_name=member.display_name, is_teacher=member.id == teacher_id)
        for member in access.course_members(db, room.course_id)
    ]


class PresenceService:
    """Relays typing signals and answers "who is online" for a room.

    Typing state lives in the hub's tracker; an indicator that is not
    refreshed within the tracker TTL is cleared with a broadcast.
    """

    def __init__(self, hub: RealtimeHub, store: Store) -> None:
        self._hub = hub
        self._store = store
        hub.typing.set_expiry_callback(self._on_typing_expired)

    def _require_subscribed(self, connection: Connection, room_id: int) -> str:
        group = chat_group(room_id)
        if not self._hub.groups.is_member(group, connection):
            raise AccessDenied("Join the chat room first")
        return group

    async def start_typing(self, connection: Connection, room_id: int) -> None:
        group = self._require_subscribed(connection, room_id)
        self._hub.typing.start(room_id, connection.user_id)
        await self._hub.groups.broadcast(
            group,
            UserTyping(user_id=connection.user_id, user_name=connection.display_name, room_id=room_id),
            exclude=self._hub.registry.connections_for(connection.user_id),
        )

    async def stop_typing(self, connection: Connection, room_id: int) -> None:
        self._require_subscribed(connection, room_id)
        self._hub.typing.stop(room_id, connection.user_id)
        await self._broadcast_stopped(room_id, connection.user_id)

    async def clear_user(self, user_id: int) -> None:
        """Clear indicators of a user whose connection went away."""

        for room_id in self._hub.typing.clear_user(user_id):
            await self._broadcast_stopped(room_id, user_id)

    async def _on_typing_expired(self, room_id: int, user_id: int) -> None:
        logger.debug("Typing indicator of user %s in room %s expired", user_id, room_id)
        await self._broadcast_stopped(room_id, user_id)

    async def _broadcast_stopped(self, room_id: int, user_id: int) -> None:
        await self._hub.groups.broadcast(
            chat_group(room_id),
            UserStoppedTyping(user_id=user_id, room_id=room_id),
            exclude=self._hub.registry.connections_for(user_id),
        )

    async def online_snapshot(self, room_id: int) -> list[OnlineUser]:
        """Course members of the room that currently hold a live connection."""

        members = await self._store.run(room_member_entries, room_id)
        online = self._hub.registry.online_user_ids()
        users = [member for member in members if member.user_id in online]
        users.sort(key=lambda user: (not user.is_teacher, user.display_name.lower(), user.user_id))
        return users

    async def get_online_users(self, connection: Connection, room_id: int) -> OnlineUsers:
        self._require_subscribed(connection, room_id)
        return OnlineUsers(room_id=room_id, users=await self.online_snapshot(room_id))

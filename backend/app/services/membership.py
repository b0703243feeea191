"""Store-aware room membership on top of the in-memory group map."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from edify.realtime import Connection, RealtimeHub, chat_group, course_group, user_group
from edify.realtime.events import UserJoined, UserLeft

from app.models import ChatRoom, User
from app.services import access
from app.services.errors import NotFound, RealtimeError
from app.services.store import Store

logger = logging.getLogger(__name__)


def authorized_groups(db: Session, user_id: int) -> list[str]:
    """Every group key a fresh connection of *user_id* should subscribe to."""

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        return []
    course_ids = access.authorized_course_ids(db, user)
    groups = [user_group(user_id)]
    groups.extend(course_group(course_id) for course_id in course_ids)
    if course_ids:
        room_ids = db.scalars(
            select(ChatRoom.id)
            .where(ChatRoom.course_id.in_(course_ids), ChatRoom.is_active.is_(True))
            .order_by(ChatRoom.id)
        )
        groups.extend(chat_group(room_id) for room_id in room_ids)
    return groups


def room_access(db: Session, user_id: int, room_id: int) -> bool:
    """Raise NotFound for a missing or inactive room, else report access."""

    room = access.get_active_room(db, room_id)
    return access.has_course_access(db, user_id, room.course_id)


class MembershipService:
    def __init__(self, hub: RealtimeHub, store: Store) -> None:
        self._hub = hub
        self._store = store

    async def auto_join_all_authorized_rooms(self, connection: Connection) -> list[int]:
        """Subscribe a new connection to its personal, course and chat groups.

        A store failure leaves the connection open with no subscriptions.
        Returns the chat room ids joined.
        """

        try:
            groups = await self._store.run(authorized_groups, connection.user_id)
        except RealtimeError as exc:
            logger.warning(
                "Auto-join failed for user %s, continuing with no rooms: %s", connection.user_id, exc
            )
            return []
        for group in groups:
            self._hub.groups.subscribe(group, connection)
        return self._hub.groups.rooms_of(connection)

    async def join_room(self, connection: Connection, room_id: int) -> bool:
        """Re-check access and subscribe; a denial also drops any stale subscription.

        Raises NotFound when the room does not exist or is inactive.
        """

        group = chat_group(room_id)
        try:
            allowed = await self._store.run(room_access, connection.user_id, room_id)
        except NotFound:
            self._evict(group, connection)
            raise
        if not allowed:
            self._evict(group, connection)
            return False
        if self._hub.groups.subscribe(group, connection):
            await self._hub.groups.broadcast(
                group,
                UserJoined(user_id=connection.user_id, user_name=connection.display_name, room_id=room_id),
                exclude=[connection],
            )
        return True

    def _evict(self, group: str, connection: Connection) -> None:
        if self._hub.groups.unsubscribe(group, connection):
            logger.info("Evicted user %s from %s after access re-check", connection.user_id, group)

    async def leave_room(self, connection: Connection, room_id: int) -> bool:
        group = chat_group(room_id)
        if not self._hub.groups.unsubscribe(group, connection):
            return False
        await self._hub.groups.broadcast(
            group,
            UserLeft(user_id=connection.user_id, user_name=connection.display_name, room_id=room_id),
        )
        return True

    def on_disconnect(self, connection: Connection) -> set[str]:
        """Drop every subscription silently; no per-room leave events."""

        return self._hub.groups.drop_connection(connection)

"""Chat room lookups for the REST surface."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models import ChatMessage, ChatRoom, Course, Enrollment, EnrollmentStatus, User
from app.schemas.chat import ChatRoomRead
from app.services import access
from app.services.errors import AccessDenied, NotFound
from app.services.messages import ensure_utc, serialize_message

logger = logging.getLogger(__name__)


def _member_count(db: Session, course_id: int) -> int:
    students = db.scalar(
        select(func.count(Enrollment.id)).where(
            Enrollment.course_id == course_id, Enrollment.status == EnrollmentStatus.APPROVED
        )
    )
    return int(students or 0) + 1


def build_room_read(db: Session, room: ChatRoom, user_id: int) -> ChatRoomRead:
    course = room.course
    last = db.scalars(
        select(ChatMessage)
        .where(ChatMessage.chat_room_id == room.id, ChatMessage.is_deleted.is_(False))
        .order_by(ChatMessage.id.desc())
        .limit(1)
    ).first()
    last_view = serialize_message(last, course.teacher_id, with_reply=False).for_viewer(user_id) if last else None
    return ChatRoomRead(
        id=room.id,
        name=room.name,
        course_id=course.id,
        course_name=course.title,
        created_at=ensure_utc(room.created_at),
        last_message_at=ensure_utc(room.last_message_at) if room.last_message_at else None,
        member_count=_member_count(db, course.id),
        last_message=last_view,
    )


def get_or_create_course_chat(db: Session, user_id: int, course_id: int) -> ChatRoomRead:
    course = db.get(Course, course_id)
    if course is None:
        raise NotFound("Course not found")
    if not access.has_course_access(db, user_id, course_id):
        raise AccessDenied("You don't have access to this course")
    room = db.scalars(
        select(ChatRoom).where(ChatRoom.course_id == course_id, ChatRoom.is_active.is_(True)).limit(1)
    ).first()
    if room is None:
        room = ChatRoom(name=f"{course.title} - Group Chat", course_id=course_id)
        db.add(room)
        db.commit()
        logger.info("Created chat room %s for course %s", room.id, course_id)
    return build_room_read(db, room, user_id)


def list_user_rooms(db: Session, user_id: int) -> list[ChatRoomRead]:
    """Rooms of every authorized course, most recently active first."""

    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    course_ids = access.authorized_course_ids(db, user)
    if not course_ids:
        return []
    rooms = db.scalars(
        select(ChatRoom).where(ChatRoom.course_id.in_(course_ids), ChatRoom.is_active.is_(True))
    ).all()
    reads = [build_room_read(db, room, user_id) for room in rooms]
    reads.sort(key=lambda read: read.last_message_at or read.created_at, reverse=True)
    return reads


def get_room(db: Session, user_id: int, room_id: int) -> ChatRoomRead:
    room = access.require_room_access(db, user_id, room_id)
    return build_room_read(db, room, user_id)

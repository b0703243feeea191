"""Course based authorization for chat rooms and notification channels.

Every helper queries the store; nothing here is cached between calls
because enrollment state can change while a socket stays open.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import ChatRoom, Course, Enrollment, EnrollmentStatus, User
from app.services.errors import AccessDenied, NotFound


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller as seen by the realtime layer."""

    user_id: int
    display_name: str
    initials: str
    can_teach: bool
    can_study: bool

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            user_id=user.id,
            display_name=user.display_name,
            initials=user.initials,
            can_teach=user.can_teach,
            can_study=user.can_study,
        )


def load_identity(db: Session, user_id: int) -> Identity:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFound("User not found")
    return Identity.from_user(user)


def authorized_course_ids(db: Session, user: Identity | User) -> list[int]:
    """Active courses the user teaches or is approved to study in."""

    user_id = user.user_id if isinstance(user, Identity) else user.id
    course_ids: set[int] = set()
    if user.can_teach:
        course_ids.update(
            db.scalars(select(Course.id).where(Course.teacher_id == user_id, Course.is_active.is_(True)))
        )
    if user.can_study:
        course_ids.update(
            db.scalars(
                select(Enrollment.course_id)
                .join(Course, Course.id == Enrollment.course_id)
                .where(
                    Enrollment.student_id == user_id,
                    Enrollment.status == EnrollmentStatus.APPROVED,
                    Course.is_active.is_(True),
                )
            )
        )
    return sorted(course_ids)


def is_course_teacher(db: Session, user_id: int, course_id: int) -> bool:
    teacher_id = db.scalar(select(Course.teacher_id).where(Course.id == course_id))
    return teacher_id is not None and teacher_id == user_id


def is_approved_student(db: Session, user_id: int, course_id: int) -> bool:
    stmt = select(Enrollment.id).where(
        Enrollment.student_id == user_id,
        Enrollment.course_id == course_id,
        Enrollment.status == EnrollmentStatus.APPROVED,
    )
    return db.scalar(stmt) is not None


def has_course_access(db: Session, user_id: int, course_id: int) -> bool:
    return is_course_teacher(db, user_id, course_id) or is_approved_student(db, user_id, course_id)


def get_active_room(db: Session, chat_room_id: int) -> ChatRoom:
    room = db.get(ChatRoom, chat_room_id)
    if room is None or not room.is_active:
        raise NotFound("Chat room not found")
    return room


def can_access_room(db: Session, user_id: int, chat_room_id: int) -> bool:
    room = db.get(ChatRoom, chat_room_id)
    if room is None or not room.is_active:
        return False
    return has_course_access(db, user_id, room.course_id)


def require_room_access(db: Session, user_id: int, chat_room_id: int) -> ChatRoom:
    """Return the room or raise NotFound / AccessDenied."""

    room = get_active_room(db, chat_room_id)
    if not has_course_access(db, user_id, room.course_id):
        raise AccessDenied()
    return room


def course_members(db: Session, course_id: int) -> list[User]:
    """Teacher of record followed by approved enrollees."""

    course = db.get(Course, course_id)
    if course is None:
        return []
    students = db.scalars(
        select(User)
        .join(Enrollment, Enrollment.student_id == User.id)
        .where(Enrollment.course_id == course_id, Enrollment.status == EnrollmentStatus.APPROVED)
        .order_by(User.id)
    ).all()
    members = [course.teacher] if course.teacher is not None else []
    members.extend(student for student in students if student.id != course.teacher_id)
    return members

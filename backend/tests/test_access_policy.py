from __future__ import annotations

from sqlalchemy import select

from app.models import ChatRoom, Course, Enrollment, EnrollmentStatus, User
from app.services import access


def test_authorized_courses_follow_role_flags(campus, db_session) -> None:
    teacher = db_session.get(User, campus.teacher_id)
    student = db_session.get(User, campus.student_id)
    pending = db_session.get(User, campus.pending_id)

    assert access.authorized_course_ids(db_session, teacher) == [campus.course_id]
    assert access.authorized_course_ids(db_session, student) == [campus.course_id]
    assert access.authorized_course_ids(db_session, pending) == []


def test_teacher_without_teach_flag_gets_no_taught_courses(campus, db_session) -> None:
    teacher = db_session.get(User, campus.teacher_id)
    teacher.can_teach = False
    db_session.commit()

    assert access.authorized_course_ids(db_session, teacher) == []


def test_inactive_courses_are_not_authorized(campus, db_session) -> None:
    db_session.get(Course, campus.course_id).is_active = False
    db_session.commit()

    student = db_session.get(User, campus.student_id)
    assert access.authorized_course_ids(db_session, access.Identity.from_user(student)) == []


def test_room_access_requires_teacher_or_approved_enrollment(campus, db_session) -> None:
    assert access.can_access_room(db_session, campus.teacher_id, campus.room_id)
    assert access.can_access_room(db_session, campus.student_id, campus.room_id)
    assert not access.can_access_room(db_session, campus.pending_id, campus.room_id)
    assert not access.can_access_room(db_session, campus.outsider_id, campus.room_id)
    assert not access.can_access_room(db_session, campus.student_id, 9999)


def test_room_access_is_reevaluated_on_every_call(campus, db_session) -> None:
    assert access.can_access_room(db_session, campus.student_id, campus.room_id)

    enrollment = db_session.scalars(
        select(Enrollment).where(Enrollment.student_id == campus.student_id)
    ).one()
    enrollment.status = EnrollmentStatus.REJECTED
    db_session.commit()

    assert not access.can_access_room(db_session, campus.student_id, campus.room_id)


def test_inactive_room_denies_access(campus, db_session) -> None:
    db_session.get(ChatRoom, campus.room_id).is_active = False
    db_session.commit()

    assert not access.can_access_room(db_session, campus.teacher_id, campus.room_id)


def test_course_members_lists_teacher_first(campus, db_session) -> None:
    members = access.course_members(db_session, campus.course_id)

    assert [member.id for member in members] == [campus.teacher_id, campus.student_id]
    assert access.is_course_teacher(db_session, campus.teacher_id, campus.course_id)
    assert not access.is_course_teacher(db_session, campus.student_id, campus.course_id)
    assert access.course_members(db_session, 9999) == []

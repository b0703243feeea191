"""Server-initiated notifications for course and personal groups.

Callers invoke these after their own write is committed. Delivery is
at-most-once to whoever is connected right now; nothing is stored or
retried, and failures never reach the caller.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import anyio

from edify.realtime import RealtimeHub, course_group, user_group
from edify.realtime.events import MaterialPublished, TestGraded, TestPublished, WireModel

from app.monitoring.metrics import notifications_total

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class NotificationService:
    def __init__(self, hub: RealtimeHub) -> None:
        self._hub = hub
        self._tasks: set[asyncio.Task[Any]] = set()

    async def notify_material_published(
        self,
        course_id: int,
        material_id: int,
        title: str,
        material_type: str,
        uploaded_by: str,
        uploaded_at: datetime | None = None,
    ) -> int:
        event = MaterialPublished(
            course_id=course_id,
            material_id=material_id,
            title=title,
            material_type=material_type,
            uploaded_by=uploaded_by,
            uploaded_at=uploaded_at or _now(),
        )
        return await self._publish(course_group(course_id), event)

    async def notify_test_published(
        self,
        course_id: int,
        test_id: int,
        title: str,
        due_date: datetime | None = None,
        published_at: datetime | None = None,
    ) -> int:
        event = TestPublished(
            course_id=course_id,
            test_id=test_id,
            title=title,
            due_date=due_date,
            published_at=published_at or _now(),
        )
        return await self._publish(course_group(course_id), event)

    async def notify_test_graded(
        self,
        student_id: int,
        test_id: int,
        test_title: str,
        attempt_id: int,
        score: float | None = None,
        max_score: float | None = None,
        percentage: float | None = None,
        passed: bool | None = None,
        graded_at: datetime | None = None,
    ) -> int:
        event = TestGraded(
            test_id=test_id,
            test_title=test_title,
            attempt_id=attempt_id,
            score=score,
            max_score=max_score,
            percentage=percentage,
            passed=passed,
            graded_at=graded_at or _now(),
        )
        return await self._publish(user_group(student_id), event)

    async def _publish(self, group: str, event: WireModel) -> int:
        delivered = await self._hub.groups.broadcast(group, event)
        kind = getattr(event, "type", "notification")
        notifications_total.labels(kind).inc()
        if delivered:
            logger.info("Delivered %s to %s connection(s) in %s", kind, delivered, group)
        else:
            logger.debug("No live recipients for %s in %s", kind, group)
        return delivered

    def publish_from_thread(self, notify: Callable[..., Awaitable[int]], *args: Any, **kwargs: Any) -> None:
        """Schedule *notify* from synchronous domain code.

        Works from the event loop thread itself and from anyio worker
        threads; elsewhere there is no loop holding live sockets and the
        notification is dropped.
        """

        async def _send() -> None:
            await notify(*args, **kwargs)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            try:
                anyio.from_thread.run(_send)
            except RuntimeError as exc:
                logger.warning("Dropping notification %s: %s", getattr(notify, "__name__", notify), exc)
        else:
            task = loop.create_task(_send())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

"""Run blocking store work off the event loop."""

from __future__ import annotations

import logging
from functools import partial
from typing import Callable, TypeVar

import anyio
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.database import get_db_session
from app.services.errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Store:
    """Opens one short-lived session per unit of work.

    Units are plain functions taking the session as first argument. They run
    in a worker thread; SQLAlchemy failures surface as
    :class:`StoreUnavailable`.
    """

    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self._factory = session_factory

    def call(self, work: Callable[..., T], *args, **kwargs) -> T:
        with get_db_session(self._factory) as db:
            try:
                return work(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.warning("Store operation %s failed: %s", getattr(work, "__name__", work), exc)
                raise StoreUnavailable() from exc

    async def run(self, work: Callable[..., T], *args, **kwargs) -> T:
        return await anyio.to_thread.run_sync(partial(self.call, work, *args, **kwargs))

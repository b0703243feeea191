"""Application services shared by the REST routes and the websocket hub."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session, sessionmaker

from edify.realtime import RealtimeHub

from app.config import Settings
from app.services.membership import MembershipService
from app.services.messages import MessageService
from app.services.notifications import NotificationService
from app.services.presence import PresenceService
from app.services.store import Store


@dataclass(slots=True)
class RealtimeServices:
    hub: RealtimeHub
    store: Store
    membership: MembershipService
    messages: MessageService
    presence: PresenceService
    notifications: NotificationService

    def shutdown(self) -> None:
        self.hub.shutdown()


def build_services(settings: Settings, session_factory: sessionmaker[Session] | None = None) -> RealtimeServices:
    """Construct one isolated hub and the services bound to it."""

    hub = RealtimeHub(typing_ttl_seconds=settings.realtime_typing_ttl_seconds)
    store = Store(session_factory)
    return RealtimeServices(
        hub=hub,
        store=store,
        membership=MembershipService(hub, store),
        messages=MessageService(hub, store, settings),
        presence=PresenceService(hub, store),
        notifications=NotificationService(hub),
    )


__all__ = ["RealtimeServices", "build_services"]

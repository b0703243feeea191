"""Container wiring the in-memory realtime structures together."""

from __future__ import annotations

from .events import WireModel
from .groups import GroupManager
from .registry import ConnectionRegistry
from .signals import TypingTracker


class RealtimeHub:
    """Owns the registry, group map and typing tracker of one process.

    Construct one per application (or per test) and pass it around; there
    is no module level instance.
    """

    def __init__(self, *, typing_ttl_seconds: float) -> None:
        self.registry = ConnectionRegistry()
        self.groups = GroupManager()
        self.typing = TypingTracker(typing_ttl_seconds)

    async def send_to_user(self, user_id: int, event: WireModel) -> int:
        """Push *event* to every live connection of *user_id*."""

        return await self.groups.deliver(self.registry.connections_for(user_id), event, label="user")

    def shutdown(self) -> None:
        self.typing.close()

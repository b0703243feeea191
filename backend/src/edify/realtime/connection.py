"""Live connection handles."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from .events import WireModel

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass(eq=False)
class Connection:
    """One transport session of one user.

    Identity is by object, so a user with several tabs holds several
    distinct handles.
    """

    websocket: WebSocket
    user_id: int
    display_name: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    async def send(self, event: WireModel) -> bool:
        return await safe_send_json(self.websocket, event.to_payload())

    @property
    def is_open(self) -> bool:
        return self.websocket.application_state == WebSocketState.CONNECTED

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, user_id={self.user_id})"

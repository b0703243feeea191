"""WebSocket hub: chat commands, presence signals and notifications."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError
from sqlalchemy.orm import Session

from edify.realtime import Connection, safe_send_json
from edify.realtime.events import (
    ClientPing,
    ClientPong,
    Connected,
    DeleteMessage,
    Error,
    GetOnlineUsers,
    JoinRoom,
    LeaveRoom,
    Pong,
    SendMessage,
    StartTyping,
    StopTyping,
    UpdateMessage,
    WireModel,
    parse_client_command,
)

from app.api.deps import get_user_from_token
from app.config import get_settings
from app.monitoring.metrics import realtime_action_errors_total, realtime_events_total
from app.services import RealtimeServices
from app.services.access import Identity
from app.services.errors import RealtimeError

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break
            now = time.monotonic()
            idle_long_enough = interval <= 0 or now - last_activity >= interval
            ping_due = last_ping_sent is None or interval <= 0 or now - last_ping_sent >= interval
            if idle_long_enough and ping_due:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _identity_for_token(db: Session, token: str) -> Identity:
    return Identity.from_user(get_user_from_token(token, db))


async def _resolve_identity(websocket: WebSocket, services: RealtimeServices) -> Identity | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        return await services.store.run(_identity_for_token, token)
    except (HTTPException, RealtimeError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _send_error(connection: Connection, message: str) -> None:
    await connection.send(Error(message=message))


async def handle_command(services: RealtimeServices, connection: Connection, command: WireModel) -> None:
    """Execute one client command; domain failures propagate as RealtimeError."""

    if isinstance(command, JoinRoom):
        if not await services.membership.join_room(connection, command.room_id):
            await _send_error(connection, "You don't have access to this chat room")
    elif isinstance(command, LeaveRoom):
        await services.membership.leave_room(connection, command.room_id)
    elif isinstance(command, SendMessage):
        await services.messages.send(connection.user_id, command.room_id, command.content, command.reply_to_id)
    elif isinstance(command, UpdateMessage):
        await services.messages.edit(connection.user_id, command.message_id, command.content)
    elif isinstance(command, DeleteMessage):
        await services.messages.delete(connection.user_id, command.message_id)
    elif isinstance(command, StartTyping):
        await services.presence.start_typing(connection, command.room_id)
    elif isinstance(command, StopTyping):
        await services.presence.stop_typing(connection, command.room_id)
    elif isinstance(command, GetOnlineUsers):
        await connection.send(await services.presence.get_online_users(connection, command.room_id))
    elif isinstance(command, ClientPing):
        await connection.send(Pong())
    elif isinstance(command, ClientPong):
        pass


async def _dispatch(services: RealtimeServices, connection: Connection, raw_message: str) -> None:
    try:
        payload = json.loads(raw_message)
    except json.JSONDecodeError:
        await _send_error(connection, "Invalid message format")
        return
    if not isinstance(payload, dict):
        await _send_error(connection, "Message payload must be a JSON object")
        return

    try:
        command = parse_client_command(payload)
    except ValidationError:
        # Unparsed types never become label values.
        realtime_action_errors_total.labels("unknown", "invalid_command").inc()
        requested = payload.get("type", "unknown")
        await _send_error(connection, f"Unsupported or malformed command: {requested}")
        return

    action = command.type
    realtime_events_total.labels("hub", "in", action).inc()
    try:
        await handle_command(services, connection, command)
    except RealtimeError as exc:
        realtime_action_errors_total.labels(action, exc.kind).inc()
        logger.info("Command %s from user %s rejected: %s", action, connection.user_id, exc.message)
        await _send_error(connection, exc.message)
    except Exception:
        realtime_action_errors_total.labels(action, "internal").inc()
        logger.exception("Unexpected failure handling %s for user %s", action, connection.user_id)
        await _send_error(connection, "Internal server error")


@router.websocket("/hub")
async def websocket_hub(websocket: WebSocket) -> None:
    """One socket per browser tab; carries chat traffic and notifications."""

    services: RealtimeServices = websocket.app.state.services
    identity = await _resolve_identity(websocket, services)
    if identity is None:
        return

    await websocket.accept()
    connection = Connection(websocket=websocket, user_id=identity.user_id, display_name=identity.display_name)
    services.hub.registry.register(identity.user_id, connection)
    logger.info("User %s connected (%r)", identity.user_id, connection)

    try:
        rooms = await services.membership.auto_join_all_authorized_rooms(connection)
        await connection.send(Connected(connection_id=connection.id, user_id=identity.user_id, rooms=rooms))

        async for raw_message in iter_keepalive_messages(
            websocket,
            websocket.receive_text,
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            await _dispatch(services, connection, raw_message)
    finally:
        services.membership.on_disconnect(connection)
        went_offline = services.hub.registry.unregister(identity.user_id, connection)
        if went_offline:
            await services.presence.clear_user(identity.user_id)
        logger.info("User %s disconnected (%r)", identity.user_id, connection)

"""Typed realtime protocol: server-pushed events and client commands.

Every frame on the hub socket is a JSON object whose ``type`` field names the
variant. Field names travel in camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for protocol models serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Shared payload shapes
# ---------------------------------------------------------------------------


class MessageView(WireModel):
    """Fully denormalized chat message as seen by one particular user."""

    id: int
    chat_room_id: int
    content: str
    sender_id: int
    sender_name: str
    sender_initials: str
    is_teacher: bool = False
    created_at: datetime
    is_edited: bool = False
    is_deleted: bool = False
    reply_to_message_id: int | None = None
    reply_to_message: MessageView | None = None
    is_own_message: bool = False

    def for_viewer(self, user_id: int) -> "MessageView":
        """Return a copy with ownership flags computed for *user_id*."""

        reply = self.reply_to_message.for_viewer(user_id) if self.reply_to_message else None
        return self.model_copy(
            update={"is_own_message": self.sender_id == user_id, "reply_to_message": reply}
        )


class OnlineUser(WireModel):
    user_id: int
    display_name: str
    is_teacher: bool


# ---------------------------------------------------------------------------
# Server events
# ---------------------------------------------------------------------------


class Connected(WireModel):
    type: Literal["Connected"] = "Connected"
    connection_id: str
    user_id: int
    rooms: list[int] = Field(default_factory=list)


class ReceiveMessage(WireModel):
    type: Literal["ReceiveMessage"] = "ReceiveMessage"
    message: MessageView


class MessageUpdated(WireModel):
    type: Literal["MessageUpdated"] = "MessageUpdated"
    message: MessageView


class MessageDeleted(WireModel):
    type: Literal["MessageDeleted"] = "MessageDeleted"
    message_id: int
    room_id: int


class UserTyping(WireModel):
    type: Literal["UserTyping"] = "UserTyping"
    user_id: int
    user_name: str
    room_id: int


class UserStoppedTyping(WireModel):
    type: Literal["UserStoppedTyping"] = "UserStoppedTyping"
    user_id: int
    room_id: int


class OnlineUsers(WireModel):
    type: Literal["OnlineUsers"] = "OnlineUsers"
    room_id: int
    users: list[OnlineUser]


class UserJoined(WireModel):
    type: Literal["UserJoined"] = "UserJoined"
    user_id: int
    user_name: str
    room_id: int


class UserLeft(WireModel):
    type: Literal["UserLeft"] = "UserLeft"
    user_id: int
    user_name: str
    room_id: int


class Error(WireModel):
    type: Literal["Error"] = "Error"
    message: str


class MaterialPublished(WireModel):
    type: Literal["MaterialPublished"] = "MaterialPublished"
    course_id: int
    material_id: int
    title: str
    material_type: str
    uploaded_by: str
    uploaded_at: datetime


class TestPublished(WireModel):
    __test__ = False  # not a pytest test class

    type: Literal["TestPublished"] = "TestPublished"
    course_id: int
    test_id: int
    title: str
    due_date: datetime | None = None
    published_at: datetime


class TestGraded(WireModel):
    __test__ = False

    type: Literal["TestGraded"] = "TestGraded"
    test_id: int
    test_title: str
    attempt_id: int
    score: float | None = None
    max_score: float | None = None
    percentage: float | None = None
    passed: bool | None = None
    graded_at: datetime


class Ping(WireModel):
    type: Literal["ping"] = "ping"


class Pong(WireModel):
    type: Literal["pong"] = "pong"


ServerEvent = Annotated[
    Union[
        Connected,
        ReceiveMessage,
        MessageUpdated,
        MessageDeleted,
        UserTyping,
        UserStoppedTyping,
        OnlineUsers,
        UserJoined,
        UserLeft,
        Error,
        MaterialPublished,
        TestPublished,
        TestGraded,
        Ping,
        Pong,
    ],
    Field(discriminator="type"),
]

NOTIFICATION_EVENTS: tuple[type[WireModel], ...] = (MaterialPublished, TestPublished, TestGraded)


# ---------------------------------------------------------------------------
# Client commands
# ---------------------------------------------------------------------------


class JoinRoom(WireModel):
    type: Literal["JoinRoom"]
    room_id: int


class LeaveRoom(WireModel):
    type: Literal["LeaveRoom"]
    room_id: int


class SendMessage(WireModel):
    type: Literal["SendMessage"]
    room_id: int
    content: str
    reply_to_id: int | None = None


class UpdateMessage(WireModel):
    type: Literal["UpdateMessage"]
    message_id: int
    content: str


class DeleteMessage(WireModel):
    type: Literal["DeleteMessage"]
    message_id: int


class StartTyping(WireModel):
    type: Literal["StartTyping"]
    room_id: int


class StopTyping(WireModel):
    type: Literal["StopTyping"]
    room_id: int


class GetOnlineUsers(WireModel):
    type: Literal["GetOnlineUsers"]
    room_id: int


class ClientPing(WireModel):
    type: Literal["ping"]


class ClientPong(WireModel):
    type: Literal["pong"]


ClientCommand = Annotated[
    Union[
        JoinRoom,
        LeaveRoom,
        SendMessage,
        UpdateMessage,
        DeleteMessage,
        StartTyping,
        StopTyping,
        GetOnlineUsers,
        ClientPing,
        ClientPong,
    ],
    Field(discriminator="type"),
]

server_event_adapter: TypeAdapter[ServerEvent] = TypeAdapter(ServerEvent)
client_command_adapter: TypeAdapter[ClientCommand] = TypeAdapter(ClientCommand)


def parse_server_event(payload: dict[str, Any]) -> WireModel:
    return server_event_adapter.validate_python(payload)


def parse_client_command(payload: dict[str, Any]) -> WireModel:
    return client_command_adapter.validate_python(payload)

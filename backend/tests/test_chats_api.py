"""Integration tests exercising the chat REST endpoints via FastAPI's TestClient."""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import auth_headers

from app.models import Course


def post_message(client: TestClient, user_id: int, room_id: int, content: str, **extra) -> dict:
    response = client.post(
        "/api/chats/messages",
        json={"chatRoomId": room_id, "content": content, **extra},
        headers=auth_headers(user_id),
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health_and_root(client: TestClient) -> None:
    assert client.get("/health").json()["status"] == "ok"
    assert "Edify" in client.get("/api/").json()["message"]


def test_endpoints_require_a_valid_token(client: TestClient, campus) -> None:
    assert client.get("/api/chats/my-chats").status_code == 401
    response = client.get("/api/chats/my-chats", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_course_chat_is_returned_with_member_count(client: TestClient, campus) -> None:
    response = client.get(f"/api/chats/course/{campus.course_id}", headers=auth_headers(campus.student_id))

    assert response.status_code == 200, response.text
    room = response.json()
    assert room["id"] == campus.room_id
    assert room["name"] == "Algebra - Group Chat"
    assert room["courseName"] == "Algebra"
    assert room["memberCount"] == 2
    assert room["lastMessage"] is None


def test_course_chat_is_created_on_first_access(client: TestClient, campus, session_factory) -> None:
    with session_factory() as session:
        course = Course(title="Geometry", teacher_id=campus.teacher_id)
        session.add(course)
        session.commit()
        course_id = course.id

    first = client.get(f"/api/chats/course/{course_id}", headers=auth_headers(campus.teacher_id))
    second = client.get(f"/api/chats/course/{course_id}", headers=auth_headers(campus.teacher_id))

    assert first.status_code == 200, first.text
    assert first.json()["name"] == "Geometry - Group Chat"
    assert first.json()["memberCount"] == 1
    assert second.json()["id"] == first.json()["id"]


def test_course_chat_access_errors(client: TestClient, campus) -> None:
    pending = client.get(f"/api/chats/course/{campus.course_id}", headers=auth_headers(campus.pending_id))
    foreign = client.get(f"/api/chats/course/{campus.course_id}", headers=auth_headers(campus.outsider_id))
    missing = client.get("/api/chats/course/9999", headers=auth_headers(campus.student_id))

    assert pending.status_code == 403
    assert foreign.status_code == 403
    assert missing.status_code == 404
    assert client.get(f"/api/chats/{campus.room_id}", headers=auth_headers(campus.outsider_id)).status_code == 403


def test_my_chats_lists_authorized_rooms_with_latest_message(client: TestClient, campus) -> None:
    post_message(client, campus.teacher_id, campus.room_id, "Welcome!")

    response = client.get("/api/chats/my-chats", headers=auth_headers(campus.student_id))

    assert response.status_code == 200
    [room] = response.json()
    assert room["id"] == campus.room_id
    assert room["lastMessage"]["content"] == "Welcome!"
    assert room["lastMessage"]["isOwnMessage"] is False
    assert room["lastMessageAt"] is not None

    pending = client.get("/api/chats/my-chats", headers=auth_headers(campus.pending_id))
    assert pending.json() == []


def test_send_validation_and_access(client: TestClient, campus) -> None:
    blank = client.post(
        "/api/chats/messages",
        json={"chatRoomId": campus.room_id, "content": "   "},
        headers=auth_headers(campus.student_id),
    )
    denied = client.post(
        "/api/chats/messages",
        json={"chatRoomId": campus.room_id, "content": "hi"},
        headers=auth_headers(campus.outsider_id),
    )

    assert blank.status_code == 400
    assert blank.json()["detail"] == "Message content cannot be empty"
    assert denied.status_code == 403


def test_history_paging_edit_and_delete(client: TestClient, campus) -> None:
    first = post_message(client, campus.teacher_id, campus.room_id, "Hw due Monday")
    reply = post_message(
        client, campus.student_id, campus.room_id, "Which exercises?", replyToMessageId=first["id"]
    )
    assert first["isOwnMessage"] is True
    assert reply["replyToMessage"]["content"] == "Hw due Monday"

    page = client.get(
        f"/api/chats/{campus.room_id}/messages",
        params={"pageSize": 1},
        headers=auth_headers(campus.student_id),
    ).json()
    assert [message["id"] for message in page["messages"]] == [reply["id"]]
    assert page["hasMore"] is True

    older = client.get(
        f"/api/chats/{campus.room_id}/messages",
        params={"pageSize": 1, "beforeMessageId": reply["id"]},
        headers=auth_headers(campus.student_id),
    ).json()
    assert [message["id"] for message in older["messages"]] == [first["id"]]
    assert older["hasMore"] is False

    forbidden = client.put(
        f"/api/chats/messages/{first['id']}",
        json={"content": "hijacked"},
        headers=auth_headers(campus.student_id),
    )
    assert forbidden.status_code == 403

    edited = client.put(
        f"/api/chats/messages/{first['id']}",
        json={"content": "Hw due Tuesday"},
        headers=auth_headers(campus.teacher_id),
    )
    assert edited.status_code == 200
    assert edited.json()["isEdited"] is True

    deleted = client.delete(f"/api/chats/messages/{reply['id']}", headers=auth_headers(campus.teacher_id))
    assert deleted.status_code == 204
    again = client.delete(f"/api/chats/messages/{reply['id']}", headers=auth_headers(campus.teacher_id))
    assert again.status_code == 404

    history = client.get(
        f"/api/chats/{campus.room_id}/messages", headers=auth_headers(campus.teacher_id)
    ).json()["messages"]
    assert [message["isDeleted"] for message in history] == [False, True]
    assert history[0]["content"] == "Hw due Tuesday"


def test_rest_send_is_broadcast_to_hub_subscribers(client: TestClient, campus) -> None:
    token = auth_headers(campus.teacher_id)["Authorization"].removeprefix("Bearer ")
    with client.websocket_connect(f"/ws/hub?token={token}") as teacher_socket:
        assert teacher_socket.receive_json()["type"] == "Connected"

        post_message(client, campus.student_id, campus.room_id, "Posted over REST")

        event = teacher_socket.receive_json()
        assert event["type"] == "ReceiveMessage"
        assert event["message"]["content"] == "Posted over REST"
        assert event["message"]["isOwnMessage"] is False


def test_metrics_endpoint_exposes_counters(client: TestClient, campus) -> None:
    post_message(client, campus.teacher_id, campus.room_id, "count me")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'chat_messages_total{action="send"}' in response.text
    assert "realtime_active_connections" in response.text

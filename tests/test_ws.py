from __future__ import annotations

import json
import time

import pytest
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from cadence.core.security import create_access_token
from cadence.services import chat_service


def _token(user_id: str) -> str:
    return create_access_token(subject=user_id, role="USER")


def _receive_until(websocket, event: str, limit: int = 20) -> dict:
    for _ in range(limit):
        frame = websocket.receive_json()
        if frame["event"] == event:
            return frame
    raise AssertionError(f"No {event} frame received")


def _authenticate(websocket, user_id: str) -> dict:
    websocket.send_json({"event": "authenticate", "token": _token(user_id)})
    # Earlier arrivals may already be queued ahead of our own status broadcast.
    status = _receive_until(websocket, "userStatus")
    while status["data"]["userId"] != user_id:
        status = _receive_until(websocket, "userStatus")
    assert status["data"]["isOnline"] is True
    return _receive_until(websocket, "authenticated")


def _round_trip(websocket) -> None:
    websocket.send_json({"event": "ping"})
    _receive_until(websocket, "pong")


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_ws_authenticate_requires_token(client):
    with client.websocket_connect("/v1/ws") as websocket:
        websocket.send_json({"event": "authenticate"})
        frame = websocket.receive_json()
        assert frame == {"event": "authorization", "success": False, "message": "Token is required for authentication!"}

        with pytest.raises(WebSocketDisconnect) as closed:
            websocket.receive_json()
        assert closed.value.code == 1008


def test_ws_authenticate_rejects_invalid_token(client):
    with client.websocket_connect("/v1/ws") as websocket:
        websocket.send_json({"event": "authenticate", "token": "invalid-token"})
        frame = websocket.receive_json()
        assert frame["event"] == "authorization"
        assert frame["message"] == "Invalid token or user not found!"

        with pytest.raises(WebSocketDisconnect) as closed:
            websocket.receive_json()
        assert closed.value.code == 1008


def test_ws_authenticate_rejects_unknown_user(client):
    with client.websocket_connect("/v1/ws") as websocket:
        websocket.send_json({"event": "authenticate", "token": _token("missing-user")})
        frame = websocket.receive_json()
        assert frame["message"] == "Invalid token or user not found!"

        with pytest.raises(WebSocketDisconnect):
            websocket.receive_json()


def test_ws_authenticate_success(client, make_user):
    alice_id = make_user("alice@example.com", name="Alice")

    with client.websocket_connect("/v1/ws") as websocket:
        frame = _authenticate(websocket, alice_id)
        assert frame == {"event": "authenticated", "success": True, "userId": alice_id}


def test_ws_events_before_authentication_are_rejected(client):
    with client.websocket_connect("/v1/ws") as websocket:
        websocket.send_json({"event": "sendMessage", "receiverId": "someone", "message": "hi"})
        frame = websocket.receive_json()
        assert frame["event"] == "error"
        assert frame["code"] == "UNAUTHENTICATED"

        # Presence lookups are open to unauthenticated sockets.
        websocket.send_json({"event": "getOnlineStatus", "userIds": ["someone"]})
        frame = websocket.receive_json()
        assert frame == {"event": "onlineStatus", "data": [{"userId": "someone", "isOnline": False}]}


def test_ws_malformed_and_unknown_frames(client, make_user):
    alice_id = make_user("alice@example.com")

    with client.websocket_connect("/v1/ws") as websocket:
        _authenticate(websocket, alice_id)

        websocket.send_text("{not json")
        frame = websocket.receive_json()
        assert frame["event"] == "error"
        assert frame["code"] == "INVALID_PAYLOAD"

        websocket.send_json(["not", "an", "object"])
        assert websocket.receive_json()["code"] == "INVALID_PAYLOAD"

        websocket.send_json({"receiverId": "bob"})
        assert websocket.receive_json()["code"] == "INVALID_PAYLOAD"

        websocket.send_json({"event": "sendMessage", "receiverId": "bob", "message": ""})
        frame = websocket.receive_json()
        assert frame["code"] == "INVALID_PAYLOAD"
        assert frame["message"].startswith("message")

        websocket.send_json({"event": "doesNotExist", "anything": 1})
        # Unknown events produce no reply; the next frame answered is the pong.
        websocket.send_json({"event": "ping"})
        assert websocket.receive_json() == {"event": "pong"}


def test_ws_message_delivered_once_and_echoed(client, make_user):
    alice_id = make_user("alice@example.com", name="Alice")
    bob_id = make_user("bob@example.com", name="Bob")

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)
        # Alice sees Bob come online.
        status = _receive_until(alice, "userStatus")
        assert status["data"] == {"userId": bob_id, "isOnline": True, "timestamp": status["data"]["timestamp"]}

        alice.send_json({"event": "sendMessage", "receiverId": bob_id, "message": "hello bob", "images": ["a.png"]})

        echo = _receive_until(alice, "message")
        assert echo["data"]["senderId"] == alice_id
        assert echo["data"]["receiverId"] == bob_id
        assert echo["data"]["message"] == "hello bob"
        assert echo["data"]["images"] == ["a.png"]
        assert echo["data"]["isRead"] is False

        delivered = bob.receive_json()
        assert delivered["event"] == "message"
        assert delivered["data"]["id"] == echo["data"]["id"]
        assert delivered["data"]["roomId"] == echo["data"]["roomId"]

        # Anything queued after the message would arrive before the pong.
        bob.send_json({"event": "ping"})
        assert bob.receive_json() == {"event": "pong"}


def test_ws_fetch_chats_marks_messages_read(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")

    with client.websocket_connect("/v1/ws") as alice:
        _authenticate(alice, alice_id)
        for text in ("first", "second", "third"):
            alice.send_json({"event": "sendMessage", "receiverId": bob_id, "message": text})
            _receive_until(alice, "message")

    with client.websocket_connect("/v1/ws") as bob:
        _authenticate(bob, bob_id)

        bob.send_json({"event": "unReadMessages", "receiverId": alice_id})
        unread = _receive_until(bob, "unReadMessages")
        assert unread["data"]["count"] == 3

        bob.send_json({"event": "fetchChats", "receiverId": alice_id, "page": 1, "limit": 2})
        page = _receive_until(bob, "fetchChats")
        assert [chat["message"] for chat in page["data"]] == ["first", "second"]

        bob.send_json({"event": "unReadMessages", "receiverId": alice_id})
        unread = _receive_until(bob, "unReadMessages")
        assert unread["data"] == {"messages": [], "count": 0}

        bob.send_json({"event": "messageList"})
        rooms = _receive_until(bob, "messageList")
        assert len(rooms["data"]) == 1
        assert rooms["data"][0]["user"]["id"] == alice_id
        assert rooms["data"][0]["lastMessage"]["message"] == "third"


def test_ws_unread_messages_without_room(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")

    with client.websocket_connect("/v1/ws") as alice:
        _authenticate(alice, alice_id)
        alice.send_json({"event": "unReadMessages", "receiverId": bob_id})
        assert _receive_until(alice, "noUnreadMessages") == {"event": "noUnreadMessages", "data": []}

        alice.send_json({"event": "fetchChats", "receiverId": bob_id})
        assert _receive_until(alice, "fetchChats")["data"] == []


def test_ws_presence_across_devices(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")

    with client.websocket_connect("/v1/ws") as observer:
        _authenticate(observer, bob_id)

        with client.websocket_connect("/v1/ws") as phone:
            _authenticate(phone, alice_id)
            with client.websocket_connect("/v1/ws") as laptop:
                _authenticate(laptop, alice_id)

            # One device remains, so Alice stays online.
            observer.send_json({"event": "getOnlineStatus", "userIds": [alice_id, "nobody"]})
            statuses = _receive_until(observer, "onlineStatus")
            assert statuses["data"] == [
                {"userId": alice_id, "isOnline": True},
                {"userId": "nobody", "isOnline": False},
            ]

            observer.send_json({"event": "onlineUsers"})
            online = _receive_until(observer, "onlineUsers")
            assert {user["id"] for user in online["data"]} == {alice_id, bob_id}

        offline = _receive_until(observer, "userStatus")
        while offline["data"]["isOnline"]:
            offline = _receive_until(observer, "userStatus")
        assert offline["data"]["userId"] == alice_id

        observer.send_json({"event": "getOnlineStatus", "userIds": [alice_id]})
        statuses = _receive_until(observer, "onlineStatus")
        assert statuses["data"] == [{"userId": alice_id, "isOnline": False}]


def test_ws_typing_forwarded_to_receiver(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")
    gateway = client.app.state.gateway

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)

        alice.send_json({"event": "typing", "receiverId": bob_id, "roomId": "room-1", "isTyping": True})
        typing = _receive_until(bob, "typingStatus")
        assert typing["data"] == {"userId": alice_id, "roomId": "room-1", "isTyping": True}
        assert gateway.typing.is_typing(alice_id, "room-1")

        alice.send_json({"event": "typing", "receiverId": bob_id, "roomId": "room-1", "isTyping": False})
        typing = _receive_until(bob, "typingStatus")
        assert typing["data"]["isTyping"] is False
        assert not gateway.typing.is_typing(alice_id, "room-1")


def test_ws_heartbeat_terminates_silent_connections(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")
    gateway = client.app.state.gateway

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)
        _receive_until(alice, "userStatus")
        # Both clients speak the ping event, so the app-level heartbeat covers them.
        _round_trip(alice)
        _round_trip(bob)

        assert client.portal.call(gateway.heartbeat_sweep) == 0
        assert _receive_until(alice, "ping") == {"event": "ping"}
        assert _receive_until(bob, "ping") == {"event": "ping"}

        alice.send_json({"event": "pong"})
        _round_trip(alice)

        assert client.portal.call(gateway.heartbeat_sweep) == 1

        with pytest.raises(WebSocketDisconnect) as closed:
            while True:
                bob.receive_json()
        assert closed.value.code == 1001

        offline = _receive_until(alice, "userStatus")
        assert offline["data"] == {"userId": bob_id, "isOnline": False, "timestamp": offline["data"]["timestamp"]}


def test_ws_message_to_offline_user_enqueues_notification(client, make_user):
    alice_id = make_user("alice@example.com", name="Alice")
    bob_id = make_user("bob@example.com", name="Bob")
    queue = client.app.state.job_queues.get("notification")

    with client.websocket_connect("/v1/ws") as alice:
        _authenticate(alice, alice_id)
        alice.send_json({"event": "sendMessage", "receiverId": bob_id, "message": "are you there?"})
        echo = _receive_until(alice, "message")

    assert _wait_for(lambda: client.portal.call(queue.get_counts)["waiting"] == 1)
    job = client.portal.call(queue.get_job, "1")
    assert job is not None
    assert job.name == "send-notification"
    assert job.data["userId"] == bob_id
    assert job.data["senderId"] == alice_id
    assert job.data["title"] == "New message"
    assert job.data["body"] == "Alice sent you a message"
    assert job.data["data"] == {"type": "message", "roomId": echo["data"]["roomId"], "messageId": echo["data"]["id"]}


def test_ws_message_to_online_user_enqueues_nothing(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")
    queue = client.app.state.job_queues.get("notification")

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)
        alice.send_json({"event": "sendMessage", "receiverId": bob_id, "message": "hi"})
        _receive_until(bob, "message")
        _round_trip(alice)

    client.portal.call(client.app.state.event_bus.drain)
    assert client.portal.call(queue.get_counts)["waiting"] == 0


def test_ws_heartbeat_spares_clients_that_never_ping(client, make_user):
    carol_id = make_user("carol@example.com")
    gateway = client.app.state.gateway

    with client.websocket_connect("/v1/ws") as websocket:
        _authenticate(websocket, carol_id)

        assert client.portal.call(gateway.heartbeat_sweep) == 0
        assert client.portal.call(gateway.heartbeat_sweep) == 0

        # No ping frames were queued, and the connection is still served.
        websocket.send_json({"event": "getOnlineStatus", "userIds": [carol_id]})
        assert websocket.receive_json() == {"event": "onlineStatus", "data": [{"userId": carol_id, "isOnline": True}]}


def test_ws_binary_frames_are_decoded_or_rejected(client, make_user):
    alice_id = make_user("alice@example.com")

    with client.websocket_connect("/v1/ws") as websocket:
        websocket.send_bytes(json.dumps({"event": "ping"}).encode("utf-8"))
        assert websocket.receive_json() == {"event": "pong"}

        websocket.send_bytes(b"\xff\xfe\x00")
        frame = websocket.receive_json()
        assert frame["event"] == "error"
        assert frame["code"] == "INVALID_PAYLOAD"

        token = json.dumps({"event": "authenticate", "token": _token(alice_id)}).encode("utf-8")
        websocket.send_bytes(token)
        assert _receive_until(websocket, "authenticated")["userId"] == alice_id


def test_ws_reauthentication_settles_the_previous_user(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")
    carol_id = make_user("carol@example.com")
    gateway = client.app.state.gateway

    with client.websocket_connect("/v1/ws") as observer, client.websocket_connect("/v1/ws") as shared:
        _authenticate(observer, carol_id)
        _authenticate(shared, alice_id)
        shared.send_json({"event": "typing", "receiverId": carol_id, "roomId": "room-1", "isTyping": True})
        _receive_until(observer, "typingStatus")

        _authenticate(shared, bob_id)
        assert not gateway.typing.is_typing(alice_id, "room-1")

        offline = _receive_until(observer, "userStatus")
        assert (offline["data"]["userId"], offline["data"]["isOnline"]) == (alice_id, False)
        online = _receive_until(observer, "userStatus")
        assert (online["data"]["userId"], online["data"]["isOnline"]) == (bob_id, True)

        observer.send_json({"event": "getOnlineStatus", "userIds": [alice_id, bob_id]})
        statuses = _receive_until(observer, "onlineStatus")
        assert statuses["data"] == [
            {"userId": alice_id, "isOnline": False},
            {"userId": bob_id, "isOnline": True},
        ]


def test_ws_persistence_failure_reports_error_and_delivers_nothing(client, make_user, monkeypatch):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")

    def locked(db, **kwargs):
        raise OperationalError("INSERT INTO chats", {}, Exception("database is locked"))

    monkeypatch.setattr(chat_service, "send_message", locked)

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)

        alice.send_json({"event": "sendMessage", "receiverId": bob_id, "message": "hello"})
        error = _receive_until(alice, "error")
        assert error == {"event": "error", "code": "PERSISTENCE_ERROR", "message": "Message could not be saved"}

        # Nothing was delivered: the next frame Bob sees is his own pong.
        bob.send_json({"event": "ping"})
        assert bob.receive_json() == {"event": "pong"}


def test_ws_typing_sweep_expires_stale_entries(client, make_user):
    alice_id = make_user("alice@example.com")
    bob_id = make_user("bob@example.com")
    gateway = client.app.state.gateway

    with client.websocket_connect("/v1/ws") as alice, client.websocket_connect("/v1/ws") as bob:
        _authenticate(alice, alice_id)
        _authenticate(bob, bob_id)

        alice.send_json({"event": "typing", "receiverId": bob_id, "roomId": "room-1", "isTyping": True})
        assert _receive_until(bob, "typingStatus")["data"]["isTyping"] is True

        assert client.portal.call(gateway.typing_sweep) == 0
        assert client.portal.call(gateway.typing_sweep, time.monotonic() + 10) == 1
        assert not gateway.typing.is_typing(alice_id, "room-1")

        stopped = _receive_until(bob, "typingStatus")
        assert stopped["data"] == {"userId": alice_id, "roomId": "room-1", "isTyping": False}

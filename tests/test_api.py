"""
HTTP and WebSocket API tests
接口测试 - 房间、回合、补拉、维护与推送通道
"""

import pytest
from starlette.websockets import WebSocketDisconnect

from app.websocket.connection_manager import connection_manager

from tests.conftest import CANVAS

API = "/api/v1"


def create_room(client, host_id="alice", nickname="Alice", judge_model="offline"):
    response = client.post(f"{API}/rooms", json={"hostId": host_id, "nickname": nickname, "judgeModel": judge_model})
    assert response.status_code == 201
    return response.json()["roomId"]


def join(client, room_id, player_id, nickname):
    return client.post(f"{API}/rooms/{room_id}/join", json={"playerId": player_id, "nickname": nickname})


class TestHealth:

    def test_health(self, client):
        response = client.get(f"{API}/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_status(self, client):
        create_room(client)
        body = client.get(f"{API}/status").json()

        assert body["store"]["rooms"] == 1
        assert body["store"]["players"] == 1
        assert body["judges"]["offline"] is True
        assert body["liveness_monitor"]["threshold"] == 30


class TestRooms:
    """房间接口"""

    def test_create_and_get(self, client):
        room_id = create_room(client)

        body = client.get(f"{API}/rooms/{room_id}").json()
        assert body["room"]["status"] == "waiting"
        assert body["room"]["judge_model"] == "offline"
        assert [p["id"] for p in body["players"]] == ["alice"]

    def test_unknown_judge_model_is_rejected(self, client):
        response = client.post(f"{API}/rooms", json={"hostId": "alice", "nickname": "Alice", "judgeModel": "oracle"})
        assert response.status_code == 422

    def test_missing_room(self, client):
        response = client.get(f"{API}/rooms/000000")
        assert response.status_code == 404
        assert response.json()["detail"]["reason"] == "not_found"

    def test_join(self, client):
        room_id = create_room(client)

        response = join(client, room_id, "bob", "Bob")

        assert response.status_code == 200
        assert response.json()["isHost"] is False
        assert [p["nickname"] for p in response.json()["players"]] == ["Alice", "Bob"]

    def test_join_rejections(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")

        taken = join(client, room_id, "carol", "Bob")
        assert taken.status_code == 409
        assert taken.json()["detail"]["reason"] == "nickname_taken"

        missing = join(client, "000000", "carol", "Carol")
        assert missing.status_code == 404
        assert missing.json()["detail"]["reason"] == "not_found"

        client.post(f"{API}/games/start", json={"roomId": room_id, "hostId": "alice"})
        late = join(client, room_id, "carol", "Carol")
        assert late.status_code == 409
        assert late.json()["detail"]["reason"] == "not_waiting"

    def test_host_leave_transfers_host(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")

        response = client.post(f"{API}/rooms/{room_id}/leave", json={"playerId": "alice"})

        assert response.json() == {"isHost": True, "roomDeleted": False}
        room = client.get(f"{API}/rooms/{room_id}").json()
        assert room["room"]["host_id"] == "bob"
        assert [p["is_host"] for p in room["players"]] == [True]

    def test_last_leave_deletes_room(self, client):
        room_id = create_room(client)

        response = client.post(f"{API}/rooms/{room_id}/leave", json={"playerId": "alice"})

        assert response.json() == {"isHost": True, "roomDeleted": True}
        assert client.get(f"{API}/rooms/{room_id}").status_code == 404


class TestGameFlow:
    """开始、提交、评分与补拉"""

    def test_only_host_can_start(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")

        response = client.post(f"{API}/games/start", json={"roomId": room_id, "hostId": "bob"})

        assert response.status_code == 403
        assert response.json()["detail"]["reason"] == "not_host"

    def test_full_round(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")

        started = client.post(f"{API}/games/start", json={"roomId": room_id, "hostId": "alice"}).json()
        assert started["roundNumber"] == 1
        assert started["keyword"]

        first = client.post(f"{API}/games/submit", json={"playerId": "alice", "roomId": room_id, "canvasData": CANVAS})
        assert first.json() == {"allSubmitted": False}

        again = client.post(f"{API}/games/submit", json={"playerId": "alice", "roomId": room_id, "canvasData": CANVAS})
        assert again.status_code == 409
        assert again.json()["detail"]["reason"] == "already_submitted"

        last = client.post(f"{API}/games/submit", json={"playerId": "bob", "roomId": room_id, "canvasData": CANVAS})
        body = last.json()
        assert body["allSubmitted"] is True
        assert sorted(body["scores"].values()) == [95, 100]
        assert body["winner"] in ("alice", "bob")
        assert len(body["evaluation"]["rankings"]) == 2

        results = client.get(f"{API}/rooms/{room_id}/results").json()
        assert results["room"]["status"] == "finished"
        assert results["scores"] == body["scores"]
        assert results["evaluation"] == body["evaluation"]

        drawings = client.get(f"{API}/rooms/{room_id}/drawings", params={"round": 1}).json()
        assert len(drawings) == 2
        assert "canvas_data" not in drawings[0]
        with_canvas = client.get(f"{API}/rooms/{room_id}/drawings", params={"includeCanvas": "true"}).json()
        assert with_canvas[0]["canvas_data"] == CANVAS

        nxt = client.post(f"{API}/games/next-round", json={"roomId": room_id, "hostId": "alice"}).json()
        assert nxt["roundNumber"] == 2

    def test_submit_when_not_playing(self, client):
        room_id = create_room(client)

        response = client.post(f"{API}/games/submit", json={"playerId": "alice", "roomId": room_id, "canvasData": ""})

        assert response.status_code == 409
        assert response.json()["detail"]["reason"] == "not_playing"

    def test_catch_up_returns_events_oldest_first(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")
        client.post(f"{API}/games/start", json={"roomId": room_id, "hostId": "alice"})

        full = client.get(f"{API}/rooms/{room_id}/events").json()
        types = [e["event_type"] for e in full["events"]]
        assert types == ["room_created", "player_joined", "game_started"]
        ids = [e["id"] for e in full["events"]]
        assert ids == sorted(ids)
        assert full["lastEventId"] == ids[-1]

        partial = client.get(f"{API}/rooms/{room_id}/events", params={"after": ids[0]}).json()
        assert [e["id"] for e in partial["events"]] == ids[1:]

        empty = client.get(f"{API}/rooms/{room_id}/events", params={"after": ids[-1]}).json()
        assert empty["events"] == []
        assert empty["lastEventId"] == ids[-1]
        assert empty["room"]["status"] == "playing"

    def test_heartbeat(self, client):
        room_id = create_room(client)

        response = client.post(f"{API}/players/heartbeat", json={"roomId": room_id, "playerId": "alice"})
        assert response.json() == {"success": True, "isHost": True}

        stranger = client.post(f"{API}/players/heartbeat", json={"roomId": room_id, "playerId": "mallory"})
        assert stranger.status_code == 404
        assert stranger.json()["detail"]["reason"] == "player_not_found"

    def test_debug(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")
        client.post(f"{API}/games/start", json={"roomId": room_id, "hostId": "alice"})
        client.post(f"{API}/games/submit", json={"playerId": "bob", "roomId": room_id, "canvasData": CANVAS})

        body = client.get(f"{API}/rooms/{room_id}/debug").json()

        assert body["hostCount"] == 1
        assert body["timerRunning"] is True
        assert body["drawings"][0]["canvasLength"] == len(CANVAS)
        assert len(body["events"]) == 4


class TestMaintenance:

    def test_manual_sweep(self, client, api_manager):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")
        api_manager.clock.advance(20)
        client.post(f"{API}/players/heartbeat", json={"roomId": room_id, "playerId": "bob"})
        api_manager.clock.advance(15)

        body = client.post(f"{API}/maintenance/inactive-players").json()

        assert body["evicted"] == ["alice"]
        assert body["before"]["hosts"] == 1
        assert body["after"] == {"rooms": 1, "players": 1, "hosts": 1}
        room = client.get(f"{API}/rooms/{room_id}").json()
        assert room["room"]["host_id"] == "bob"


class TestWebSocket:
    """推送通道"""

    def test_rejects_non_member(self, client):
        room_id = create_room(client)

        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"{API}/ws/{room_id}?player_id=mallory") as ws:
                ws.receive_json()
        assert exc.value.code == 4004

    def test_catch_up_heartbeat_and_push(self, client):
        room_id = create_room(client)

        with client.websocket_connect(f"{API}/ws/{room_id}?player_id=alice") as ws:
            frame = ws.receive_json()
            assert frame["type"] == "catch_up"
            assert [e["event_type"] for e in frame["data"]["events"]] == ["room_created"]
            last_event_id = frame["data"]["lastEventId"]

            ws.send_json({"type": "heartbeat"})
            ack = ws.receive_json()
            assert ack["type"] == "heartbeat_ack"
            assert ack["data"] == {"success": True, "isHost": True}

            join(client, room_id, "bob", "Bob")
            pushed = ws.receive_json()
            assert pushed["type"] == "event"
            assert pushed["data"]["event_type"] == "player_joined"
            assert pushed["data"]["id"] > last_event_id

            ws.send_json({"type": "catch_up", "last_event_id": last_event_id})
            again = ws.receive_json()
            assert [e["id"] for e in again["data"]["events"]] == [pushed["data"]["id"]]

    def test_reconnect_keeps_new_connection(self, client):
        """刷新页面：新连接建立后旧连接退出，新连接仍能收到推送"""
        room_id = create_room(client)
        url = f"{API}/ws/{room_id}?player_id=alice"

        first_session = client.websocket_connect(url)
        first = first_session.__enter__()
        first.receive_json()

        with client.websocket_connect(url) as second:
            second.receive_json()
            # 等待旧连接的处理协程完全退出
            first_session.__exit__(None, None, None)

            assert connection_manager.is_user_connected("alice")
            assert connection_manager.get_room_users(room_id) == ["alice"]

            join(client, room_id, "bob", "Bob")
            pushed = second.receive_json()
            assert pushed["type"] == "event"
            assert pushed["data"]["event_type"] == "player_joined"

        assert not connection_manager.is_user_connected("alice")

    def test_resume_from_last_event_id(self, client):
        room_id = create_room(client)
        join(client, room_id, "bob", "Bob")
        events = client.get(f"{API}/rooms/{room_id}/events").json()["events"]

        with client.websocket_connect(f"{API}/ws/{room_id}?player_id=bob&last_event_id={events[0]['id']}") as ws:
            frame = ws.receive_json()

        assert [e["event_type"] for e in frame["data"]["events"]] == ["player_joined"]

    def test_bad_messages(self, client):
        room_id = create_room(client)

        with client.websocket_connect(f"{API}/ws/{room_id}?player_id=alice") as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert ws.receive_json()["data"]["message"] == "Invalid JSON format"
            ws.send_json({"type": "dance"})
            assert "Unknown message type" in ws.receive_json()["data"]["message"]

from __future__ import annotations

from fastapi.testclient import TestClient

from wordrooms.store.memory import MemoryRoomStore


def test_ws_room_updates_broadcast(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = client.post("/rooms/create", json={"playerId": "alice", "nickname": "Alice"}).json()["roomCode"]

    with client.websocket_connect(f"/ws/rooms/{code.lower()}") as ws:
        # Trigger a state change (ghost guess heartbeat)
        res = client.post(f"/rooms/{code}", json={"playerId": "alice", "currentGuess": "CR"})
        assert res.status_code == 200

        msg = ws.receive_json()
        assert msg == {"type": "room_updated", "roomCode": code}

        res = client.post("/rooms/join", json={"roomCode": code, "playerId": "bob", "nickname": "Bob"})
        assert res.status_code == 200
        assert ws.receive_json()["roomCode"] == code

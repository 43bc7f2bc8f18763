from __future__ import annotations

from fastapi.testclient import TestClient

from wordrooms.api.deps import get_settings, get_store
from wordrooms.api.models import GameState, PlayerUpdate, Room
from wordrooms.config import Settings
from wordrooms.evaluator import apply_guess
from wordrooms.main import app
from wordrooms.store.memory import MemoryRoomStore


def _board(*guesses: str, target: str) -> dict:
    state = GameState.fresh()
    for g in guesses:
        state = apply_guess(state, g, target)
    return state.model_dump(mode="json", by_alias=True)


def _create(client: TestClient, player_id: str = "alice", nickname: str = "Alice") -> dict:
    res = client.post("/rooms/create", json={"playerId": player_id, "nickname": nickname})
    assert res.status_code == 200, res.text
    return res.json()


def _join(client: TestClient, code: str, player_id: str, nickname: str | None = None) -> dict:
    res = client.post("/rooms/join", json={"roomCode": code, "playerId": player_id, "nickname": nickname or player_id})
    assert res.status_code == 200, res.text
    return res.json()


def test_create_room(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, store = client_and_store

    data = _create(client)

    assert set(data) == {"roomCode", "targetWord"}
    assert len(data["roomCode"]) == 6
    assert len(data["targetWord"]) == 5
    assert store.get_room(data["roomCode"]) is not None


def test_create_room_missing_fields_is_400(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, store = client_and_store

    for body in ({"playerId": "alice"}, {"nickname": "Alice"}, {"playerId": " ", "nickname": "Alice"}):
        res = client.post("/rooms/create", json=body)
        assert res.status_code == 400, body
        assert res.json()["detail"]["reason"] == "validation_error"
    assert store.list_room_codes() == []


class _CountingFullStore(MemoryRoomStore):
    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def create_room(self, room: Room) -> bool:
        self.attempts += 1
        return False


def test_create_room_uses_configured_code_attempts(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    full = _CountingFullStore()
    app.dependency_overrides[get_store] = lambda: full
    app.dependency_overrides[get_settings] = lambda: Settings(max_code_attempts=3)

    res = client.post("/rooms/create", json={"playerId": "alice", "nickname": "Alice"})

    assert res.status_code == 500
    assert res.json()["detail"]["reason"] == "code_generation_exhausted"
    assert full.attempts == 3


def test_join_room_returns_snapshot(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    created = _create(client)

    data = _join(client, created["roomCode"].lower(), "bob", "Bob")

    assert data["success"] is True
    assert data["targetWord"] == created["targetWord"]
    assert data["gameState"] == {"guesses": [], "gameStatus": "playing", "letterStates": {}}
    assert [p["id"] for p in data["players"]] == ["alice", "bob"]
    assert data["readyPlayers"] == []
    assert data["roundNo"] == 1


def test_join_unknown_room_is_404(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store

    res = client.post("/rooms/join", json={"roomCode": "NOPE00", "playerId": "bob", "nickname": "Bob"})

    assert res.status_code == 404
    assert res.json()["detail"]["reason"] == "room_not_found"


def test_join_missing_fields_is_400(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    res = client.post("/rooms/join", json={"roomCode": "ABC123"})
    assert res.status_code == 400


def test_get_room_state(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]
    _join(client, code, "bob", "Bob")
    client.post(f"/rooms/{code}", json={"playerId": "bob", "currentGuess": "sl"})

    res = client.get(f"/rooms/{code}")

    assert res.status_code == 200
    data = res.json()
    assert set(data) >= {"gameState", "players", "readyPlayers", "targetWord"}
    bob = data["players"][1]
    assert bob == {
        "id": "bob",
        "nickname": "Bob",
        "guesses": 0,
        "wordsGuessed": 0,
        "status": "playing",
        "currentGuess": "SL",
    }


def test_get_unknown_room_is_404(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    res = client.get("/rooms/NOPE00")
    assert res.status_code == 404
    assert res.json()["detail"]["reason"] == "room_not_found"


def test_heartbeat_twice_leaves_scores_unchanged(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]

    first = client.post(f"/rooms/{code}", json={"playerId": "alice", "currentGuess": "CR"}).json()
    second = client.post(f"/rooms/{code}", json={"playerId": "alice", "currentGuess": "CR"}).json()

    assert first["players"] == second["players"]
    assert "targetWord" not in second
    assert second["allPlayersReady"] is False


def test_words_guessed_increments_once(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    created = _create(client)
    code, target = created["roomCode"], created["targetWord"]
    _join(client, code, "bob")

    won = _board(target, target=target)
    for _ in range(3):
        res = client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": won, "roundNo": 1})
        assert res.status_code == 200

    alice = res.json()["players"][0]
    assert alice["status"] == "won"
    assert alice["guesses"] == 1
    assert alice["wordsGuessed"] == 1
    assert res.json()["gameState"]["guesses"][0]["states"] == ["correct"] * 5


def test_replayed_board_does_not_leak_into_next_round(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    created = _create(client)
    code, target = created["roomCode"], created["targetWord"]
    won = _board(target, target=target)

    client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": won})
    fired = client.post(f"/rooms/{code}", json={"playerId": "alice", "readyForNewGame": True}).json()
    assert fired["allPlayersReady"] is True

    late = client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": won}).json()

    assert late["gameState"]["gameStatus"] == "playing"
    assert late["players"][0]["status"] == "playing"
    assert late["players"][0]["wordsGuessed"] == 1
    assert client.get(f"/rooms/{code}").json()["targetWord"] == fired["targetWord"]


def test_three_player_round_barrier(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    created = _create(client)
    code, target = created["roomCode"], created["targetWord"]
    _join(client, code, "bob")
    _join(client, code, "carol")

    wrong = "GHOST" if target != "GHOST" else "BRICK"
    lost = _board(*[wrong] * 6, target=target)
    assert lost["gameStatus"] == "lost"
    client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": lost})

    for pid in ("alice", "bob"):
        res = client.post(f"/rooms/{code}", json={"playerId": pid, "readyForNewGame": True}).json()
        assert res["allPlayersReady"] is False
        assert "targetWord" not in res

    res = client.post(f"/rooms/{code}", json={"playerId": "carol", "readyForNewGame": True}).json()
    assert res["allPlayersReady"] is True
    assert res["targetWord"] != target
    assert res["roundNo"] == 2

    # Everyone sees the new word on their next poll.
    assert client.get(f"/rooms/{code}").json()["targetWord"] == res["targetWord"]


def test_ready_toggle_off_blocks_barrier(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    created = _create(client)
    code, target = created["roomCode"], created["targetWord"]
    _join(client, code, "bob")
    _join(client, code, "carol")
    wrong = "GHOST" if target != "GHOST" else "BRICK"
    client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": _board(*[wrong] * 6, target=target)})

    client.post(f"/rooms/{code}", json={"playerId": "alice", "readyForNewGame": True})
    client.post(f"/rooms/{code}", json={"playerId": "bob", "readyForNewGame": True})
    client.post(f"/rooms/{code}", json={"playerId": "bob", "readyForNewGame": False})
    res = client.post(f"/rooms/{code}", json={"playerId": "carol", "readyForNewGame": True}).json()

    assert res["allPlayersReady"] is False
    assert res["readyPlayers"] == ["alice", "carol"]

    res = client.post(f"/rooms/{code}", json={"playerId": "bob", "readyForNewGame": True}).json()
    assert res["allPlayersReady"] is True
    assert res["targetWord"] != target
    assert res["roundNo"] == 2
    assert res["readyPlayers"] == []
    assert res["gameState"]["gameStatus"] == "playing"
    assert {p["id"]: p["wordsGuessed"] for p in res["players"]} == {"alice": 1, "bob": 0, "carol": 0}


def test_update_unknown_player_is_404(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]

    res = client.post(f"/rooms/{code}", json={"playerId": "mallory", "currentGuess": "A"})

    assert res.status_code == 404
    assert res.json()["detail"]["reason"] == "player_not_found"


def test_update_validation(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]

    assert client.post(f"/rooms/{code}", json={}).status_code == 400
    assert client.post(f"/rooms/{code}", json={"playerId": "alice", "currentGuess": "TOOLONG"}).status_code == 400
    assert client.post(f"/rooms/{code}", json={"playerId": "alice", "gameState": {"gameStatus": "nope"}}).status_code == 400


def test_leaving(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]
    _join(client, code, "bob")

    res = client.post(f"/rooms/{code}", json={"playerId": "bob", "leaving": True})
    assert res.status_code == 200
    assert [p["id"] for p in res.json()["players"]] == ["alice"]

    res = client.post(f"/rooms/{code}", json={"playerId": "alice", "leaving": True})
    assert res.status_code == 200
    assert res.json()["players"] == []
    assert client.get(f"/rooms/{code}").status_code == 404


def test_idle_player_evicted_then_room_gone(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, store = client_and_store
    code = _create(client)["roomCode"]
    _join(client, code, "bob")

    # Backdate bob's last heartbeat well past the on-demand threshold.
    store.update_player(code, "bob", PlayerUpdate(), now_ms=1_000)
    data = client.get(f"/rooms/{code}").json()
    assert [p["id"] for p in data["players"]] == ["alice"]

    store.update_player(code, "alice", PlayerUpdate(), now_ms=1_000)
    assert client.get(f"/rooms/{code}").status_code == 404
    assert client.post("/rooms/join", json={"roomCode": code, "playerId": "bob", "nickname": "Bob"}).status_code == 404


def test_list_rooms(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    code = _create(client)["roomCode"]
    _join(client, code, "bob", "Bob")

    data = client.get("/rooms").json()

    assert data["total"] == 1
    assert data["rooms"][0]["code"] == code
    assert data["rooms"][0]["playerCount"] == 2
    assert data["rooms"][0]["nicknames"] == ["Alice", "Bob"]


def test_healthcheck_and_info(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store
    assert client.get("/healthcheck").json() == {"status": "ok"}
    assert client.get("/info").json()["name"] == "wordrooms"

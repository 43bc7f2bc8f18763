from __future__ import annotations

from fastapi.testclient import TestClient

from wordrooms.store.memory import MemoryRoomStore


def test_random_word_comes_from_word_list(client_and_store: tuple[TestClient, MemoryRoomStore], words) -> None:
    client, _ = client_and_store

    for _ in range(5):
        word = client.get("/words/random").json()["word"]
        assert word in words


def test_evaluate_route(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store

    res = client.post("/words/evaluate", json={"guess": "erase", "target": "speed"})

    assert res.status_code == 200
    assert res.json() == {
        "guess": "ERASE",
        "states": ["present", "absent", "absent", "present", "present"],
        "solved": False,
    }

    res = client.post("/words/evaluate", json={"guess": "CRANE", "target": "CRANE"})
    assert res.json()["solved"] is True


def test_evaluate_rejects_unknown_or_malformed_guess(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store

    res = client.post("/words/evaluate", json={"guess": "QUEUE", "target": "CRANE"})
    assert res.status_code == 400
    assert res.json()["detail"]["reason"] == "invalid_guess"

    res = client.post("/words/evaluate", json={"guess": "CRAN", "target": "CRANE"})
    assert res.status_code == 400

    assert client.post("/words/evaluate", json={"guess": "CRANE"}).status_code == 400


def test_word_validity(client_and_store: tuple[TestClient, MemoryRoomStore]) -> None:
    client, _ = client_and_store

    assert client.get("/words/slate/valid").json() == {"word": "SLATE", "valid": True}
    assert client.get("/words/QUEUE/valid").json() == {"word": "QUEUE", "valid": False}

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi.testclient import TestClient

from wordrooms.api.models import GameStatus, Player, Room
from wordrooms.assets.registry import WordList
from wordrooms.store.base import RoomStore
from wordrooms.store.memory import MemoryRoomStore
from wordrooms.store.redis_store import RedisRoomStore
from wordrooms.store.sql import SqlRoomStore

# The app reads its settings at import; keep tests on an in-process store with no snapshot file.
os.environ["WORDROOMS_STORE"] = "memory"
os.environ["WORDROOMS_SNAPSHOT_PATH"] = ""


@pytest.fixture(scope="session", autouse=True)
def _init_words_from_test_fixtures() -> None:
    """Initialize the word list from `tests/assets` so tests never depend on the real list."""

    from wordrooms.assets.singleton import init_words, reset_words_for_tests

    reset_words_for_tests()

    # Point the loader at a fake project root: tests/ contains an assets/ dir.
    test_root = Path(__file__).resolve().parent
    init_words(project_root=test_root)


@pytest.fixture()
def words() -> WordList:
    from wordrooms.assets.singleton import get_words

    return get_words()


@pytest.fixture(params=["memory", "sql", "redis"])
def store(request: pytest.FixtureRequest) -> Generator[RoomStore, None, None]:
    """Every backend behind the same contract."""

    if request.param == "memory":
        s: RoomStore = MemoryRoomStore()
    elif request.param == "sql":
        s = SqlRoomStore(url="sqlite://")
    else:
        s = RedisRoomStore(r=fakeredis.FakeRedis(decode_responses=True))
    yield s
    s.close()


@pytest.fixture(params=["memory", "sql", "redis"])
def threaded_store(request: pytest.FixtureRequest, tmp_path: Path) -> Generator[RoomStore, None, None]:
    """Every backend, shareable between threads (SQL on a file, one connection per thread)."""

    if request.param == "memory":
        s: RoomStore = MemoryRoomStore()
    elif request.param == "sql":
        s = SqlRoomStore(url=f"sqlite:///{tmp_path / 'rooms.db'}")
    else:
        s = RedisRoomStore(r=fakeredis.FakeRedis(decode_responses=True))
    yield s
    s.close()


@pytest.fixture()
def memory_store() -> MemoryRoomStore:
    return MemoryRoomStore()


@pytest.fixture()
def client_and_store() -> Generator[tuple[TestClient, MemoryRoomStore], None, None]:
    from wordrooms.api.deps import get_store
    from wordrooms.main import app

    s = MemoryRoomStore()

    app.dependency_overrides[get_store] = lambda: s
    with TestClient(app) as c:
        yield c, s
    app.dependency_overrides.clear()


def make_player(pid: str, *, nickname: str | None = None, last_active_ms: int = 1_000, **kw) -> Player:
    return Player(id=pid, nickname=nickname or pid.title(), last_active_ms=last_active_ms, **kw)


def make_room(
    code: str = "ABC123",
    *,
    player_ids: tuple[str, ...] = ("alice",),
    target_word: str = "CRANE",
    created_at_ms: int = 1_000,
    status: GameStatus = GameStatus.playing,
) -> Room:
    room = Room(
        code=code,
        host_id=player_ids[0] if player_ids else "host",
        target_word=target_word,
        created_at_ms=created_at_ms,
        players=[make_player(pid, last_active_ms=created_at_ms + i) for i, pid in enumerate(player_ids)],
    )
    room.game_state.game_status = status
    return room

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import TypeVar

import redis
from redis.client import Pipeline

from wordrooms.api.models import GameState, GameStatus, Player, PlayerUpdate, Room, RoomUpdate
from wordrooms.errors import StoreFailure
from wordrooms.store.base import RoomStore


logger = logging.getLogger(__name__)

T = TypeVar("T")

ROOMS_SET_KEY = "wordrooms:rooms"
ROOM_KEY_PREFIX = "wordrooms:room:"  # + {code}


def _room_key(code: str) -> str:
    return f"{ROOM_KEY_PREFIX}{code}"


def _players_key(code: str) -> str:
    # Sorted set: member = player id, score = join time in ms.
    return f"{ROOM_KEY_PREFIX}{code}:players"


def _player_key(code: str, player_id: str) -> str:
    return f"{ROOM_KEY_PREFIX}{code}:player:{player_id}"


def _ready_key(code: str) -> str:
    return f"{ROOM_KEY_PREFIX}{code}:ready"


def _player_fields(p: Player) -> dict[str, str | int]:
    return {
        "nickname": p.nickname,
        "guesses": p.guesses,
        "words_guessed": p.words_guessed,
        "status": p.status.value,
        "last_active_ms": p.last_active_ms,
        "current_guess": p.current_guess,
    }


def _player_from_hash(player_id: str, h: dict[str, str]) -> Player:
    return Player(
        id=player_id,
        nickname=h.get("nickname", ""),
        guesses=int(h.get("guesses", 0)),
        words_guessed=int(h.get("words_guessed", 0)),
        status=GameStatus(h.get("status", GameStatus.playing.value)),
        last_active_ms=int(h.get("last_active_ms", 0)),
        current_guess=h.get("current_guess", ""),
    )


def _dump_state(gs: GameState) -> str:
    return gs.model_dump_json(by_alias=True)


class RedisRoomStore(RoomStore):
    """Redis backend: one hash per room and per player, plus a ready set.

    Every operation runs as an optimistic WATCH/MULTI transaction over the keys
    it reads, so concurrent writers from several processes retry instead of
    overwriting each other.
    """

    def __init__(self, *, r: redis.Redis) -> None:
        self._r = r

    def _tx(self, fn: Callable[[Pipeline], T], *watches: str) -> T:
        try:
            return self._r.transaction(fn, *watches, value_from_callable=True)
        except redis.RedisError as e:
            logger.exception("Redis room store operation failed")
            raise StoreFailure("Room store operation failed") from e

    def close(self) -> None:
        try:
            self._r.close()
        except redis.RedisError:
            logger.warning("Failed to close redis connection", exc_info=True)

    def create_room(self, room: Room) -> bool:
        code = room.code

        def fn(pipe: Pipeline) -> bool:
            if pipe.exists(_room_key(code)):
                return False
            pipe.multi()
            pipe.hset(
                _room_key(code),
                mapping={
                    "host_id": room.host_id,
                    "target_word": room.target_word,
                    "game_state": _dump_state(room.game_state),
                    "game_status": room.game_state.game_status.value,
                    "round_no": room.round_no,
                    "created_at_ms": room.created_at_ms,
                },
            )
            pipe.sadd(ROOMS_SET_KEY, code)
            for p in room.players:
                pipe.zadd(_players_key(code), {p.id: p.last_active_ms})
                pipe.hset(_player_key(code, p.id), mapping=_player_fields(p))
            ready = room.ready_players & room.player_ids
            if ready:
                pipe.sadd(_ready_key(code), *sorted(ready))
            return True

        return self._tx(fn, _room_key(code))

    def get_room(self, code: str) -> Room | None:
        def fn(pipe: Pipeline) -> Room | None:
            h = pipe.hgetall(_room_key(code))
            if not h:
                return None
            ids = pipe.zrange(_players_key(code), 0, -1)
            if ids:
                # Player hashes join the watch set so the snapshot is all-or-retry.
                pipe.watch(*(_player_key(code, pid) for pid in ids))
            players = []
            for pid in ids:
                ph = pipe.hgetall(_player_key(code, pid))
                if ph:
                    players.append(_player_from_hash(pid, ph))
            ready = set(pipe.smembers(_ready_key(code)))
            return Room(
                code=code,
                host_id=h["host_id"],
                target_word=h["target_word"],
                game_state=GameState.model_validate_json(h["game_state"]),
                ready_players=ready,
                created_at_ms=int(h["created_at_ms"]),
                round_no=int(h["round_no"]),
                players=players,
            )

        return self._tx(fn, _room_key(code), _players_key(code), _ready_key(code))

    def update_room(self, code: str, changes: RoomUpdate) -> bool:
        fields = changes.model_fields_set

        def fn(pipe: Pipeline) -> bool:
            status = pipe.hget(_room_key(code), "game_status")
            if status is None:
                return False
            current_ids = set(pipe.zrange(_players_key(code), 0, -1))

            pipe.multi()
            if "target_word" in fields and changes.target_word is not None:
                pipe.hset(_room_key(code), "target_word", changes.target_word.upper())
            if "ready_players" in fields and changes.ready_players is not None:
                wanted = set(changes.ready_players) & current_ids
                pipe.delete(_ready_key(code))
                if wanted:
                    pipe.sadd(_ready_key(code), *sorted(wanted))
            if "game_state" in fields and changes.game_state is not None and status == GameStatus.playing.value:
                gs = changes.game_state
                pipe.hset(
                    _room_key(code),
                    mapping={"game_state": _dump_state(gs), "game_status": gs.game_status.value},
                )
                if gs.game_status == GameStatus.playing:
                    pipe.delete(_ready_key(code))
            return True

        return self._tx(fn, _room_key(code), _players_key(code), _ready_key(code))

    def add_or_touch_player(self, code: str, player: Player) -> bool:
        pkey = _player_key(code, player.id)

        def fn(pipe: Pipeline) -> bool:
            if not pipe.exists(_room_key(code)):
                return False
            known = pipe.exists(pkey)
            pipe.multi()
            if known:
                pipe.hset(pkey, mapping={"nickname": player.nickname, "last_active_ms": player.last_active_ms})
            else:
                pipe.hset(pkey, mapping=_player_fields(player))
                pipe.zadd(_players_key(code), {player.id: player.last_active_ms})
            return True

        return self._tx(fn, _room_key(code), pkey)

    def update_player(self, code: str, player_id: str, changes: PlayerUpdate, *, now_ms: int) -> bool:
        fields = changes.model_fields_set
        pkey = _player_key(code, player_id)

        def fn(pipe: Pipeline) -> bool:
            status = pipe.hget(pkey, "status")
            if status is None:
                return False
            values: dict[str, str | int] = {"last_active_ms": now_ms}
            if "guesses" in fields and changes.guesses is not None:
                values["guesses"] = changes.guesses
            if "current_guess" in fields and changes.current_guess is not None:
                values["current_guess"] = changes.current_guess
            completes = (
                "status" in fields
                and changes.status is not None
                and changes.status.is_terminal
                and status == GameStatus.playing.value
            )
            if completes:
                values["status"] = changes.status.value  # type: ignore[union-attr]

            pipe.multi()
            pipe.hset(pkey, mapping=values)
            if completes:
                pipe.hincrby(pkey, "words_guessed", 1)
            return True

        return self._tx(fn, pkey)

    def remove_player(self, code: str, player_id: str) -> bool:
        def fn(pipe: Pipeline) -> bool:
            if not pipe.exists(_room_key(code)):
                return False
            pipe.multi()
            pipe.delete(_player_key(code, player_id))
            pipe.zrem(_players_key(code), player_id)
            pipe.srem(_ready_key(code), player_id)
            return True

        return self._tx(fn, _room_key(code))

    def list_active_players(self, code: str) -> list[Player]:
        def fn(pipe: Pipeline) -> list[Player]:
            out = []
            for pid in pipe.zrange(_players_key(code), 0, -1):
                ph = pipe.hgetall(_player_key(code, pid))
                if ph:
                    out.append(_player_from_hash(pid, ph))
            return out

        return self._tx(fn, _players_key(code))

    def set_ready(self, code: str, player_id: str, ready: bool) -> bool:
        def fn(pipe: Pipeline) -> bool:
            if pipe.zscore(_players_key(code), player_id) is None:
                return False
            pipe.multi()
            if ready:
                pipe.sadd(_ready_key(code), player_id)
            else:
                pipe.srem(_ready_key(code), player_id)
            return True

        return self._tx(fn, _players_key(code))

    def advance_round(self, code: str, *, expected_round: int, target_word: str) -> bool:
        def fn(pipe: Pipeline) -> bool:
            h = pipe.hmget(_room_key(code), ["game_status", "round_no"])
            status, round_no = h[0], h[1]
            if status is None or round_no is None:
                return False
            if int(round_no) != expected_round or not GameStatus(status).is_terminal:
                return False
            ids = pipe.zrange(_players_key(code), 0, -1)
            ready = set(pipe.smembers(_ready_key(code)))
            if not ids or not set(ids) <= ready:
                return False

            pipe.multi()
            pipe.hset(
                _room_key(code),
                mapping={
                    "target_word": target_word.upper(),
                    "game_state": _dump_state(GameState.fresh()),
                    "game_status": GameStatus.playing.value,
                    "round_no": expected_round + 1,
                },
            )
            for pid in ids:
                pipe.hset(
                    _player_key(code, pid),
                    mapping={"guesses": 0, "status": GameStatus.playing.value, "current_guess": ""},
                )
            pipe.delete(_ready_key(code))
            return True

        return self._tx(fn, _room_key(code), _players_key(code), _ready_key(code))

    def remove_inactive_players(self, code: str, *, cutoff_ms: int) -> list[str]:
        def fn(pipe: Pipeline) -> list[str]:
            ids = pipe.zrange(_players_key(code), 0, -1)
            if ids:
                pipe.watch(*(_player_key(code, pid) for pid in ids))
            stale = []
            for pid in ids:
                seen = pipe.hget(_player_key(code, pid), "last_active_ms")
                if seen is None or int(seen) < cutoff_ms:
                    stale.append(pid)
            if not stale:
                return []
            pipe.multi()
            pipe.zrem(_players_key(code), *stale)
            pipe.srem(_ready_key(code), *stale)
            pipe.delete(*(_player_key(code, pid) for pid in stale))
            return stale

        return self._tx(fn, _players_key(code))

    def delete_room(self, code: str) -> bool:
        def fn(pipe: Pipeline) -> bool:
            existed = bool(pipe.exists(_room_key(code)))
            ids = pipe.zrange(_players_key(code), 0, -1)
            pipe.multi()
            pipe.delete(_room_key(code), _players_key(code), _ready_key(code))
            if ids:
                pipe.delete(*(_player_key(code, pid) for pid in ids))
            pipe.srem(ROOMS_SET_KEY, code)
            return existed

        return self._tx(fn, _room_key(code), _players_key(code))

    def delete_room_if_empty(self, code: str) -> bool:
        def fn(pipe: Pipeline) -> bool:
            if not pipe.exists(_room_key(code)) or pipe.zcard(_players_key(code)) > 0:
                return False
            pipe.multi()
            pipe.delete(_room_key(code), _players_key(code), _ready_key(code))
            pipe.srem(ROOMS_SET_KEY, code)
            return True

        return self._tx(fn, _room_key(code), _players_key(code))

    def list_room_codes(self) -> list[str]:
        try:
            return sorted(self._r.smembers(ROOMS_SET_KEY))
        except redis.RedisError as e:
            logger.exception("Failed to list rooms")
            raise StoreFailure("Failed to list rooms") from e

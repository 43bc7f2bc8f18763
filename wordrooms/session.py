from __future__ import annotations

import logging
import random
import string
from dataclasses import dataclass

from wordrooms.api.models import (
    ROOM_CODE_LENGTH,
    Player,
    PlayerUpdate,
    Room,
    RoomSummary,
    RoomUpdate,
    RoomUpdateRequest,
)
from wordrooms.assets.registry import WordList
from wordrooms.barrier import run_barrier
from wordrooms.errors import GenerationExhausted, InvalidRequest, PlayerNotFound, RoomNotFound
from wordrooms.evaluator import MAX_GUESSES, board_matches
from wordrooms.presence import PresencePolicy, sweep_room
from wordrooms.store.base import RoomStore, normalize_code


logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True, slots=True)
class UpdateOutcome:
    room: Room
    # True when this request started a new round; `target_word` is then the new word.
    all_players_ready: bool = False
    target_word: str | None = None


def _require_text(value: str | None, field: str) -> str:
    v = (value or "").strip()
    if not v:
        raise InvalidRequest(f"{field} is required")
    return v


def generate_room_code(rng: random.Random) -> str:
    return "".join(rng.choice(CODE_ALPHABET) for _ in range(ROOM_CODE_LENGTH))


def create_room(
    *,
    store: RoomStore,
    words: WordList,
    player_id: str,
    nickname: str,
    now_ms: int,
    rng: random.Random | None = None,
    max_attempts: int = 10,
) -> Room:
    player_id = _require_text(player_id, "playerId")
    nickname = _require_text(nickname, "nickname")
    rng = rng or random.SystemRandom()

    host = Player(id=player_id, nickname=nickname, last_active_ms=now_ms)
    target = words.pick(rng)
    for _ in range(max_attempts):
        room = Room(
            code=generate_room_code(rng),
            host_id=player_id,
            target_word=target,
            created_at_ms=now_ms,
            players=[host],
        )
        if store.create_room(room):
            logger.info("Room %s created by %s", room.code, player_id)
            return room

    logger.error("Could not find a free room code after %d attempts", max_attempts)
    raise GenerationExhausted(f"No free room code after {max_attempts} attempts")


def join_room(*, store: RoomStore, room_code: str, player_id: str, nickname: str, now_ms: int) -> Room:
    code = normalize_code(_require_text(room_code, "roomCode"))
    player_id = _require_text(player_id, "playerId")
    nickname = _require_text(nickname, "nickname")

    room = store.get_room(code)
    # An empty room is waiting to be swept; joining it would race the delete.
    if room is None or not room.players:
        raise RoomNotFound(code)

    if not store.add_or_touch_player(code, Player(id=player_id, nickname=nickname, last_active_ms=now_ms)):
        raise RoomNotFound(code)
    if room.player(player_id) is None:
        logger.info("Player %s joined room %s", player_id, code)

    snapshot = store.get_room(code)
    if snapshot is None:
        raise RoomNotFound(code)
    return snapshot


def get_room_state(*, store: RoomStore, room_code: str, policy: PresencePolicy, now_ms: int) -> Room:
    code = normalize_code(room_code)
    if store.get_room(code) is None:
        raise RoomNotFound(code)

    sweep_room(store, code, idle_ms=policy.on_demand_idle_ms, now_ms=now_ms)

    room = store.get_room(code)
    if room is None:
        raise RoomNotFound(code)
    if not room.players:
        if store.delete_room_if_empty(code):
            logger.info("Deleted room %s: no players left", code)
        raise RoomNotFound(code)
    return room


def _leave(*, store: RoomStore, code: str, player_id: str) -> UpdateOutcome:
    if not store.remove_player(code, player_id):
        raise RoomNotFound(code)
    logger.info("Player %s left room %s", player_id, code)

    room = store.get_room(code)
    if room is None:
        raise RoomNotFound(code)
    if not room.players and store.delete_room_if_empty(code):
        logger.info("Deleted room %s: last player left", code)
    return UpdateOutcome(room=room)


def update_room_state(
    *,
    store: RoomStore,
    words: WordList,
    room_code: str,
    request: RoomUpdateRequest,
    now_ms: int,
    rng: random.Random | None = None,
) -> UpdateOutcome:
    """Heartbeat, ghost guess, finished guess, ready toggle or leave.

    Applied in a fixed order: leave (short-circuits) -> player fields -> room
    game state -> ready flag -> round barrier -> snapshot. Every step is its own
    store operation; a failure part-way leaves a valid state the client's next
    poll re-applies.
    """

    code = normalize_code(room_code)
    player_id = _require_text(request.player_id, "playerId")

    room = store.get_room(code)
    if room is None:
        raise RoomNotFound(code)

    if request.leaving:
        return _leave(store=store, code=code, player_id=player_id)

    if room.player(player_id) is None:
        raise PlayerNotFound(player_id)

    game_state = request.game_state
    if game_state is not None and request.round_no is not None and request.round_no != room.round_no:
        logger.debug(
            "Ignoring game state from %s for round %d (room %s is on round %d)",
            player_id,
            request.round_no,
            code,
            room.round_no,
        )
        game_state = None
    if game_state is not None and len(game_state.guesses) > MAX_GUESSES:
        raise InvalidRequest(f"At most {MAX_GUESSES} guesses per round")
    # Late or duplicate polls may carry a board from before the last reset.
    if game_state is not None and not board_matches(game_state, room.target_word):
        logger.debug("Ignoring game state from %s: board does not match room %s's word", player_id, code)
        game_state = None

    fields: dict[str, object] = {}
    if request.current_guess is not None:
        fields["current_guess"] = request.current_guess.strip().upper()
    if game_state is not None:
        fields["guesses"] = len(game_state.guesses)
        fields["status"] = game_state.game_status
        if game_state.guesses:
            fields["current_guess"] = ""
    if not store.update_player(code, player_id, PlayerUpdate(**fields), now_ms=now_ms):
        raise PlayerNotFound(player_id)

    if game_state is not None:
        store.update_room(code, RoomUpdate(game_state=game_state))

    if request.ready_for_new_game is not None:
        if not store.set_ready(code, player_id, request.ready_for_new_game):
            raise PlayerNotFound(player_id)

    outcome = run_barrier(store=store, words=words, code=code, rng=rng)
    if outcome.room is None:
        raise RoomNotFound(code)
    return UpdateOutcome(room=outcome.room, all_players_ready=outcome.fired, target_word=outcome.target_word)


def list_rooms(*, store: RoomStore) -> list[RoomSummary]:
    out: list[RoomSummary] = []
    for code in store.list_room_codes():
        room = store.get_room(code)
        if room is None:
            continue
        out.append(
            RoomSummary(
                code=room.code,
                player_count=len(room.players),
                nicknames=[p.nickname for p in room.players],
                created_at_ms=room.created_at_ms,
                game_status=room.game_state.game_status,
                round_no=room.round_no,
            )
        )
    out.sort(key=lambda s: s.created_at_ms, reverse=True)
    return out

from __future__ import annotations

from abc import ABC, abstractmethod

from wordrooms.api.models import GameState, GameStatus, Player, PlayerUpdate, Room, RoomUpdate


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class RoomStore(ABC):
    """Authoritative storage for Room + Player aggregates.

    Contract shared by every backend:
      - each method is atomic with respect to every other call on the store;
      - `bool` results mean "applied / the room existed", never an error;
      - backend faults raise `StoreFailure`;
      - codes are passed already normalized (see `normalize_code`).

    Field rules enforced inside the atomic step (identical everywhere):
      - a player moving `playing -> won|lost` gets `words_guessed += 1`; other
        moves into a terminal status are ignored and a terminal status never
        returns to `playing` outside `advance_round`;
      - the room's `game_state` is only replaced while its round is `playing`;
        accepting a `playing` game state also clears `ready_players`;
      - ready marks only exist for current players.
    """

    @abstractmethod
    def create_room(self, room: Room) -> bool:
        """Insert `room` with its seed players. False if the code is taken."""

    @abstractmethod
    def get_room(self, code: str) -> Room | None:
        """One consistent snapshot of room, players and ready set."""

    @abstractmethod
    def update_room(self, code: str, changes: RoomUpdate) -> bool:
        """Write only the fields set on `changes`."""

    @abstractmethod
    def add_or_touch_player(self, code: str, player: Player) -> bool:
        """Insert `player`, or refresh nickname and `last_active_ms` if present."""

    @abstractmethod
    def update_player(self, code: str, player_id: str, changes: PlayerUpdate, *, now_ms: int) -> bool:
        """Partial player write; always refreshes `last_active_ms`."""

    @abstractmethod
    def remove_player(self, code: str, player_id: str) -> bool:
        """Idempotent removal (ready mark included). False only if the room is absent."""

    @abstractmethod
    def list_active_players(self, code: str) -> list[Player]:
        """Current players in join order; empty if the room is absent."""

    @abstractmethod
    def set_ready(self, code: str, player_id: str, ready: bool) -> bool:
        """Add or drop one ready mark. False unless `player_id` is a current player."""

    @abstractmethod
    def advance_round(self, code: str, *, expected_round: int, target_word: str) -> bool:
        """Start the next round if the barrier still holds for round `expected_round`.

        Re-checks inside the atomic step that the round number is unchanged, the
        round is over, and every current player is ready. On success the room gets
        `target_word`, a fresh game state, `round_no + 1` and an empty ready set,
        and every player's guesses/status/current guess reset (`words_guessed`
        kept). Two callers racing on the same round: at most one gets True.
        """

    @abstractmethod
    def remove_inactive_players(self, code: str, *, cutoff_ms: int) -> list[str]:
        """Evict players whose `last_active_ms` is older than `cutoff_ms`."""

    @abstractmethod
    def delete_room(self, code: str) -> bool:
        """Unconditional delete."""

    @abstractmethod
    def delete_room_if_empty(self, code: str) -> bool:
        """Delete only if the room has no players, decided atomically."""

    @abstractmethod
    def list_room_codes(self) -> list[str]:
        """Every stored room code."""

    def flush(self) -> None:
        """Persist pending state. No-op for backends that write through."""

    def close(self) -> None:
        """Release backend resources."""


# Helpers shared by backends that hold whole Room objects in hand.


def apply_player_update(player: Player, changes: PlayerUpdate, *, now_ms: int) -> None:
    fields = changes.model_fields_set

    if "guesses" in fields and changes.guesses is not None:
        player.guesses = changes.guesses
    if "current_guess" in fields and changes.current_guess is not None:
        player.current_guess = changes.current_guess
    if "status" in fields and changes.status is not None:
        if player.status == GameStatus.playing and changes.status.is_terminal:
            player.status = changes.status
            player.words_guessed += 1

    player.last_active_ms = now_ms


def apply_room_update(room: Room, changes: RoomUpdate) -> None:
    fields = changes.model_fields_set

    if "target_word" in fields and changes.target_word is not None:
        room.target_word = changes.target_word.upper()
    if "ready_players" in fields and changes.ready_players is not None:
        room.ready_players = set(changes.ready_players) & room.player_ids
    if "game_state" in fields and changes.game_state is not None:
        if room.game_state.game_status == GameStatus.playing:
            room.game_state = changes.game_state.model_copy(deep=True)
            if changes.game_state.game_status == GameStatus.playing:
                room.ready_players = set()


def barrier_holds(room: Room) -> bool:
    """At least one player, round over, and every current player ready."""

    return (
        bool(room.players)
        and room.game_state.game_status.is_terminal
        and room.player_ids <= room.ready_players
    )


def reset_round(room: Room, *, target_word: str) -> None:
    room.target_word = target_word.upper()
    room.game_state = GameState.fresh()
    room.ready_players = set()
    room.round_no += 1
    for p in room.players:
        p.guesses = 0
        p.status = GameStatus.playing
        p.current_guess = ""

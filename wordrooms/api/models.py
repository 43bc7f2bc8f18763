from __future__ import annotations

import time
from enum import StrEnum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator
from pydantic.alias_generators import to_camel


WORD_LENGTH = 5
ROOM_CODE_LENGTH = 6


def now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """camelCase on the wire and in snapshots, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LetterVerdict(StrEnum):
    correct = "correct"
    present = "present"
    absent = "absent"


class GameStatus(StrEnum):
    playing = "playing"
    won = "won"
    lost = "lost"

    @property
    def is_terminal(self) -> bool:
        return self is not GameStatus.playing


class GuessRecord(WireModel):
    word: str
    states: list[LetterVerdict]

    @field_validator("word")
    @classmethod
    def _upper_word(cls, v: str) -> str:
        return v.strip().upper()


class GameState(WireModel):
    guesses: list[GuessRecord] = Field(default_factory=list)
    game_status: GameStatus = GameStatus.playing
    letter_states: dict[str, LetterVerdict] = Field(default_factory=dict)

    @classmethod
    def fresh(cls) -> "GameState":
        return cls()


class Player(WireModel):
    id: str
    nickname: str
    guesses: int = 0
    # Completed rounds in this room; survives round resets.
    words_guessed: int = 0
    status: GameStatus = GameStatus.playing
    last_active_ms: int = Field(default_factory=now_ms)
    # Unsubmitted text shown to the other players ("ghost" guess).
    current_guess: str = ""


class Room(WireModel):
    code: str
    host_id: str
    target_word: str
    game_state: GameState = Field(default_factory=GameState)
    ready_players: set[str] = Field(default_factory=set)
    created_at_ms: int = Field(default_factory=now_ms)
    round_no: int = 1
    players: list[Player] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def _ready_subset_of_players(self) -> "Room":
        # Stored ready marks for players that are gone are dropped on load.
        self.ready_players &= self.player_ids
        return self

    @field_serializer("ready_players")
    def _ser_ready_players(self, v: set[str]) -> list[str]:
        return sorted(v)

    @property
    def player_ids(self) -> set[str]:
        return {p.id for p in self.players}

    def player(self, player_id: str) -> Player | None:
        return next((p for p in self.players if p.id == player_id), None)


class RoomUpdate(BaseModel):
    """Partial room write; only explicitly set fields are applied."""

    target_word: str | None = None
    game_state: GameState | None = None
    ready_players: set[str] | None = None


class PlayerUpdate(BaseModel):
    """Partial player write; `words_guessed` is derived by the store, never set."""

    guesses: int | None = None
    status: GameStatus | None = None
    current_guess: str | None = None


# --- wire views ---


class PlayerView(WireModel):
    id: str
    nickname: str
    guesses: int
    words_guessed: int
    status: GameStatus
    current_guess: str = ""

    @classmethod
    def from_player(cls, p: Player) -> "PlayerView":
        return cls(
            id=p.id,
            nickname=p.nickname,
            guesses=p.guesses,
            words_guessed=p.words_guessed,
            status=p.status,
            current_guess=p.current_guess,
        )


class RoomStateResponse(WireModel):
    game_state: GameState
    target_word: str
    players: list[PlayerView]
    ready_players: list[str]
    round_no: int

    @classmethod
    def from_room(cls, room: Room) -> "RoomStateResponse":
        return cls(
            game_state=room.game_state,
            target_word=room.target_word,
            players=[PlayerView.from_player(p) for p in room.players],
            ready_players=sorted(room.ready_players),
            round_no=room.round_no,
        )


class JoinRoomResponse(RoomStateResponse):
    success: bool = True


class RoomUpdateResponse(WireModel):
    success: bool = True
    game_state: GameState
    players: list[PlayerView]
    ready_players: list[str]
    all_players_ready: bool = False
    round_no: int
    # Only present when this request started a new round.
    target_word: str | None = None


class CreateRoomResponse(WireModel):
    room_code: str
    target_word: str


class RoomSummary(WireModel):
    code: str
    player_count: int
    nicknames: list[str]
    created_at_ms: int
    game_status: GameStatus
    round_no: int


class RoomListResponse(WireModel):
    rooms: list[RoomSummary]
    total: int


# --- requests ---


def _strip_required(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


NonBlank = Annotated[str, AfterValidator(_strip_required)]


class CreateRoomRequest(WireModel):
    player_id: NonBlank = Field(..., min_length=1, max_length=128)
    nickname: NonBlank = Field(..., min_length=1, max_length=32)


class JoinRoomRequest(WireModel):
    room_code: NonBlank = Field(..., min_length=1, max_length=16)
    player_id: NonBlank = Field(..., min_length=1, max_length=128)
    nickname: NonBlank = Field(..., min_length=1, max_length=32)


class RoomUpdateRequest(WireModel):
    player_id: NonBlank = Field(..., min_length=1, max_length=128)
    current_guess: str | None = Field(None, max_length=WORD_LENGTH)
    game_state: GameState | None = None
    ready_for_new_game: bool | None = None
    leaving: bool = False
    # Round the client believes it is playing; a mismatch marks its game state as stale.
    round_no: int | None = None


class EvaluateRequest(WireModel):
    guess: str
    target: str


class EvaluateResponse(WireModel):
    guess: str
    states: list[LetterVerdict]
    solved: bool


class RandomWordResponse(WireModel):
    word: str


class WordValidityResponse(WireModel):
    word: str
    valid: bool

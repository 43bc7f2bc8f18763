from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from enum import StrEnum

from statemachine import State, StateMachine

from wordrooms.api.models import Room
from wordrooms.assets.registry import WordList
from wordrooms.store.base import RoomStore, barrier_holds


logger = logging.getLogger(__name__)


class RoundPhase(StrEnum):
    playing = "playing"
    round_over = "round_over"
    all_ready = "all_ready"


def phase_of(room: Room) -> RoundPhase:
    if not room.game_state.game_status.is_terminal:
        return RoundPhase.playing
    if barrier_holds(room):
        return RoundPhase.all_ready
    return RoundPhase.round_over


def barrier_ready(room: Room) -> bool:
    """At least one player, round over, and every current player ready."""

    return phase_of(room) == RoundPhase.all_ready


class RoundFSM(StateMachine):
    """Per-room round lifecycle, rebuilt from a snapshot on every evaluation.

    playing -> round_over -> all_ready -> playing. Players move the room
    through the first edges by writing to the store. The barrier sends
    `new_round` and then commits it through `RoomStore.advance_round`.
    """

    playing = State(RoundPhase.playing.value, value=RoundPhase.playing.value, initial=True)
    round_over = State(RoundPhase.round_over.value, value=RoundPhase.round_over.value)
    all_ready = State(RoundPhase.all_ready.value, value=RoundPhase.all_ready.value)

    # Player-driven edges; these follow store writes rather than being sent here.
    round_finished = playing.to(round_over)
    everyone_ready = round_over.to(all_ready)
    readiness_lost = all_ready.to(round_over)

    new_round = all_ready.to(playing)

    def __init__(self, room: Room):
        self.room = room
        super().__init__(start_value=phase_of(room).value)

    @property
    def phase(self) -> RoundPhase:
        return RoundPhase(str(self.current_state.value))


@dataclass(frozen=True, slots=True)
class BarrierOutcome:
    fired: bool
    room: Room | None
    # Set only when this evaluation started the new round.
    target_word: str | None = None


def run_barrier(
    *,
    store: RoomStore,
    words: WordList,
    code: str,
    rng: random.Random | None = None,
) -> BarrierOutcome:
    """Start the next round if every current player is ready.

    The decision is made on a fresh snapshot and committed with a
    compare-and-set on `round_no`, so of two concurrent evaluations of the same
    finished round at most one fires.
    """

    room = store.get_room(code)
    if room is None:
        return BarrierOutcome(fired=False, room=None)

    fsm = RoundFSM(room)
    if fsm.current_state != fsm.all_ready:
        return BarrierOutcome(fired=False, room=room)

    fsm.new_round()
    target = words.pick(rng, exclude=room.target_word)
    if not store.advance_round(code, expected_round=room.round_no, target_word=target):
        # Lost the race, or someone un-readied / joined in between.
        return BarrierOutcome(fired=False, room=store.get_room(code))

    logger.info("Room %s advanced to round %d", code, room.round_no + 1)
    return BarrierOutcome(fired=True, room=store.get_room(code), target_word=target)

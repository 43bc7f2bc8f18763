from __future__ import annotations

from collections.abc import Mapping, Sequence

from wordrooms.api.models import WORD_LENGTH, GameState, GameStatus, GuessRecord, LetterVerdict
from wordrooms.errors import InvalidGuess


MAX_GUESSES = 6

_RANK: dict[LetterVerdict, int] = {
    LetterVerdict.absent: 1,
    LetterVerdict.present: 2,
    LetterVerdict.correct: 3,
}


def normalize_word(word: str) -> str:
    w = (word or "").strip().upper()
    if len(w) != WORD_LENGTH or not w.isascii() or not w.isalpha():
        raise InvalidGuess(f"Expected a {WORD_LENGTH}-letter word, got {word!r}")
    return w


def evaluate(guess: str, target: str) -> list[LetterVerdict]:
    """Score `guess` against `target`, one verdict per position.

    Exact matches are credited first and consume their target position; the
    remaining letters then claim the leftmost unconsumed occurrence in the
    target. A letter repeated in the guess is credited at most as many times as
    it occurs in the target.
    """

    g = normalize_word(guess)
    t = normalize_word(target)

    verdicts: list[LetterVerdict | None] = [None] * WORD_LENGTH
    consumed = [False] * WORD_LENGTH

    for i in range(WORD_LENGTH):
        if g[i] == t[i]:
            verdicts[i] = LetterVerdict.correct
            consumed[i] = True

    for i in range(WORD_LENGTH):
        if verdicts[i] is not None:
            continue
        verdicts[i] = LetterVerdict.absent
        for j in range(WORD_LENGTH):
            if not consumed[j] and t[j] == g[i]:
                verdicts[i] = LetterVerdict.present
                consumed[j] = True
                break

    return [v for v in verdicts if v is not None]


def merge_letter_states(
    current: Mapping[str, LetterVerdict],
    guess: str,
    verdicts: Sequence[LetterVerdict],
) -> dict[str, LetterVerdict]:
    """Keyboard view: the best verdict seen so far for every letter."""

    merged = dict(current)
    for letter, verdict in zip(guess.upper(), verdicts):
        prev = merged.get(letter)
        if prev is None or _RANK[verdict] > _RANK[prev]:
            merged[letter] = verdict
    return merged


def is_solved(verdicts: Sequence[LetterVerdict]) -> bool:
    return len(verdicts) == WORD_LENGTH and all(v == LetterVerdict.correct for v in verdicts)


def apply_guess(state: GameState, guess: str, target: str, *, max_guesses: int = MAX_GUESSES) -> GameState:
    """Play one guess of a single board and return the resulting state."""

    if state.game_status.is_terminal:
        raise InvalidGuess("Round is already over")

    word = normalize_word(guess)
    verdicts = evaluate(word, target)

    guesses = [*state.guesses, GuessRecord(word=word, states=verdicts)]
    if is_solved(verdicts):
        status = GameStatus.won
    elif len(guesses) >= max_guesses:
        status = GameStatus.lost
    else:
        status = GameStatus.playing

    return GameState(
        guesses=guesses,
        game_status=status,
        letter_states=merge_letter_states(state.letter_states, word, verdicts),
    )


def board_matches(state: GameState, target: str) -> bool:
    """True when replaying the board's words against `target` reproduces its verdicts and status.

    A board finished against an earlier round's word fails this check.
    """

    replay = GameState.fresh()
    try:
        for g in state.guesses:
            replay = apply_guess(replay, g.word, target)
    except InvalidGuess:
        return False
    if [g.states for g in replay.guesses] != [g.states for g in state.guesses]:
        return False
    return replay.game_status == state.game_status

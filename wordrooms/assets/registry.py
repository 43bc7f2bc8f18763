from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path

from wordrooms.api.models import WORD_LENGTH


WORDS_FILE = "words.txt"


class AssetLoadError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class WordList:
    """Valid guesses and the pool target words are drawn from.

    Words are stored upper-case; membership checks are case-insensitive.
    """

    words: tuple[str, ...]
    _index: frozenset[str]

    @staticmethod
    def from_words(words: list[str]) -> "WordList":
        seen: dict[str, None] = {}
        for raw in words:
            w = raw.strip().upper()
            if len(w) != WORD_LENGTH or not w.isascii() or not w.isalpha():
                raise AssetLoadError(f"Not a {WORD_LENGTH}-letter word: {raw!r}")
            seen.setdefault(w, None)
        if not seen:
            raise AssetLoadError("Word list is empty")
        ordered = tuple(seen)
        return WordList(words=ordered, _index=frozenset(ordered))

    def __contains__(self, word: object) -> bool:
        return isinstance(word, str) and word.strip().upper() in self._index

    def __len__(self) -> int:
        return len(self.words)

    def pick(self, rng: random.Random | None = None, *, exclude: str | None = None) -> str:
        """Random target word, avoiding `exclude` whenever another word exists."""

        rng = rng or random.SystemRandom()
        pool = self.words
        if exclude is not None and len(pool) > 1:
            ex = exclude.upper()
            pool = tuple(w for w in pool if w != ex) or self.words
        return rng.choice(pool)


def load_word_list(*, root: Path) -> WordList:
    """Load `assets/words.txt` under `root` (whitespace-separated words, `#` comments)."""

    path = root / "assets" / WORDS_FILE
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise AssetLoadError(f"Word list not found: {path}") from e

    words = []
    for line in text.splitlines():
        words.extend(line.split("#", 1)[0].split())
    return WordList.from_words(words)

from __future__ import annotations

from pathlib import Path

from wordrooms.assets.registry import WordList, load_word_list


_WORDS: WordList | None = None


def init_words(*, project_root: Path) -> WordList:
    """Load the word list once and cache it.

    Safe to call multiple times; subsequent calls return the already loaded instance.
    """

    global _WORDS
    if _WORDS is None:
        _WORDS = load_word_list(root=project_root)
    return _WORDS


def reset_words_for_tests() -> None:
    """Reset the cached word list so tests can load it from fixture directories."""

    global _WORDS
    _WORDS = None


def get_words() -> WordList:
    if _WORDS is None:
        raise RuntimeError("Word list not initialized. Call init_words() at startup.")
    return _WORDS

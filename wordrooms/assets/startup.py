from __future__ import annotations

from pathlib import Path

from wordrooms.assets.registry import WordList
from wordrooms.assets.singleton import init_words


def init_words_for_app() -> WordList:
    # project root is two levels up from this file: wordrooms/assets/startup.py
    project_root = Path(__file__).resolve().parents[2]
    return init_words(project_root=project_root)

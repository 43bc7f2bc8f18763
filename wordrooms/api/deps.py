from __future__ import annotations

from fastapi import Request

from wordrooms.assets.registry import WordList
from wordrooms.assets.singleton import get_words as _get_words
from wordrooms.config import Settings
from wordrooms.presence import PresencePolicy
from wordrooms.store.base import RoomStore


def get_store(request: Request) -> RoomStore:
    # Built once in the app lifespan; see wordrooms.main.
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_words() -> WordList:
    return _get_words()


def get_policy(request: Request) -> PresencePolicy:
    return request.app.state.policy

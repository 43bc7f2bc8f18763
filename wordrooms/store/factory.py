from __future__ import annotations

import logging

from wordrooms.config import Settings
from wordrooms.infra.redis_client import create_redis
from wordrooms.store.base import RoomStore
from wordrooms.store.memory import MemoryRoomStore
from wordrooms.store.redis_store import RedisRoomStore
from wordrooms.store.sql import SqlRoomStore


logger = logging.getLogger(__name__)


def create_store(settings: Settings) -> RoomStore:
    if settings.store == "memory":
        logger.info("Using in-process room store (snapshot=%s)", settings.snapshot_path or "off")
        return MemoryRoomStore(snapshot_path=settings.snapshot_path or None)
    if settings.store == "sql":
        logger.info("Using SQL room store")
        return SqlRoomStore(url=settings.database_url)
    if settings.store == "redis":
        logger.info("Using redis room store")
        return RedisRoomStore(r=create_redis(settings.redis_url))
    raise ValueError(f"Unknown room store backend: {settings.store!r}")

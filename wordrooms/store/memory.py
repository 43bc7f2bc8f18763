from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import RLock

from pydantic import ValidationError

from wordrooms.api.models import Player, PlayerUpdate, Room, RoomUpdate
from wordrooms.errors import StoreFailure
from wordrooms.store.base import (
    RoomStore,
    apply_player_update,
    apply_room_update,
    barrier_holds,
    reset_round,
)


logger = logging.getLogger(__name__)


class MemoryRoomStore(RoomStore):
    """Process-local room table with optional JSON snapshotting.

    All access goes through one re-entrant lock; callers only ever see deep
    copies. When `snapshot_path` is set, rooms are loaded from it at start-up
    and `flush()` rewrites it if anything changed since the last flush. A crash
    loses at most the mutations since that flush.
    """

    def __init__(self, *, snapshot_path: str | Path | None = None) -> None:
        self._lock = RLock()
        self._rooms: dict[str, Room] = {}
        self._dirty = False
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        if self._snapshot_path is not None:
            self._rooms = self._load_snapshot(self._snapshot_path)

    # --- snapshotting ---

    @staticmethod
    def _load_snapshot(path: Path) -> dict[str, Room]:
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            rooms = {code: Room.model_validate(data) for code, data in raw.items()}
        except (OSError, ValueError, ValidationError):
            # A corrupt snapshot must not keep the service from starting.
            logger.exception("Failed to load rooms from snapshot %s; starting empty", path)
            return {}
        logger.info("Loaded %d rooms from snapshot %s", len(rooms), path)
        return rooms

    def flush(self) -> None:
        if self._snapshot_path is None:
            return
        with self._lock:
            if not self._dirty:
                return
            payload = {code: room.model_dump(mode="json", by_alias=True) for code, room in self._rooms.items()}
            self._dirty = False

        tmp = self._snapshot_path.with_name(self._snapshot_path.name + ".tmp")
        try:
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, self._snapshot_path)
        except OSError as e:
            with self._lock:
                self._dirty = True
            logger.exception("Failed to write room snapshot %s", self._snapshot_path)
            raise StoreFailure("Failed to write room snapshot") from e

    def close(self) -> None:
        self.flush()

    # --- contract ---

    def create_room(self, room: Room) -> bool:
        with self._lock:
            if room.code in self._rooms:
                return False
            self._rooms[room.code] = room.model_copy(deep=True)
            self._dirty = True
            return True

    def get_room(self, code: str) -> Room | None:
        with self._lock:
            room = self._rooms.get(code)
            return room.model_copy(deep=True) if room is not None else None

    def update_room(self, code: str, changes: RoomUpdate) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return False
            apply_room_update(room, changes)
            self._dirty = True
            return True

    def add_or_touch_player(self, code: str, player: Player) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return False
            existing = room.player(player.id)
            if existing is None:
                room.players.append(player.model_copy(deep=True))
            else:
                existing.nickname = player.nickname
                existing.last_active_ms = player.last_active_ms
            self._dirty = True
            return True

    def update_player(self, code: str, player_id: str, changes: PlayerUpdate, *, now_ms: int) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            player = room.player(player_id) if room is not None else None
            if player is None:
                return False
            apply_player_update(player, changes, now_ms=now_ms)
            self._dirty = True
            return True

    def remove_player(self, code: str, player_id: str) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return False
            room.players = [p for p in room.players if p.id != player_id]
            room.ready_players.discard(player_id)
            self._dirty = True
            return True

    def list_active_players(self, code: str) -> list[Player]:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return []
            return [p.model_copy(deep=True) for p in room.players]

    def set_ready(self, code: str, player_id: str, ready: bool) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None or room.player(player_id) is None:
                return False
            if ready:
                room.ready_players.add(player_id)
            else:
                room.ready_players.discard(player_id)
            self._dirty = True
            return True

    def advance_round(self, code: str, *, expected_round: int, target_word: str) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None or room.round_no != expected_round or not barrier_holds(room):
                return False
            reset_round(room, target_word=target_word)
            self._dirty = True
            return True

    def remove_inactive_players(self, code: str, *, cutoff_ms: int) -> list[str]:
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                return []
            stale = [p.id for p in room.players if p.last_active_ms < cutoff_ms]
            if stale:
                room.players = [p for p in room.players if p.last_active_ms >= cutoff_ms]
                room.ready_players -= set(stale)
                self._dirty = True
            return stale

    def delete_room(self, code: str) -> bool:
        with self._lock:
            if self._rooms.pop(code, None) is None:
                return False
            self._dirty = True
            return True

    def delete_room_if_empty(self, code: str) -> bool:
        with self._lock:
            room = self._rooms.get(code)
            if room is None or room.players:
                return False
            del self._rooms[code]
            self._dirty = True
            return True

    def list_room_codes(self) -> list[str]:
        with self._lock:
            return list(self._rooms)

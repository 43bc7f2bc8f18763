from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from wordrooms.api.models import now_ms as _now_ms
from wordrooms.config import Settings
from wordrooms.errors import StoreFailure
from wordrooms.store.base import RoomStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PresencePolicy:
    """Idle thresholds for the two sweep cadences.

    The on-demand threshold is short so a departed player drops off the board
    within a few polls; the background one is lenient enough to ride out a
    client hiccup.
    """

    on_demand_idle_ms: int = 30_000
    background_idle_ms: int = 60_000
    max_room_age_ms: int = 24 * 60 * 60 * 1000
    sweep_interval_sec: float = 30.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PresencePolicy":
        return cls(
            on_demand_idle_ms=settings.on_demand_idle_sec * 1000,
            background_idle_ms=settings.background_idle_sec * 1000,
            max_room_age_ms=settings.max_room_age_sec * 1000,
            sweep_interval_sec=settings.sweep_interval_sec,
        )


@dataclass(slots=True)
class SweepReport:
    rooms_scanned: int = 0
    players_evicted: int = 0
    rooms_deleted: list[str] = field(default_factory=list)
    failed_rooms: list[str] = field(default_factory=list)


def sweep_room(store: RoomStore, code: str, *, idle_ms: int, now_ms: int) -> list[str]:
    """Evict players idle for longer than `idle_ms`. Returns the evicted ids."""

    evicted = store.remove_inactive_players(code, cutoff_ms=now_ms - idle_ms)
    if evicted:
        logger.info("Evicted %d idle player(s) from room %s: %s", len(evicted), code, ", ".join(evicted))
    return evicted


def sweep_all(store: RoomStore, policy: PresencePolicy, *, now_ms: int) -> SweepReport:
    report = SweepReport()
    for code in store.list_room_codes():
        report.rooms_scanned += 1
        try:
            report.players_evicted += len(sweep_room(store, code, idle_ms=policy.background_idle_ms, now_ms=now_ms))

            room = store.get_room(code)
            if room is None:
                continue
            if now_ms - room.created_at_ms > policy.max_room_age_ms:
                if store.delete_room(code):
                    logger.info("Deleted room %s: older than %d ms", code, policy.max_room_age_ms)
                    report.rooms_deleted.append(code)
            elif store.delete_room_if_empty(code):
                # A join that landed first keeps the room; one that lands after fails with not-found.
                logger.info("Deleted empty room %s", code)
                report.rooms_deleted.append(code)
        except StoreFailure:
            logger.warning("Sweep of room %s failed; continuing", code)
            report.failed_rooms.append(code)
    return report


async def run_maintenance(
    store: RoomStore,
    policy: PresencePolicy,
    stop_event: asyncio.Event,
    *,
    clock: Callable[[], int] = _now_ms,
) -> None:
    """Background sweep + snapshot flush every `policy.sweep_interval_sec` until stopped."""

    logger.info("Room maintenance started (interval=%ss)", policy.sweep_interval_sec)
    while not stop_event.is_set():
        try:
            report = await asyncio.to_thread(sweep_all, store, policy, now_ms=clock())
            if report.players_evicted or report.rooms_deleted:
                logger.info(
                    "Sweep: %d room(s), %d player(s) evicted, %d room(s) deleted",
                    report.rooms_scanned,
                    report.players_evicted,
                    len(report.rooms_deleted),
                )
            await asyncio.to_thread(store.flush)
        except StoreFailure:
            logger.warning("Room maintenance pass failed; retrying next interval")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=policy.sweep_interval_sec)
        except asyncio.TimeoutError:
            pass
    logger.info("Room maintenance stopped")

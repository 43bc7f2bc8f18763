from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv


StoreBackend = Literal["memory", "sql", "redis"]


@dataclass(frozen=True, slots=True)
class Settings:
    store: StoreBackend = "memory"

    # Memory backend snapshot file; empty disables snapshotting.
    snapshot_path: str = ".rooms-cache.json"
    database_url: str = "sqlite:///./wordrooms.db"
    redis_url: str = "redis://localhost:6379/0"

    log_level: str = "INFO"

    on_demand_idle_sec: int = 30
    background_idle_sec: int = 60
    max_room_age_sec: int = 24 * 60 * 60
    sweep_interval_sec: float = 30.0

    max_code_attempts: int = 10


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def settings_from_env(*, dotenv_path: Path | None = None) -> Settings:
    """Build settings from the environment.

    A `.env` file (repo root by default) is loaded first without overriding
    variables that are already set.
    """

    env_path = dotenv_path or Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)

    store = os.environ.get("WORDROOMS_STORE", "memory").strip().lower() or "memory"
    if store not in ("memory", "sql", "redis"):
        raise ValueError(f"WORDROOMS_STORE must be one of memory, sql, redis (got {store!r})")

    defaults = Settings()
    return Settings(
        store=store,  # type: ignore[arg-type]
        snapshot_path=os.environ.get("WORDROOMS_SNAPSHOT_PATH", defaults.snapshot_path),
        database_url=os.environ.get("DATABASE_URL", defaults.database_url),
        redis_url=os.environ.get("REDIS_URL", defaults.redis_url),
        log_level=os.environ.get("WORDROOMS_LOG_LEVEL", defaults.log_level).upper(),
        on_demand_idle_sec=_env_int("WORDROOMS_ON_DEMAND_IDLE_SEC", defaults.on_demand_idle_sec),
        background_idle_sec=_env_int("WORDROOMS_BACKGROUND_IDLE_SEC", defaults.background_idle_sec),
        max_room_age_sec=_env_int("WORDROOMS_MAX_ROOM_AGE_SEC", defaults.max_room_age_sec),
        sweep_interval_sec=float(_env_int("WORDROOMS_SWEEP_INTERVAL_SEC", int(defaults.sweep_interval_sec))),
        max_code_attempts=_env_int("WORDROOMS_MAX_CODE_ATTEMPTS", defaults.max_code_attempts),
    )

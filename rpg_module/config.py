from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

RegisterExistingPolicy = Literal["refresh", "reject"]
NameUniqueness = Literal["global", "per_account", "none"]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().casefold() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw else default


@dataclass(frozen=True, slots=True)
class Settings:
    redis_url: str
    log_level: str
    lock_ttl_ms: int
    lock_timeout_ms: int


@dataclass(frozen=True, slots=True)
class ModulePolicy:
    """Rules the reducers disagree on across deployments.

    Every reducer and every test reads these from one place; nothing else
    hardcodes them.
    """

    # "refresh": registering a known identity bumps last_login.
    # "reject": it fails with AlreadyRegistered.
    register_existing: RegisterExistingPolicy = "refresh"
    name_uniqueness: NameUniqueness = "global"
    move_requires_session: bool = False
    starter_characters: bool = False
    spawn_x: float = 0.0
    spawn_y: float = 0.0


def get_settings() -> Settings:
    return Settings(
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        lock_ttl_ms=_env_int("RPG_LOCK_TTL_MS", 5_000),
        lock_timeout_ms=_env_int("RPG_LOCK_TIMEOUT_MS", 5_000),
    )


def get_policy() -> ModulePolicy:
    register_existing = os.environ.get("RPG_REGISTER_EXISTING", "refresh").strip().casefold()
    if register_existing not in {"refresh", "reject"}:
        raise ValueError(f"RPG_REGISTER_EXISTING must be 'refresh' or 'reject', got {register_existing!r}")

    name_uniqueness = os.environ.get("RPG_NAME_UNIQUENESS", "global").strip().casefold()
    if name_uniqueness not in {"global", "per_account", "none"}:
        raise ValueError(f"RPG_NAME_UNIQUENESS must be 'global', 'per_account' or 'none', got {name_uniqueness!r}")

    return ModulePolicy(
        register_existing=register_existing,  # type: ignore[arg-type]
        name_uniqueness=name_uniqueness,  # type: ignore[arg-type]
        move_requires_session=_env_flag("RPG_MOVE_REQUIRES_SESSION", False),
        starter_characters=_env_flag("RPG_STARTER_CHARACTERS", False),
        spawn_x=_env_float("RPG_SPAWN_X", 0.0),
        spawn_y=_env_float("RPG_SPAWN_Y", 0.0),
    )

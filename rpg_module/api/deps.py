from __future__ import annotations

import threading
import time
from collections.abc import Generator

import redis
from fastapi import Header

from rpg_module.config import ModulePolicy, get_policy
from rpg_module.infra.redis_client import create_redis


def get_redis() -> Generator[redis.Redis, None, None]:
    client = create_redis()
    try:
        yield client
    finally:
        try:
            client.close()
        except Exception:
            # Some redis client versions don't require explicit close.
            pass


class HostClock:
    """Millisecond wall clock that never repeats or goes backwards within a process."""

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def now_ms(self) -> int:
        with self._lock:
            now = time.time_ns() // 1_000_000
            if now <= self._last:
                now = self._last + 1
            self._last = now
            return now


clock = HostClock()


def get_timestamp() -> int:
    return clock.now_ms()


def get_caller_identity(x_identity: str = Header(..., alias="X-Identity", min_length=1, max_length=128)) -> str:
    # Identity is authenticated upstream; we only carry it.
    return x_identity


def get_module_policy() -> ModulePolicy:
    return get_policy()

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis

from rpg_module.errors import StoreUnavailable

logger = logging.getLogger(__name__)

MODULE_LOCK_KEY = "lock:rpg:module"


def _release(*, r: redis.Redis, key: str, token: str) -> None:
    # Compare-and-delete without Lua: WATCH the key so a concurrent
    # re-acquire between GET and DEL aborts our EXEC.
    try:
        with r.pipeline() as pipe:
            pipe.watch(key)
            if pipe.get(key) != token:
                pipe.unwatch()
                logger.warning("reducer lock expired before release (key=%s)", key)
                return
            pipe.multi()
            pipe.delete(key)
            pipe.execute()
    except redis.WatchError:
        logger.warning("reducer lock changed hands during release (key=%s)", key)
    except redis.RedisError as e:
        # The lease expires on its own.
        logger.warning("could not release reducer lock (key=%s): %s", key, e)


@contextmanager
def reducer_lock(
    *,
    r: redis.Redis,
    ttl_ms: int = 5_000,
    timeout_ms: int = 5_000,
    key: str = MODULE_LOCK_KEY,
) -> Iterator[str]:
    """Module-wide lock that serializes reducer execution.

    Every reducer runs while holding this lock, so each one sees a stable
    snapshot and its read-validate-write sequence cannot interleave with
    another reducer's.

    The lock value is a per-holder token; release only deletes the key if
    it still holds our token. Acquisition retries with capped exponential
    backoff and raises StoreUnavailable after `timeout_ms`.
    """

    token = uuid.uuid4().hex
    deadline = time.monotonic() + timeout_ms / 1000
    delay = 0.001

    try:
        while not r.set(key, token, nx=True, px=ttl_ms):
            if time.monotonic() >= deadline:
                raise StoreUnavailable("Timed out waiting for the reducer lock")
            time.sleep(delay)
            delay = min(delay * 2, 0.05)
    except redis.RedisError as e:
        raise StoreUnavailable(f"Redis unavailable: {e}") from e

    try:
        yield token
    finally:
        _release(r=r, key=key, token=token)

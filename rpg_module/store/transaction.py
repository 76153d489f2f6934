from __future__ import annotations

from typing import cast

import redis

from rpg_module.errors import StoreUnavailable


class Transaction:
    """Buffered write-set over Redis hashes.

    Reads see this transaction's own pending writes first, then Redis.
    Nothing reaches Redis until `commit()`, which applies every pending
    HSET/HDEL inside one MULTI/EXEC. Dropping the object without committing
    is the rollback.

    When opened under the reducer lock (`lock_key`/`lock_token`), `commit()`
    only applies the writes while the lock key still holds that token.
    """

    def __init__(self, *, r: redis.Redis, lock_key: str | None = None, lock_token: str | None = None) -> None:
        self._r = r
        self._lock_key = lock_key
        self._lock_token = lock_token
        # table -> key -> raw JSON, or None for a pending delete
        self._writes: dict[str, dict[str, str | None]] = {}
        self._read: set[str] = set()
        self._committed = False

    @property
    def pending_writes(self) -> int:
        return sum(len(rows) for rows in self._writes.values())

    def get(self, table: str, key: str) -> str | None:
        pending = self._writes.get(table, {})
        if key in pending:
            return pending[key]
        self._read.add(table)
        return cast(str | None, self._r.hget(table, key))

    def rows(self, table: str) -> dict[str, str]:
        self._read.add(table)
        merged = cast(dict[str, str], dict(self._r.hgetall(table)))
        for key, raw in self._writes.get(table, {}).items():
            if raw is None:
                merged.pop(key, None)
            else:
                merged[key] = raw
        return merged

    def put(self, table: str, key: str, raw: str) -> None:
        self._check_open()
        self._writes.setdefault(table, {})[key] = raw

    def delete(self, table: str, key: str) -> None:
        self._check_open()
        self._writes.setdefault(table, {})[key] = None

    def commit(self) -> None:
        self._check_open()
        self._committed = True
        if not self._writes:
            return

        watched = sorted(self._read.union(self._writes))
        if self._lock_key is not None:
            watched.insert(0, self._lock_key)

        with self._r.pipeline() as pipe:
            try:
                pipe.watch(*watched)
                if self._lock_key is not None and pipe.get(self._lock_key) != self._lock_token:
                    raise StoreUnavailable("Reducer lock expired before commit")
                pipe.multi()
                for table, rows in self._writes.items():
                    for key, raw in rows.items():
                        if raw is None:
                            pipe.hdel(table, key)
                        else:
                            pipe.hset(table, key, raw)
                pipe.execute()
            except redis.WatchError as e:
                raise StoreUnavailable("Concurrent write during commit") from e
        self._writes.clear()

    def _check_open(self) -> None:
        if self._committed:
            raise RuntimeError("Transaction already committed")

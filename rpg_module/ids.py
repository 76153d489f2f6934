from __future__ import annotations

import logging

import redis

from rpg_module.api.models import Counter
from rpg_module.errors import AllocationFailure
from rpg_module.store.tables import Table
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

CHARACTER_ID = "character_id"
KNOWN_COUNTERS: tuple[str, ...] = (CHARACTER_ID,)

COUNTERS: Table[Counter] = Table(name="rpg:counter", model=Counter, key_field="name")


def next_id(tx: Transaction, name: str = CHARACTER_ID) -> int:
    """Allocate the next id for `name`.

    The read and the write both go through `tx`, so the increment commits
    together with whatever the caller inserts under the new id, or not at all.
    Callers must hold the reducer lock.
    """

    try:
        counter = COUNTERS.get(tx, name) or Counter(name=name, value=0)
    except redis.RedisError as e:
        raise AllocationFailure(f"Could not read counter {name!r}: {e}") from e

    new_value = counter.value + 1
    COUNTERS.upsert(tx, counter.model_copy(update={"value": new_value}))
    return new_value


def current_value(tx: Transaction, name: str = CHARACTER_ID) -> int:
    counter = COUNTERS.get(tx, name)
    return counter.value if counter is not None else 0


def init_counters(*, r: redis.Redis) -> None:
    """Seed every known counter at 0. Existing counters are left alone."""

    for name in KNOWN_COUNTERS:
        created = r.hsetnx(COUNTERS.name, name, Counter(name=name, value=0).model_dump_json())
        if created:
            logger.info("initialized counter %s", name)

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import redis
from pydantic import ValidationError

from rpg_module import accounts, characters, ids, sessions
from rpg_module.api.models import AppearanceFields, Direction
from rpg_module.config import ModulePolicy, Settings, get_policy, get_settings
from rpg_module.errors import InvalidArguments, ReducerError, StoreUnavailable
from rpg_module.lock import MODULE_LOCK_KEY, reducer_lock
from rpg_module.store.tables import DuplicateKeyError, MissingRowError
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

ReducerName = Literal["register", "create_character", "update_position", "login", "logout"]
LifecycleHook = Literal["client_connected", "client_disconnected"]


@dataclass(frozen=True, slots=True)
class ReducerContext:
    """What the host hands every reducer: who is calling, when, and the open transaction."""

    sender: str
    timestamp: int
    tx: Transaction
    policy: ModulePolicy
    address: str | None = None


@dataclass(frozen=True, slots=True)
class ReducerOutcome:
    ok: bool
    value: Any = None
    error: ReducerError | None = None

    @property
    def code(self) -> str | None:
        return self.error.code if self.error is not None else None


# --- Reducers ---


def register(ctx: ReducerContext, *, username: str) -> None:
    created = accounts.register(
        ctx.tx,
        identity=ctx.sender,
        username=username,
        now=ctx.timestamp,
        policy=ctx.policy,
    )
    if created and ctx.policy.starter_characters:
        characters.grant_starter_characters(ctx.tx, owner_identity=ctx.sender, now=ctx.timestamp)


def create_character(
    ctx: ReducerContext,
    *,
    name: str,
    class_name: str,
    skin: str,
    hair: str,
    eyes: str,
    outfit: str,
) -> int:
    try:
        appearance = AppearanceFields(skin=skin, hair=hair, eyes=eyes, outfit=outfit)
    except ValidationError as e:
        raise InvalidArguments(f"Invalid appearance: {e.error_count()} field(s) rejected") from e

    return characters.create(
        ctx.tx,
        owner_identity=ctx.sender,
        name=name,
        class_name=class_name,
        appearance=appearance,
        now=ctx.timestamp,
        policy=ctx.policy,
    )


def update_position(
    ctx: ReducerContext,
    *,
    character_id: int,
    x: float,
    y: float,
    direction: Direction | str | None = None,
) -> None:
    try:
        x, y = float(x), float(y)
        facing = Direction(direction) if direction is not None else None
    except (TypeError, ValueError) as e:
        raise InvalidArguments(str(e)) from e

    characters.update_position(
        ctx.tx,
        character_id=character_id,
        caller_identity=ctx.sender,
        x=x,
        y=y,
        direction=facing,
        now=ctx.timestamp,
        policy=ctx.policy,
    )


def login(ctx: ReducerContext, *, character_id: int) -> None:
    sessions.login(ctx.tx, identity=ctx.sender, character_id=character_id, now=ctx.timestamp)


def logout(ctx: ReducerContext) -> None:
    sessions.logout(ctx.tx, identity=ctx.sender)


def client_connected(ctx: ReducerContext) -> None:
    sessions.on_connect(ctx.tx, identity=ctx.sender, now=ctx.timestamp, address=ctx.address)
    logger.info("client connected: %s", ctx.sender)


def client_disconnected(ctx: ReducerContext) -> None:
    sessions.on_disconnect(ctx.tx, identity=ctx.sender)
    logger.info("client disconnected: %s", ctx.sender)


REDUCERS: dict[str, Callable[..., Any]] = {
    "register": register,
    "create_character": create_character,
    "update_position": update_position,
    "login": login,
    "logout": logout,
}

LIFECYCLE_HOOKS: dict[str, Callable[[ReducerContext], None]] = {
    "client_connected": client_connected,
    "client_disconnected": client_disconnected,
}


# --- Executor ---


def execute(
    *,
    r: redis.Redis,
    reducer: Callable[..., Any],
    sender: str,
    timestamp: int,
    args: dict[str, Any] | None = None,
    address: str | None = None,
    policy: ModulePolicy | None = None,
    settings: Settings | None = None,
) -> ReducerOutcome:
    """Run one reducer as a single transaction.

    Holds the module lock for the whole read-validate-write sequence and
    commits the write-set only when the reducer returns and the lock is still
    ours. Any failure discards every write and comes back as a failed outcome.
    """

    policy = policy or get_policy()
    settings = settings or get_settings()
    name = getattr(reducer, "__name__", "reducer")
    args = args or {}

    try:
        inspect.signature(reducer).bind(None, **args)
    except TypeError as e:
        logger.info("reducer %s rejected for %s: bad arguments (%s)", name, sender, e)
        return ReducerOutcome(ok=False, error=InvalidArguments(str(e)))

    try:
        with reducer_lock(
            r=r, ttl_ms=settings.lock_ttl_ms, timeout_ms=settings.lock_timeout_ms, key=MODULE_LOCK_KEY
        ) as token:
            tx = Transaction(r=r, lock_key=MODULE_LOCK_KEY, lock_token=token)
            ctx = ReducerContext(sender=sender, timestamp=timestamp, tx=tx, policy=policy, address=address)
            value = reducer(ctx, **args)
            tx.commit()
    except ReducerError as e:
        logger.info("reducer %s rejected for %s: %s (%s)", name, sender, e.code, e)
        return ReducerOutcome(ok=False, error=e)
    except redis.RedisError as e:
        logger.warning("reducer %s aborted for %s: %s", name, sender, e)
        return ReducerOutcome(ok=False, error=StoreUnavailable(f"Redis unavailable: {e}"))
    except (DuplicateKeyError, MissingRowError) as e:
        logger.error("reducer %s aborted for %s: store conflict: %s", name, sender, e)
        return ReducerOutcome(ok=False, error=StoreUnavailable(f"Store conflict: {e}"))

    logger.info("reducer %s committed for %s", name, sender)
    return ReducerOutcome(ok=True, value=value)


def call_reducer(
    *,
    r: redis.Redis,
    name: str,
    sender: str,
    timestamp: int,
    args: dict[str, Any] | None = None,
    policy: ModulePolicy | None = None,
    settings: Settings | None = None,
) -> ReducerOutcome:
    reducer = REDUCERS.get(name)
    if reducer is None:
        raise ValueError(f"Unknown reducer: {name}")
    return execute(r=r, reducer=reducer, sender=sender, timestamp=timestamp, args=args, policy=policy, settings=settings)


def run_lifecycle_hook(
    *,
    r: redis.Redis,
    hook: LifecycleHook,
    sender: str,
    timestamp: int,
    address: str | None = None,
    policy: ModulePolicy | None = None,
    settings: Settings | None = None,
) -> None:
    """Run a transport lifecycle hook. These never report failure to the caller."""

    outcome = execute(
        r=r,
        reducer=LIFECYCLE_HOOKS[hook],
        sender=sender,
        timestamp=timestamp,
        address=address,
        policy=policy,
        settings=settings,
    )
    if not outcome.ok:
        logger.warning("lifecycle hook %s failed for %s: %s", hook, sender, outcome.code)


def init_module(*, r: redis.Redis) -> None:
    ids.init_counters(r=r)
    logger.info("module initialized")

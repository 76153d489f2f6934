from __future__ import annotations

import dataclasses
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import fakeredis
import pytest
import redis

from rpg_module import characters, ids
from rpg_module.config import ModulePolicy, Settings
from rpg_module.lock import MODULE_LOCK_KEY
from rpg_module.reducers import ReducerContext, ReducerOutcome, call_reducer, execute, init_module, run_lifecycle_hook
from rpg_module.store.transaction import Transaction

CallReducer = Callable[..., ReducerOutcome]
View = Callable[[], Transaction]


@pytest.fixture()
def alice(call: CallReducer) -> str:
    assert call("register", "id-alice", 100, username="alice").ok
    return "id-alice"


# --- Lock ownership at commit ---


def test_commit_is_rejected_once_the_lock_changed_hands(
    r: fakeredis.FakeRedis, view: View, alice: str, settings: Settings
) -> None:
    def _loses_lock(ctx: ReducerContext) -> int:
        character_id = ids.next_id(ctx.tx)
        # Another holder takes over after our lease ran out.
        r.set(MODULE_LOCK_KEY, "next-holder")
        return character_id

    out = execute(r=r, reducer=_loses_lock, sender=alice, timestamp=200, policy=ModulePolicy(), settings=settings)
    assert not out.ok
    assert out.code == "StoreUnavailable"

    assert ids.current_value(view()) == 0
    assert r.get(MODULE_LOCK_KEY) == "next-holder"


def test_stalled_reducer_cannot_reuse_an_id_after_lock_expiry(settings: Settings, appearance: dict[str, str]) -> None:
    server = fakeredis.FakeServer()
    setup = fakeredis.FakeRedis(server=server, decode_responses=True)
    init_module(r=setup)
    policy = ModulePolicy()
    assert call_reducer(
        r=setup, name="register", sender="alice", timestamp=1, args={"username": "alice"}, policy=policy, settings=settings
    ).ok

    allocated = threading.Event()
    other_done = threading.Event()

    def _stalls(ctx: ReducerContext) -> int:
        character_id = ids.next_id(ctx.tx)
        allocated.set()
        other_done.wait(timeout=10)
        return character_id

    short_lease = dataclasses.replace(settings, lock_ttl_ms=50)
    with ThreadPoolExecutor(max_workers=1) as pool:
        stalled = pool.submit(
            execute,
            r=fakeredis.FakeRedis(server=server, decode_responses=True),
            reducer=_stalls,
            sender="alice",
            timestamp=5,
            policy=policy,
            settings=short_lease,
        )
        assert allocated.wait(timeout=10)

        # Blocks until the stalled reducer's lease expires, then runs.
        created = call_reducer(
            r=setup,
            name="create_character",
            sender="alice",
            timestamp=6,
            args={"name": "Aria", "class_name": "mage", **appearance},
            policy=policy,
            settings=settings,
        )
        other_done.set()
        late = stalled.result(timeout=10)

    assert created.ok
    assert created.value == 1
    assert not late.ok
    assert late.code == "StoreUnavailable"

    view = Transaction(r=setup)
    assert ids.current_value(view) == 1
    assert [c.id for c in characters.characters_of(view, "alice")] == [1]


# --- Lock release ---


class _ReleaseFails(fakeredis.FakeRedis):
    """Redis whose connection drops when the reducer lock is being released."""

    def pipeline(self, transaction=True, shard_hint=None):  # type: ignore[no-untyped-def]
        pipe = super().pipeline(transaction=transaction, shard_hint=shard_hint)
        watch = pipe.watch

        def _watch(*names):  # type: ignore[no-untyped-def]
            if names == (MODULE_LOCK_KEY,):
                raise redis.ConnectionError("connection reset by peer")
            return watch(*names)

        pipe.watch = _watch  # type: ignore[method-assign]
        return pipe


def test_release_failure_does_not_mask_a_commit(settings: Settings) -> None:
    r = _ReleaseFails(decode_responses=True)
    init_module(r=r)

    out = call_reducer(
        r=r, name="register", sender="id-alice", timestamp=1, args={"username": "alice"}, policy=ModulePolicy(), settings=settings
    )
    assert out.ok
    assert r.hexists("rpg:account", "id-alice")


# --- Argument and store errors come back as outcomes ---


def test_unknown_direction_is_invalid_arguments(
    call: CallReducer, view: View, alice: str, appearance: dict[str, str]
) -> None:
    assert call("create_character", alice, 200, name="Aria", class_name="mage", **appearance).ok
    before = characters.get_character(view(), 1)

    out = call("update_position", alice, 300, character_id=1, x=1.0, y=2.0, direction="north")
    assert not out.ok
    assert out.code == "InvalidArguments"

    out = call("update_position", alice, 301, character_id=1, x="far", y=2.0)
    assert out.code == "InvalidArguments"

    assert characters.get_character(view(), 1) == before


def test_blank_appearance_is_invalid_arguments(
    call: CallReducer, r: fakeredis.FakeRedis, view: View, alice: str, appearance: dict[str, str]
) -> None:
    out = call("create_character", alice, 200, name="Aria", class_name="mage", **{**appearance, "skin": ""})
    assert not out.ok
    assert out.code == "InvalidArguments"

    assert r.hlen(characters.CHARACTERS.name) == 0
    assert ids.current_value(view()) == 0


@pytest.mark.parametrize(
    ("name", "args"),
    [
        ("login", {}),
        ("login", {"character": 1}),
        ("register", {"username": "alice", "extra": True}),
    ],
)
def test_wrong_argument_names_are_invalid_arguments(call: CallReducer, name: str, args: dict[str, object]) -> None:
    out = call(name, "id-alice", 1, **args)
    assert not out.ok
    assert out.code == "InvalidArguments"


def test_store_key_conflict_is_store_unavailable(
    call: CallReducer, r: fakeredis.FakeRedis, alice: str, appearance: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(ids, "next_id", lambda tx, name=ids.CHARACTER_ID: 1)

    assert call("create_character", alice, 200, name="Aria", class_name="mage", **appearance).ok
    out = call("create_character", alice, 201, name="Bryn", class_name="rogue", **appearance)
    assert not out.ok
    assert out.code == "StoreUnavailable"

    assert r.hlen(characters.CHARACTERS.name) == 1


def test_lifecycle_hooks_never_raise(settings: Settings) -> None:
    class _Down(fakeredis.FakeRedis):
        def set(self, *args, **kwargs):  # type: ignore[no-untyped-def]
            raise redis.ConnectionError("down")

    r = _Down(decode_responses=True)
    run_lifecycle_hook(r=r, hook="client_connected", sender="id-alice", timestamp=1, policy=ModulePolicy(), settings=settings)
    run_lifecycle_hook(r=r, hook="client_disconnected", sender="id-alice", timestamp=2, policy=ModulePolicy(), settings=settings)

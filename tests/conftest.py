from __future__ import annotations

import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import fakeredis
import pytest

from rpg_module.config import ModulePolicy, Settings
from rpg_module.reducers import ReducerOutcome, call_reducer, init_module, run_lifecycle_hook
from rpg_module.store.transaction import Transaction

# Generous lock wait so heavily contended tests never time out.
TEST_SETTINGS = Settings(
    redis_url="redis://unused",
    log_level="DEBUG",
    lock_ttl_ms=5_000,
    lock_timeout_ms=30_000,
)

CallReducer = Callable[..., ReducerOutcome]


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    """Load repo .env for local runs.

    In CI we don't auto-load `.env`, so policy overrides in a developer's
    .env never leak into the suite. Opt in with RPG_LOAD_DOTENV_FOR_TESTS=1.
    """

    if os.environ.get("CI") and os.environ.get("RPG_LOAD_DOTENV_FOR_TESTS") != "1":
        return

    env_path = Path(__file__).resolve().parents[1] / ".env"
    if env_path.exists():
        from dotenv import load_dotenv

        load_dotenv(dotenv_path=env_path, override=False)


@pytest.fixture()
def r() -> fakeredis.FakeRedis:
    client = fakeredis.FakeRedis(decode_responses=True)
    init_module(r=client)
    return client


@pytest.fixture()
def policy() -> ModulePolicy:
    return ModulePolicy()


@pytest.fixture()
def call(r: fakeredis.FakeRedis, policy: ModulePolicy) -> CallReducer:
    """Invoke a reducer the way the host does: one transaction per call."""

    def _call(name: str, sender: str, ts: int, /, *, policy_override: ModulePolicy | None = None, **args: Any) -> ReducerOutcome:
        return call_reducer(
            r=r,
            name=name,
            sender=sender,
            timestamp=ts,
            args=args,
            policy=policy_override or policy,
            settings=TEST_SETTINGS,
        )

    return _call


@pytest.fixture()
def hook(r: fakeredis.FakeRedis, policy: ModulePolicy) -> Callable[..., None]:
    def _hook(name: str, sender: str, ts: int, address: str | None = None) -> None:
        run_lifecycle_hook(r=r, hook=name, sender=sender, timestamp=ts, address=address, policy=policy, settings=TEST_SETTINGS)  # type: ignore[arg-type]

    return _hook


@pytest.fixture()
def view(r: fakeredis.FakeRedis) -> Callable[[], Transaction]:
    """Fresh read-only snapshot of committed state."""

    return lambda: Transaction(r=r)


@pytest.fixture()
def appearance() -> dict[str, str]:
    return {"skin": "pale", "hair": "silver", "eyes": "violet", "outfit": "robe"}


@pytest.fixture()
def client_and_redis(monkeypatch: pytest.MonkeyPatch):
    """FastAPI TestClient wired to fakeredis and the default policy.

    Startup opens its own client, so it gets a fresh FakeRedis on the same
    server as the one the routes use.
    """

    from fastapi.testclient import TestClient

    from rpg_module import main
    from rpg_module.api.deps import get_module_policy, get_redis
    from rpg_module.main import app

    server = fakeredis.FakeServer()
    r = fakeredis.FakeRedis(server=server, decode_responses=True)
    monkeypatch.setattr(main, "create_redis", lambda: fakeredis.FakeRedis(server=server, decode_responses=True))

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_module_policy] = lambda: ModulePolicy()
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()


@pytest.fixture()
def settings() -> Settings:
    return TEST_SETTINGS

from __future__ import annotations

import logging
from enum import StrEnum

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from rpg_module import accounts, characters
from rpg_module.api.models import Session
from rpg_module.errors import NotFound, NotLoggedIn, NotOwner, NotRegistered
from rpg_module.store.tables import Table
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

SESSIONS: Table[Session] = Table(name="rpg:session", model=Session, key_field="identity")


class SessionPhase(StrEnum):
    disconnected = "disconnected"
    connected = "connected"
    logged_in = "logged_in"


def phase_of(session: Session | None) -> SessionPhase:
    if session is None:
        return SessionPhase.disconnected
    if session.character_id is None:
        return SessionPhase.connected
    return SessionPhase.logged_in


class SessionFSM(StateMachine):
    """Per-identity session lifecycle.

    The phase is derived from the stored Session row; the FSM only guards
    transitions, the functions below do the writes.
    """

    disconnected = State(SessionPhase.disconnected.value, value=SessionPhase.disconnected.value, initial=True)
    connected = State(SessionPhase.connected.value, value=SessionPhase.connected.value)
    logged_in = State(SessionPhase.logged_in.value, value=SessionPhase.logged_in.value)

    # A reconnect over a stale session starts over unbound.
    connect = disconnected.to(connected) | connected.to.itself() | logged_in.to(connected)
    login = disconnected.to(logged_in) | connected.to(logged_in) | logged_in.to.itself()
    logout = connected.to(disconnected) | logged_in.to(disconnected)
    disconnect = connected.to(disconnected) | logged_in.to(disconnected)
    activity = connected.to.itself() | logged_in.to.itself()

    def __init__(self, session: Session | None):
        self.session = session
        super().__init__(start_value=phase_of(session).value)

    @property
    def phase(self) -> SessionPhase:
        return SessionPhase(str(self.current_state.value))


def get_session(tx: Transaction, identity: str) -> Session | None:
    return SESSIONS.get(tx, identity)


def on_connect(tx: Transaction, *, identity: str, now: int, address: str | None = None) -> Session:
    fsm = SessionFSM(SESSIONS.get(tx, identity))
    fsm.send("connect")
    if fsm.session is not None:
        logger.info("replacing stale session for %s", identity)
    return SESSIONS.upsert(
        tx,
        Session(identity=identity, character_id=None, address=address, connected_at=now, last_activity=now),
    )


def on_disconnect(tx: Transaction, *, identity: str) -> bool:
    fsm = SessionFSM(SESSIONS.get(tx, identity))
    try:
        fsm.send("disconnect")
    except TransitionNotAllowed:
        return False
    return SESSIONS.delete(tx, identity)


def login(tx: Transaction, *, identity: str, character_id: int, now: int) -> Session:
    if not accounts.exists(tx, identity):
        raise NotRegistered("User not registered")

    owner = characters.owner_of(tx, character_id)
    if owner is None:
        raise NotFound("Character not found")
    if owner != identity:
        raise NotOwner("Character does not belong to this user")

    existing = SESSIONS.get(tx, identity)
    SessionFSM(existing).send("login")

    session = SESSIONS.upsert(
        tx,
        Session(
            identity=identity,
            character_id=character_id,
            address=existing.address if existing is not None else None,
            connected_at=now,
            last_activity=now,
        ),
    )
    accounts.touch_login(tx, identity=identity, now=now)
    return session


def logout(tx: Transaction, *, identity: str) -> None:
    fsm = SessionFSM(SESSIONS.get(tx, identity))
    try:
        fsm.send("logout")
    except TransitionNotAllowed as e:
        raise NotLoggedIn("Not logged in") from e
    SESSIONS.delete(tx, identity)


def touch_activity(tx: Transaction, *, identity: str, now: int) -> Session | None:
    session = SESSIONS.get(tx, identity)
    if session is None:
        return None
    SessionFSM(session).send("activity")
    return SESSIONS.replace(tx, session.model_copy(update={"last_activity": now}))

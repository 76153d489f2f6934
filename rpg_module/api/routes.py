from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from rpg_module import accounts, characters, sessions
from rpg_module.api.deps import get_caller_identity, get_module_policy, get_redis, get_timestamp
from rpg_module.api.models import (
    Account,
    Appearance,
    Character,
    CharacterListResponse,
    CreateCharacterRequest,
    LoginRequest,
    ReducerResponse,
    RegisterRequest,
    Session,
    UpdatePositionRequest,
)
from rpg_module.config import ModulePolicy
from rpg_module.errors import ReducerError
from rpg_module.reducers import ReducerOutcome, call_reducer, run_lifecycle_hook
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_BY_CODE: dict[str, int] = {
    "AlreadyRegistered": status.HTTP_409_CONFLICT,
    "NameTaken": status.HTTP_409_CONFLICT,
    "NotLoggedIn": status.HTTP_409_CONFLICT,
    "NotRegistered": status.HTTP_403_FORBIDDEN,
    "NotOwner": status.HTTP_403_FORBIDDEN,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "InvalidArguments": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "AllocationFailure": status.HTTP_503_SERVICE_UNAVAILABLE,
    "StoreUnavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _respond(outcome: ReducerOutcome) -> ReducerResponse:
    if outcome.ok:
        return ReducerResponse(ok=True, value=outcome.value)
    error = outcome.error or ReducerError()
    raise HTTPException(
        status_code=_STATUS_BY_CODE.get(error.code, status.HTTP_422_UNPROCESSABLE_ENTITY),
        detail={"error": error.code, "message": error.message},
    )


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


# --- Reducers ---
# Plain `def` routes: reducers block on the module lock, so they run in the threadpool.


@router.post("/reducers/register", response_model=ReducerResponse)
def register_route(
    payload: RegisterRequest,
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> ReducerResponse:
    outcome = call_reducer(
        r=r,
        name="register",
        sender=identity,
        timestamp=timestamp,
        args={"username": payload.username},
        policy=policy,
    )
    return _respond(outcome)


@router.post("/reducers/create_character", response_model=ReducerResponse, status_code=status.HTTP_201_CREATED)
def create_character_route(
    payload: CreateCharacterRequest,
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> ReducerResponse:
    outcome = call_reducer(
        r=r,
        name="create_character",
        sender=identity,
        timestamp=timestamp,
        args=payload.model_dump(),
        policy=policy,
    )
    return _respond(outcome)


@router.post("/reducers/update_position", response_model=ReducerResponse)
def update_position_route(
    payload: UpdatePositionRequest,
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> ReducerResponse:
    outcome = call_reducer(
        r=r,
        name="update_position",
        sender=identity,
        timestamp=timestamp,
        args=payload.model_dump(),
        policy=policy,
    )
    return _respond(outcome)


@router.post("/reducers/login", response_model=ReducerResponse)
def login_route(
    payload: LoginRequest,
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> ReducerResponse:
    outcome = call_reducer(
        r=r,
        name="login",
        sender=identity,
        timestamp=timestamp,
        args={"character_id": payload.character_id},
        policy=policy,
    )
    return _respond(outcome)


@router.post("/reducers/logout", response_model=ReducerResponse)
def logout_route(
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> ReducerResponse:
    outcome = call_reducer(r=r, name="logout", sender=identity, timestamp=timestamp, policy=policy)
    return _respond(outcome)


# --- Lifecycle hooks ---


@router.post("/lifecycle/connect", status_code=status.HTTP_204_NO_CONTENT)
def connect_route(
    request: Request,
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> None:
    address = request.client.host if request.client else None
    run_lifecycle_hook(r=r, hook="client_connected", sender=identity, timestamp=timestamp, address=address, policy=policy)


@router.post("/lifecycle/disconnect", status_code=status.HTTP_204_NO_CONTENT)
def disconnect_route(
    identity: str = Depends(get_caller_identity),
    timestamp: int = Depends(get_timestamp),
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> None:
    run_lifecycle_hook(r=r, hook="client_disconnected", sender=identity, timestamp=timestamp, policy=policy)


@router.websocket("/ws/session")
async def session_ws(
    websocket: WebSocket,
    policy: ModulePolicy = Depends(get_module_policy),
    r: redis.Redis = Depends(get_redis),
) -> None:
    """Ties a session's lifetime to a websocket connection.

    Connecting runs the connect hook; the socket closing, cleanly or not,
    runs the disconnect hook.
    """

    identity = websocket.headers.get("x-identity")
    if not identity:
        logger.info("rejecting session websocket without X-Identity")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    address = websocket.client.host if websocket.client else None
    await run_in_threadpool(
        run_lifecycle_hook,
        r=r,
        hook="client_connected",
        sender=identity,
        timestamp=get_timestamp(),
        address=address,
        policy=policy,
    )
    try:
        await websocket.accept()
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await run_in_threadpool(
            run_lifecycle_hook,
            r=r,
            hook="client_disconnected",
            sender=identity,
            timestamp=get_timestamp(),
            policy=policy,
        )


# --- Read projections ---


@router.get("/accounts/{identity}", response_model=Account)
async def get_account_route(identity: str, r: redis.Redis = Depends(get_redis)) -> Account:
    account = accounts.get_account(Transaction(r=r), identity)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    return account


@router.get("/accounts/{identity}/characters", response_model=CharacterListResponse)
async def list_account_characters_route(identity: str, r: redis.Redis = Depends(get_redis)) -> CharacterListResponse:
    return CharacterListResponse(characters=characters.characters_of(Transaction(r=r), identity))


@router.get("/sessions/{identity}", response_model=Session)
async def get_session_route(identity: str, r: redis.Redis = Depends(get_redis)) -> Session:
    session = sessions.get_session(Transaction(r=r), identity)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return session


@router.get("/characters/by-name/{name}", response_model=Character)
async def get_character_by_name_route(name: str, r: redis.Redis = Depends(get_redis)) -> Character:
    character = characters.by_name(Transaction(r=r), name)
    if character is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Character not found")
    return character


@router.get("/characters/{character_id}", response_model=Character)
async def get_character_route(character_id: int, r: redis.Redis = Depends(get_redis)) -> Character:
    character = characters.get_character(Transaction(r=r), character_id)
    if character is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Character not found")
    return character


@router.get("/characters/{character_id}/appearance", response_model=Appearance)
async def get_appearance_route(character_id: int, r: redis.Redis = Depends(get_redis)) -> Appearance:
    appearance = characters.get_appearance(Transaction(r=r), character_id)
    if appearance is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Appearance not found")
    return appearance

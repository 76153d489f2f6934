from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Direction(StrEnum):
    up = "up"
    down = "down"
    left = "left"
    right = "right"


class Record(BaseModel):
    """A table row.

    Rows are immutable; an update builds a new row with `model_copy(update=...)`
    and writes the whole row back.
    """

    model_config = ConfigDict(frozen=True)


class Account(Record):
    identity: str
    username: str
    created_at: int
    last_login: int


class Character(Record):
    id: int
    owner_identity: str
    name: str
    class_name: str
    level: int = 1
    x: float
    y: float
    direction: Direction = Direction.down
    created_at: int
    last_updated: int


class Appearance(Record):
    character_id: int
    skin: str
    hair: str
    eyes: str
    outfit: str


class Session(Record):
    identity: str
    # None until the player logs in with a character.
    character_id: int | None = None
    address: str | None = None
    connected_at: int
    last_activity: int


class Counter(Record):
    name: str
    value: int = 0


# --- Requests ---


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=32)

    @field_validator("username")
    @classmethod
    def _strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be blank")
        return v


class AppearanceFields(BaseModel):
    skin: str = Field(..., min_length=1, max_length=64)
    hair: str = Field(..., min_length=1, max_length=64)
    eyes: str = Field(..., min_length=1, max_length=64)
    outfit: str = Field(..., min_length=1, max_length=64)


class CreateCharacterRequest(AppearanceFields):
    name: str = Field(..., min_length=1, max_length=32)
    class_name: str = Field(..., min_length=1, max_length=32)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    def appearance(self) -> AppearanceFields:
        return AppearanceFields(skin=self.skin, hair=self.hair, eyes=self.eyes, outfit=self.outfit)


class UpdatePositionRequest(BaseModel):
    character_id: int = Field(..., ge=1)
    x: float
    y: float
    direction: Direction | None = None


class LoginRequest(BaseModel):
    character_id: int = Field(..., ge=1)


# --- Responses ---


class ReducerResponse(BaseModel):
    ok: bool = True
    value: Any = None


class CharacterListResponse(BaseModel):
    characters: list[Character]

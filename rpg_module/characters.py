from __future__ import annotations

import logging

from rpg_module import accounts, ids
from rpg_module.api.models import Appearance, AppearanceFields, Character, Direction
from rpg_module.config import ModulePolicy
from rpg_module.errors import NameTaken, NotFound, NotLoggedIn, NotOwner, NotRegistered
from rpg_module.store.tables import Table
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

CHARACTERS: Table[Character] = Table(name="rpg:character", model=Character, key_field="id")
APPEARANCES: Table[Appearance] = Table(name="rpg:appearance", model=Appearance, key_field="character_id")

STARTER_SPAWN = (100.0, 100.0)

# (suffix, class, appearance) granted on registration when the policy enables it.
STARTER_CHARACTERS: tuple[tuple[str, str, AppearanceFields], ...] = (
    ("Warrior", "warrior", AppearanceFields(skin="1", hair="1", eyes="2", outfit="warrior")),
    ("Mage", "mage", AppearanceFields(skin="2", hair="3", eyes="4", outfit="mage")),
)


def get_character(tx: Transaction, character_id: int) -> Character | None:
    return CHARACTERS.get(tx, character_id)


def get_appearance(tx: Transaction, character_id: int) -> Appearance | None:
    return APPEARANCES.get(tx, character_id)


def owner_of(tx: Transaction, character_id: int) -> str | None:
    character = CHARACTERS.get(tx, character_id)
    return character.owner_identity if character is not None else None


def by_name(tx: Transaction, name: str) -> Character | None:
    matches = CHARACTERS.scan_where(tx, lambda c: c.name == name)
    if not matches:
        return None
    # Only possible to see several under a non-global uniqueness policy.
    return min(matches, key=lambda c: c.id)


def characters_of(tx: Transaction, owner_identity: str) -> list[Character]:
    rows = CHARACTERS.scan_where(tx, lambda c: c.owner_identity == owner_identity)
    return sorted(rows, key=lambda c: c.id)


def _name_taken(tx: Transaction, *, owner_identity: str, name: str, policy: ModulePolicy) -> bool:
    if policy.name_uniqueness == "none":
        return False
    if policy.name_uniqueness == "per_account":
        return bool(CHARACTERS.scan_where(tx, lambda c: c.name == name and c.owner_identity == owner_identity))
    return by_name(tx, name) is not None


def _is_starter_name(name: str) -> bool:
    suffix, sep, number = name.rpartition(" #")
    return bool(sep) and number.isdigit() and suffix in {s for s, _, _ in STARTER_CHARACTERS}


def create(
    tx: Transaction,
    *,
    owner_identity: str,
    name: str,
    class_name: str,
    appearance: AppearanceFields,
    now: int,
    policy: ModulePolicy,
    spawn: tuple[float, float] | None = None,
) -> int:
    """Create a character and its appearance in one transaction; return the new id."""

    if not accounts.exists(tx, owner_identity):
        raise NotRegistered("User not registered")

    # "<Starter> #<id>" names belong to granted starters.
    if _is_starter_name(name):
        raise NameTaken(f"Character name is reserved: {name}")

    if _name_taken(tx, owner_identity=owner_identity, name=name, policy=policy):
        raise NameTaken(f"Character name already taken: {name}")

    character_id = ids.next_id(tx, ids.CHARACTER_ID)
    _insert(
        tx,
        character_id=character_id,
        owner_identity=owner_identity,
        name=name,
        class_name=class_name,
        appearance=appearance,
        now=now,
        spawn=spawn if spawn is not None else (policy.spawn_x, policy.spawn_y),
    )
    return character_id


def _insert(
    tx: Transaction,
    *,
    character_id: int,
    owner_identity: str,
    name: str,
    class_name: str,
    appearance: AppearanceFields,
    now: int,
    spawn: tuple[float, float],
) -> None:
    x, y = spawn
    CHARACTERS.insert(
        tx,
        Character(
            id=character_id,
            owner_identity=owner_identity,
            name=name,
            class_name=class_name,
            level=1,
            x=x,
            y=y,
            direction=Direction.down,
            created_at=now,
            last_updated=now,
        ),
    )
    APPEARANCES.insert(tx, Appearance(character_id=character_id, **appearance.model_dump()))

    logger.info("created character %s (%s) for %s", character_id, name, owner_identity)


def grant_starter_characters(tx: Transaction, *, owner_identity: str, now: int) -> list[int]:
    """Give a new account one character per starter template.

    Starter names carry the allocated id ("Warrior #3"), so they never
    collide with each other and ordinary names cannot take that form.
    """

    created: list[int] = []
    for suffix, class_name, appearance in STARTER_CHARACTERS:
        character_id = ids.next_id(tx, ids.CHARACTER_ID)
        _insert(
            tx,
            character_id=character_id,
            owner_identity=owner_identity,
            name=f"{suffix} #{character_id}",
            class_name=class_name,
            appearance=appearance,
            now=now,
            spawn=STARTER_SPAWN,
        )
        created.append(character_id)
    return created


def update_position(
    tx: Transaction,
    *,
    character_id: int,
    caller_identity: str,
    x: float,
    y: float,
    direction: Direction | None,
    now: int,
    policy: ModulePolicy,
) -> Character:
    from rpg_module import sessions

    character = CHARACTERS.get(tx, character_id)
    if character is None:
        raise NotFound("Character not found")
    if character.owner_identity != caller_identity:
        raise NotOwner("Not your character")

    if policy.move_requires_session:
        session = sessions.get_session(tx, caller_identity)
        if session is None or session.character_id != character_id:
            raise NotLoggedIn("Not logged in with this character")

    updated = character.model_copy(
        update={
            "x": x,
            "y": y,
            "direction": direction if direction is not None else character.direction,
            "last_updated": now,
        }
    )
    CHARACTERS.replace(tx, updated)
    sessions.touch_activity(tx, identity=caller_identity, now=now)
    return updated

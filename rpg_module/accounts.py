from __future__ import annotations

import logging

from rpg_module.api.models import Account
from rpg_module.config import ModulePolicy
from rpg_module.errors import AlreadyRegistered, NotRegistered
from rpg_module.store.tables import Table
from rpg_module.store.transaction import Transaction

logger = logging.getLogger(__name__)

ACCOUNTS: Table[Account] = Table(name="rpg:account", model=Account, key_field="identity")


def get_account(tx: Transaction, identity: str) -> Account | None:
    return ACCOUNTS.get(tx, identity)


def exists(tx: Transaction, identity: str) -> bool:
    return ACCOUNTS.exists(tx, identity)


def register(tx: Transaction, *, identity: str, username: str, now: int, policy: ModulePolicy) -> bool:
    """Create the account for `identity`.

    Returns True when a new account was created, False when an existing one
    was refreshed (policy "refresh"). Under policy "reject" an existing
    account raises AlreadyRegistered.
    """

    existing = ACCOUNTS.get(tx, identity)
    if existing is not None:
        if policy.register_existing == "reject":
            raise AlreadyRegistered("User already registered")
        ACCOUNTS.replace(tx, existing.model_copy(update={"last_login": now}))
        return False

    ACCOUNTS.insert(tx, Account(identity=identity, username=username, created_at=now, last_login=now))
    logger.info("registered account %s (%s)", identity, username)
    return True


def touch_login(tx: Transaction, *, identity: str, now: int) -> Account:
    account = ACCOUNTS.get(tx, identity)
    if account is None:
        raise NotRegistered("User not registered")
    return ACCOUNTS.replace(tx, account.model_copy(update={"last_login": now}))

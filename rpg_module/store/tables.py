from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from rpg_module.api.models import Record
from rpg_module.store.transaction import Transaction

M = TypeVar("M", bound=Record)


class DuplicateKeyError(RuntimeError):
    pass


class MissingRowError(RuntimeError):
    pass


@dataclass(frozen=True)
class Table(Generic[M]):
    """Typed repository for one Redis hash.

    Each row is stored as JSON under its primary key. All access goes
    through a `Transaction`, so writes become visible only on commit.
    """

    name: str
    model: type[M]
    key_field: str

    def key_of(self, row: M) -> str:
        return str(getattr(row, self.key_field))

    def get(self, tx: Transaction, key: object) -> M | None:
        raw = tx.get(self.name, str(key))
        if raw is None:
            return None
        return self.model.model_validate_json(raw)

    def exists(self, tx: Transaction, key: object) -> bool:
        return tx.get(self.name, str(key)) is not None

    def scan_where(self, tx: Transaction, predicate: Callable[[M], bool]) -> list[M]:
        out: list[M] = []
        for raw in tx.rows(self.name).values():
            row = self.model.model_validate_json(raw)
            if predicate(row):
                out.append(row)
        return out

    def insert(self, tx: Transaction, row: M) -> M:
        key = self.key_of(row)
        if self.exists(tx, key):
            raise DuplicateKeyError(f"{self.name}: key {key!r} already exists")
        tx.put(self.name, key, row.model_dump_json())
        return row

    def replace(self, tx: Transaction, row: M) -> M:
        key = self.key_of(row)
        if not self.exists(tx, key):
            raise MissingRowError(f"{self.name}: key {key!r} does not exist")
        tx.put(self.name, key, row.model_dump_json())
        return row

    def upsert(self, tx: Transaction, row: M) -> M:
        tx.put(self.name, self.key_of(row), row.model_dump_json())
        return row

    def delete(self, tx: Transaction, key: object) -> bool:
        if not self.exists(tx, key):
            return False
        tx.delete(self.name, str(key))
        return True

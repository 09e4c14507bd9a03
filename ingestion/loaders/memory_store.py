"""
In-memory implementation of the store contract.

Used by the test suite and by `run_ingest.py --dry-run`. Enforces the same
uniqueness keys as the database schema; a key is only checked when all of
its fields are set.
"""

from copy import deepcopy
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from core.exceptions import DatabaseError, DuplicateEntityError
from ingestion.loaders.store import UNIQUE_KEYS, Entity, age_field
from models.base import EntityKind

logger = logging.getLogger(__name__)


class InMemoryStore:
    def __init__(self):
        self._tables: Dict[EntityKind, Dict[int, Entity]] = {kind: {} for kind in EntityKind}
        self._next_id: Dict[EntityKind, int] = {kind: 1 for kind in EntityKind}

    def all(self, kind: EntityKind):
        """Snapshot of every entity of a kind, in id order"""
        return [deepcopy(e) for _, e in sorted(self._tables[kind].items())]

    @staticmethod
    def _matches(entity: Entity, criteria: Dict[str, Any]) -> bool:
        return all(entity.get(k) == v for k, v in criteria.items())

    def _check_unique(self, kind: EntityKind, fields: Dict[str, Any], exclude_id: Optional[int] = None):
        for key in UNIQUE_KEYS.get(kind, []):
            values = tuple(fields.get(k) for k in key)
            if any(v is None for v in values):
                continue
            for entity_id, entity in self._tables[kind].items():
                if entity_id == exclude_id:
                    continue
                if tuple(entity.get(k) for k in key) == values:
                    raise DuplicateEntityError(
                        f"Duplicate {kind.value}",
                        context={"entity_kind": kind.value, "conflict_fields": list(key)}
                    )

    async def find(self, kind: EntityKind, criteria: Dict[str, Any]) -> Optional[Entity]:
        for _, entity in sorted(self._tables[kind].items()):
            if self._matches(entity, criteria):
                return deepcopy(entity)
        return None

    async def create(self, kind: EntityKind, fields: Dict[str, Any]) -> Entity:
        self._check_unique(kind, fields)

        entity_id = self._next_id[kind]
        self._next_id[kind] += 1

        entity = deepcopy(fields)
        entity["id"] = entity_id
        self._tables[kind][entity_id] = entity
        return deepcopy(entity)

    async def update(self, kind: EntityKind, entity_id: int, fields: Dict[str, Any]) -> Entity:
        entity = self._tables[kind].get(entity_id)
        if entity is None:
            raise DatabaseError(
                f"{kind.value} {entity_id} not found",
                context={"operation": "update", "entity_kind": kind.value, "id": entity_id}
            )

        merged = {**entity, **deepcopy(fields)}
        self._check_unique(kind, merged, exclude_id=entity_id)
        entity.update(deepcopy(fields))
        return deepcopy(entity)

    async def delete_older_than(
        self, kind: EntityKind, cutoff: datetime, field: Optional[str] = None
    ) -> int:
        name = age_field(kind, field)
        table = self._tables[kind]
        doomed = [
            entity_id for entity_id, entity in table.items()
            if entity.get(name) is not None and entity[name] < cutoff
        ]
        for entity_id in doomed:
            del table[entity_id]
        return len(doomed)

    async def count(self, kind: EntityKind, criteria: Optional[Dict[str, Any]] = None) -> int:
        return sum(1 for e in self._tables[kind].values() if self._matches(e, criteria or {}))

    async def update_before(
        self, kind: EntityKind, field: str, cutoff: datetime, fields: Dict[str, Any]
    ) -> int:
        changed = 0
        for entity in self._tables[kind].values():
            value = entity.get(field)
            if value is None or value >= cutoff:
                continue
            if all(entity.get(k) == v for k, v in fields.items()):
                continue
            entity.update(deepcopy(fields))
            changed += 1
        return changed

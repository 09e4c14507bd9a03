"""
Store contract consumed by the import runner.

Entities are plain dicts carrying an integer "id". Implementations must
enforce the uniqueness keys in UNIQUE_KEYS and raise DuplicateEntityError
when a create or update would violate one.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple

from models.base import EntityKind

Entity = Dict[str, Any]

UNIQUE_KEYS: Dict[EntityKind, List[Tuple[str, ...]]] = {
    EntityKind.COMPANY: [("slug",)],
    EntityKind.COUNTY: [("state_code", "slug"), ("fips",)],
    EntityKind.WARN_NOTICE: [("dedupe_hash",)],
    EntityKind.WEATHER_ALERT: [("alert_id", "county_id")],
    EntityKind.OUTAGE: [("utility", "county_id", "reported_at")],
    EntityKind.RECALL: [("agency", "recall_id")],
    EntityKind.SCAM_ALERT: [("source_url",)],
    EntityKind.REMOTE_JOB: [("remote_id",)],
    EntityKind.IMPORT_RUN: [],
}

# Field compared against the cutoff by delete_older_than
AGE_FIELDS: Dict[EntityKind, str] = {
    EntityKind.OUTAGE: "reported_at",
    EntityKind.REMOTE_JOB: "published_at",
}


class Store(Protocol):
    async def find(self, kind: EntityKind, criteria: Dict[str, Any]) -> Optional[Entity]:
        """First entity (lowest id) whose fields equal every criterion"""
        ...

    async def create(self, kind: EntityKind, fields: Dict[str, Any]) -> Entity:
        """Insert; DuplicateEntityError on a uniqueness violation"""
        ...

    async def update(self, kind: EntityKind, entity_id: int, fields: Dict[str, Any]) -> Entity:
        ...

    async def delete_older_than(
        self, kind: EntityKind, cutoff: datetime, field: Optional[str] = None
    ) -> int:
        """Delete rows whose age field is strictly before cutoff; rows at cutoff are kept"""
        ...

    async def count(self, kind: EntityKind, criteria: Optional[Dict[str, Any]] = None) -> int:
        ...

    async def update_before(
        self, kind: EntityKind, field: str, cutoff: datetime, fields: Dict[str, Any]
    ) -> int:
        """Set fields on rows with field < cutoff that do not already hold those values"""
        ...


def age_field(kind: EntityKind, field: Optional[str] = None) -> str:
    if field:
        return field
    try:
        return AGE_FIELDS[kind]
    except KeyError:
        raise ValueError(f"No age field defined for {kind.value}")

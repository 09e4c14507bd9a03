"""
SQLAlchemy implementation of the store contract (PostgreSQL in production)
"""

from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlalchemy import delete, func, inspect as sa_inspect, or_, select, update
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from core.database import create_engine, create_session_maker
from core.exceptions import DatabaseConnectionError, DatabaseError, DuplicateEntityError
from ingestion.loaders.store import Entity, age_field
from models import (
    Company,
    County,
    ImportRun,
    Outage,
    Recall,
    RemoteJob,
    ScamAlert,
    WarnNotice,
    WeatherAlert,
)
from models.base import EntityKind

logger = logging.getLogger(__name__)

MODELS = {
    EntityKind.COMPANY: Company,
    EntityKind.COUNTY: County,
    EntityKind.WARN_NOTICE: WarnNotice,
    EntityKind.WEATHER_ALERT: WeatherAlert,
    EntityKind.OUTAGE: Outage,
    EntityKind.RECALL: Recall,
    EntityKind.SCAM_ALERT: ScamAlert,
    EntityKind.REMOTE_JOB: RemoteJob,
    EntityKind.IMPORT_RUN: ImportRun,
}


def _is_unique_violation(error: IntegrityError) -> bool:
    message = str(error.orig if error.orig is not None else error).lower()
    return "unique" in message or "duplicate" in message


class SQLAlchemyStore:
    """
    Store backed by SQLAlchemy async sessions.

    Ensures:
    - One session and one commit per call (no run-wide transaction), so a
      crash leaves previously committed records intact
    - Uniqueness violations surface as DuplicateEntityError
    - Driver/connectivity failures surface as DatabaseError
    """

    def __init__(self, session_maker: async_sessionmaker, engine: Optional[AsyncEngine] = None):
        self.session_maker = session_maker
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: Optional[str] = None) -> "SQLAlchemyStore":
        engine = create_engine(database_url)
        return cls(create_session_maker(engine), engine)

    async def close(self):
        if self.engine is not None:
            await self.engine.dispose()

    @staticmethod
    def _to_entity(obj) -> Entity:
        return {attr.key: getattr(obj, attr.key) for attr in sa_inspect(obj).mapper.column_attrs}

    def _wrap(self, e: Exception, operation: str, kind: EntityKind, **context) -> DatabaseError:
        error_cls = DatabaseConnectionError if isinstance(e, (OperationalError, InterfaceError, OSError)) else DatabaseError
        return error_cls(
            f"Store {operation} failed for {kind.value}",
            context={"operation": operation, "entity_kind": kind.value, **context},
            original_exception=e
        )

    async def find(self, kind: EntityKind, criteria: Dict[str, Any]) -> Optional[Entity]:
        model = MODELS[kind]
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    select(model).filter_by(**criteria).order_by(model.id).limit(1)
                )
                obj = result.scalar_one_or_none()
                return self._to_entity(obj) if obj is not None else None
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "find", kind)

    async def create(self, kind: EntityKind, fields: Dict[str, Any]) -> Entity:
        model = MODELS[kind]
        try:
            async with self.session_maker() as session:
                obj = model(**fields)
                session.add(obj)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    if _is_unique_violation(e):
                        raise DuplicateEntityError(
                            f"Duplicate {kind.value}",
                            context={"entity_kind": kind.value},
                            original_exception=e
                        )
                    raise
                await session.refresh(obj)
                return self._to_entity(obj)
        except DuplicateEntityError:
            raise
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "create", kind)

    async def update(self, kind: EntityKind, entity_id: int, fields: Dict[str, Any]) -> Entity:
        model = MODELS[kind]
        try:
            async with self.session_maker() as session:
                obj = await session.get(model, entity_id)
                if obj is None:
                    raise DatabaseError(
                        f"{kind.value} {entity_id} not found",
                        context={"operation": "update", "entity_kind": kind.value, "id": entity_id}
                    )
                for key, value in fields.items():
                    setattr(obj, key, value)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    if _is_unique_violation(e):
                        raise DuplicateEntityError(
                            f"Duplicate {kind.value} on update",
                            context={"entity_kind": kind.value, "id": entity_id},
                            original_exception=e
                        )
                    raise
                await session.refresh(obj)
                return self._to_entity(obj)
        except (DatabaseError, DuplicateEntityError):
            raise
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "update", kind, id=entity_id)

    async def delete_older_than(
        self, kind: EntityKind, cutoff: datetime, field: Optional[str] = None
    ) -> int:
        model = MODELS[kind]
        column = getattr(model, age_field(kind, field))
        try:
            async with self.session_maker() as session:
                result = await session.execute(
                    delete(model).where(column < cutoff).execution_options(synchronize_session=False)
                )
                await session.commit()
                return result.rowcount or 0
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "delete", kind, cutoff=cutoff.isoformat())

    async def count(self, kind: EntityKind, criteria: Optional[Dict[str, Any]] = None) -> int:
        model = MODELS[kind]
        try:
            async with self.session_maker() as session:
                stmt = select(func.count()).select_from(model)
                if criteria:
                    stmt = stmt.where(*(getattr(model, k) == v for k, v in criteria.items()))
                result = await session.execute(stmt)
                return result.scalar_one()
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "count", kind)

    async def update_before(
        self, kind: EntityKind, field: str, cutoff: datetime, fields: Dict[str, Any]
    ) -> int:
        model = MODELS[kind]
        stmt = (
            update(model)
            .where(getattr(model, field) < cutoff)
            .where(or_(*(getattr(model, k).is_distinct_from(v) for k, v in fields.items())))
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount or 0
        except (SQLAlchemyError, OSError) as e:
            raise self._wrap(e, "update_before", kind, field=field)

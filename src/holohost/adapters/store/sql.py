"""SQL instance store (SQLAlchemy async + SQLModel).

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) in tests.
SQLAlchemy errors surface as StoreError.
"""

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from holohost.core.errors import StoreError
from holohost.core.interfaces.store import AuditLog, InstanceStore
from holohost.core.models import AuditEntry, Instance
from holohost.infra.models import AuditLogRow, InstanceRow
from holohost.logging_schema import LogEvent

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo
    return value if value.tzinfo else value.replace(tzinfo=UTC)


def _to_instance(row: InstanceRow) -> Instance:
    return Instance(
        id=row.id,
        owner_id=row.owner_id,
        name=row.name,
        security_code=row.security_code,
        container_id=row.container_id,
        status=row.status,
        port=row.port,
        credential_encrypted=row.credential_encrypted,
        config=row.config,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _store_error(operation: str, error: SQLAlchemyError) -> StoreError:
    logger.error(
        "Store operation failed",
        extra={
            "event": LogEvent.DB_ERROR,
            "operation": operation,
            "error_type": type(error).__name__,
            "error": str(error),
        },
    )
    return StoreError(f"Store {operation} failed: {type(error).__name__}")


class SqlInstanceStore(InstanceStore):
    """Instance records in the `instances` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def insert(self, record: Instance) -> Instance:
        row = InstanceRow(
            **record.model_dump(exclude={"config"}),
            config=record.config.model_dump(),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise _store_error("insert", e) from e
        return record

    async def get_by_id(self, instance_id: str) -> Instance | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(InstanceRow, instance_id)
        except SQLAlchemyError as e:
            raise _store_error("get", e) from e
        return _to_instance(row) if row else None

    async def get_by_security_code(self, security_code: str) -> Instance | None:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(InstanceRow).where(col(InstanceRow.security_code) == security_code)
                )
                row = result.scalars().first()
        except SQLAlchemyError as e:
            raise _store_error("get", e) from e
        return _to_instance(row) if row else None

    async def list_by_owner(self, owner_id: str) -> list[Instance]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(InstanceRow)
                    .where(col(InstanceRow.owner_id) == owner_id)
                    .order_by(col(InstanceRow.created_at).desc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise _store_error("list", e) from e
        return [_to_instance(row) for row in rows]

    async def update(self, instance_id: str, patch: dict[str, Any]) -> Instance:
        try:
            async with self._session_factory() as session:
                row = await session.get(InstanceRow, instance_id)
                if row is None:
                    raise StoreError(f"Instance not found: {instance_id}")
                for field, value in patch.items():
                    if isinstance(value, BaseModel):
                        value = value.model_dump()
                    setattr(row, field, value)
                row.updated_at = datetime.now(UTC)
                await session.commit()
                instance = _to_instance(row)
        except SQLAlchemyError as e:
            raise _store_error("update", e) from e
        return instance

    async def delete(self, instance_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(InstanceRow).where(col(InstanceRow.id) == instance_id)
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise _store_error("delete", e) from e


class SqlAuditLog(AuditLog):
    """Audit trail in the `audit_log` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(
        self,
        owner_id: str,
        instance_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        row = AuditLogRow(
            owner_id=owner_id,
            instance_id=instance_id,
            action=action,
            details=details,
            created_at=datetime.now(UTC),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise _store_error("audit", e) from e

    async def list_for_owner(self, owner_id: str) -> list[AuditEntry]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(AuditLogRow)
                    .where(col(AuditLogRow.owner_id) == owner_id)
                    .order_by(col(AuditLogRow.id).desc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise _store_error("audit list", e) from e
        return [
            AuditEntry(
                owner_id=row.owner_id,
                instance_id=row.instance_id,
                action=row.action,
                details=row.details,
                created_at=_aware(row.created_at),
            )
            for row in rows
        ]

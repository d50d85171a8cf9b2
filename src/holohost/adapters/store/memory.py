"""In-memory instance store (development and tests)."""

from datetime import UTC, datetime
from typing import Any

from holohost.core.errors import StoreError
from holohost.core.interfaces.store import AuditLog, InstanceStore
from holohost.core.models import AuditEntry, Instance


class InMemoryInstanceStore(InstanceStore):
    """Process-local store. Records are lost on restart."""

    def __init__(self) -> None:
        self._records: dict[str, Instance] = {}

    async def insert(self, record: Instance) -> Instance:
        if record.id in self._records:
            raise StoreError(f"Instance already exists: {record.id}")
        if any(r.security_code == record.security_code for r in self._records.values()):
            raise StoreError("Duplicate security code")
        self._records[record.id] = record
        return record

    async def get_by_id(self, instance_id: str) -> Instance | None:
        return self._records.get(instance_id)

    async def get_by_security_code(self, security_code: str) -> Instance | None:
        for record in self._records.values():
            if record.security_code == security_code:
                return record
        return None

    async def list_by_owner(self, owner_id: str) -> list[Instance]:
        records = [r for r in self._records.values() if r.owner_id == owner_id]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def update(self, instance_id: str, patch: dict[str, Any]) -> Instance:
        record = self._records.get(instance_id)
        if record is None:
            raise StoreError(f"Instance not found: {instance_id}")
        updated = Instance.model_validate(
            {**record.model_dump(), **patch, "updated_at": datetime.now(UTC)}
        )
        self._records[instance_id] = updated
        return updated

    async def delete(self, instance_id: str) -> None:
        self._records.pop(instance_id, None)


class InMemoryAuditLog(AuditLog):
    """Process-local audit trail."""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def record(
        self,
        owner_id: str,
        instance_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.entries.append(
            AuditEntry(
                owner_id=owner_id,
                instance_id=instance_id,
                action=action,
                details=details,
                created_at=datetime.now(UTC),
            )
        )

    async def list_for_owner(self, owner_id: str) -> list[AuditEntry]:
        return [e for e in reversed(self.entries) if e.owner_id == owner_id]

"""Instance store and audit log interfaces.

The store is the single source of truth for instance status. The core only
relies on these operations and treats failures as opaque StoreError.

Implementations: InMemoryInstanceStore, SqlInstanceStore
"""

from abc import ABC, abstractmethod
from typing import Any

from holohost.core.models import AuditEntry, Instance


class InstanceStore(ABC):
    """Persistence of instance records."""

    @abstractmethod
    async def insert(self, record: Instance) -> Instance:
        """Persist a new record and return it as stored."""
        ...

    @abstractmethod
    async def get_by_id(self, instance_id: str) -> Instance | None: ...

    @abstractmethod
    async def get_by_security_code(self, security_code: str) -> Instance | None: ...

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Instance]:
        """List an owner's instances, newest first."""
        ...

    @abstractmethod
    async def update(self, instance_id: str, patch: dict[str, Any]) -> Instance:
        """Apply a field patch and bump updated_at.

        Raises:
            StoreError: Record missing or persistence failure
        """
        ...

    @abstractmethod
    async def delete(self, instance_id: str) -> None:
        """Delete a record. Dependent records cascade at the store layer."""
        ...


class AuditLog(ABC):
    """Append-only audit trail of lifecycle actions."""

    @abstractmethod
    async def record(
        self,
        owner_id: str,
        instance_id: str | None,
        action: str,
        details: dict[str, Any] | None = None,
    ) -> None: ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> list[AuditEntry]: ...

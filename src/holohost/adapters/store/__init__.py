"""Instance store implementations."""

from holohost.adapters.store.memory import InMemoryAuditLog, InMemoryInstanceStore
from holohost.adapters.store.sql import SqlAuditLog, SqlInstanceStore

__all__ = [
    "InMemoryAuditLog",
    "InMemoryInstanceStore",
    "SqlAuditLog",
    "SqlInstanceStore",
]

"""Core interfaces."""

from holohost.core.interfaces.driver import ContainerDriver, LogStream
from holohost.core.interfaces.store import AuditLog, InstanceStore
from holohost.core.interfaces.transport import Subscriber

__all__ = [
    # Container driver
    "ContainerDriver",
    "LogStream",
    # Persistence
    "InstanceStore",
    "AuditLog",
    # Realtime
    "Subscriber",
]

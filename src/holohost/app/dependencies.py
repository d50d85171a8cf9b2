"""Runtime wiring for the application.

The process entry point builds every component once and passes
dependencies explicitly; request handlers reach them through get_runtime().
"""

from __future__ import annotations

from dataclasses import dataclass

from holohost.adapters.driver import DockerContainerDriver
from holohost.adapters.store import (
    InMemoryAuditLog,
    InMemoryInstanceStore,
    SqlAuditLog,
    SqlInstanceStore,
)
from holohost.config import HoloHostConfig
from holohost.core.interfaces import AuditLog, ContainerDriver, InstanceStore
from holohost.core.security import SecretCodec
from holohost.infra.postgresql import Database
from holohost.services import InstanceManager, RealtimeBroadcaster


@dataclass
class Runtime:
    """Components shared by all request handlers."""

    driver: ContainerDriver
    store: InstanceStore
    audit: AuditLog
    manager: InstanceManager
    broadcaster: RealtimeBroadcaster
    database: Database | None = None
    ws_query_auth: bool = False

    async def close(self) -> None:
        await self.broadcaster.close()
        await self.driver.close()
        if self.database:
            await self.database.close()


async def build_runtime(config: HoloHostConfig) -> Runtime:
    """Build all components from configuration."""
    codec = SecretCodec(config.security.encryption_key)
    driver = DockerContainerDriver(config.docker)

    database: Database | None = None
    store: InstanceStore
    audit: AuditLog
    if config.database.backend == "sql":
        database = Database(config.database)
        await database.init()
        store = SqlInstanceStore(database.session_factory)
        audit = SqlAuditLog(database.session_factory)
    else:
        store = InMemoryInstanceStore()
        audit = InMemoryAuditLog()

    manager = InstanceManager(driver, store, audit, codec, config.security)
    broadcaster = RealtimeBroadcaster(
        driver,
        poll_interval=config.broadcaster.poll_interval,
        log_tail=config.broadcaster.log_tail,
    )
    return Runtime(
        driver=driver,
        store=store,
        audit=audit,
        manager=manager,
        broadcaster=broadcaster,
        database=database,
        ws_query_auth=config.server.ws_query_auth,
    )


_runtime: Runtime | None = None


async def init_runtime(config: HoloHostConfig) -> Runtime:
    """Initialize the runtime. Must be called during app startup."""
    global _runtime
    _runtime = await build_runtime(config)
    return _runtime


async def close_runtime() -> None:
    """Close runtime and release resources."""
    global _runtime
    if _runtime:
        await _runtime.close()
        _runtime = None


def get_runtime() -> Runtime:
    """Get the runtime.

    Raises:
        RuntimeError: If called before init_runtime().
    """
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


def set_runtime(runtime: Runtime) -> None:
    """Install a prebuilt runtime (for testing)."""
    global _runtime
    _runtime = runtime


def reset_runtime() -> None:
    """Reset runtime (for testing)."""
    global _runtime
    _runtime = None

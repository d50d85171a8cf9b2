"""Shared fixtures for HoloHost unit tests."""

import asyncio
from collections import defaultdict

import pytest

from holohost.adapters.store import InMemoryAuditLog, InMemoryInstanceStore
from holohost.config import SecurityConfig
from holohost.core.domain import ContainerState
from holohost.core.errors import DriverError
from holohost.core.events import ServerEvent
from holohost.core.interfaces import ContainerDriver, LogStream, Subscriber
from holohost.core.models import (
    ContainerSpec,
    ContainerStats,
    ContainerStatus,
    CreatedContainer,
)
from holohost.core.security import SecretCodec
from holohost.services import InstanceManager, RealtimeBroadcaster

MASTER_SECRET = "test-master-secret-0123456789abcdef"


class FakeLogStream(LogStream):
    """Log stream fed from a queue. None ends the stream, an exception fails it."""

    def __init__(self, chunks: list[bytes | Exception] | None = None) -> None:
        self.queue: asyncio.Queue[bytes | Exception | None] = asyncio.Queue()
        self.closed = False
        for chunk in chunks or []:
            self.queue.put_nowait(chunk)

    def push(self, item: bytes | Exception | None) -> None:
        self.queue.put_nowait(item)

    async def __aiter__(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def aclose(self) -> None:
        self.closed = True


class FakeContainerDriver(ContainerDriver):
    """In-memory container driver.

    Set `failures[operation]` to an exception to make that operation raise.
    `calls[operation]` counts invocations.
    """

    def __init__(self) -> None:
        self.containers: dict[str, ContainerStatus] = {}
        self.stats: dict[str, ContainerStats] = {}
        self.log_streams: dict[str, FakeLogStream] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: defaultdict[str, int] = defaultdict(int)
        self.specs: list[ContainerSpec] = []
        self.healthy = True
        self._next_port = 3001

    def _enter(self, operation: str) -> None:
        self.calls[operation] += 1
        if operation in self.failures:
            raise self.failures[operation]

    def _set_state(self, container_id: str, state: ContainerState) -> None:
        if container_id not in self.containers:
            raise DriverError(f"No such container: {container_id}")
        self.containers[container_id] = self.containers[container_id].model_copy(
            update={"state": state}
        )

    def add_container(
        self,
        instance_id: str,
        state: ContainerState = ContainerState.RUNNING,
        port: int = 3001,
    ) -> ContainerStatus:
        status = ContainerStatus(
            id=f"ctr-{instance_id}",
            name=f"hbh-{instance_id}",
            state=state,
            instance_id=instance_id,
            port=port,
        )
        self.containers[status.id] = status
        return status

    async def ensure_network(self) -> None:
        self._enter("ensure_network")

    async def allocate_port(self) -> int:
        self._enter("allocate_port")
        port = self._next_port
        self._next_port += 1
        return port

    async def create_container(self, spec: ContainerSpec) -> CreatedContainer:
        self._enter("create_container")
        port = spec.port or await self.allocate_port()
        self.specs.append(spec)
        status = ContainerStatus(
            id=f"ctr-{spec.instance_id}",
            name=f"hbh-{spec.instance_id}",
            state=ContainerState.CREATED,
            instance_id=spec.instance_id,
            port=port,
        )
        self.containers[status.id] = status
        return CreatedContainer(container_id=status.id, port=port)

    async def start_container(self, container_id: str) -> None:
        self._enter("start_container")
        self._set_state(container_id, ContainerState.RUNNING)

    async def stop_container(self, container_id: str) -> None:
        self._enter("stop_container")
        self._set_state(container_id, ContainerState.EXITED)

    async def restart_container(self, container_id: str) -> None:
        self._enter("restart_container")
        self._set_state(container_id, ContainerState.RUNNING)

    async def remove_container(self, container_id: str) -> None:
        self._enter("remove_container")
        self.containers.pop(container_id, None)

    async def get_container_status(self, container_id: str) -> ContainerStatus | None:
        self._enter("get_container_status")
        return self.containers.get(container_id)

    async def get_container_stats(self, container_id: str) -> ContainerStats | None:
        self.calls["get_container_stats"] += 1
        if "get_container_stats" in self.failures:
            return None
        return self.stats.get(container_id)

    async def get_container_logs(
        self,
        container_id: str,
        tail: int = 100,
        follow: bool = False,
    ) -> LogStream:
        self._enter("get_container_logs")
        stream = self.log_streams.setdefault(container_id, FakeLogStream())
        return stream

    async def list_containers(self) -> list[ContainerStatus]:
        self._enter("list_containers")
        return list(self.containers.values())

    async def check_health(self) -> bool:
        return self.healthy

    async def close(self) -> None:
        self.calls["close"] += 1


class RecordingSubscriber(Subscriber):
    """Subscriber that keeps every delivered event."""

    def __init__(self, fail: bool = False) -> None:
        self.events: list[ServerEvent] = []
        self.fail = fail

    async def deliver(self, event: ServerEvent) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.events.append(event)

    def of_type(self, event_type: str) -> list[ServerEvent]:
        return [e for e in self.events if e.type == event_type]

    def log_lines(self) -> list[str]:
        return [e.data.line for e in self.of_type("instance.logs")]


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(MASTER_SECRET)


@pytest.fixture
def driver() -> FakeContainerDriver:
    return FakeContainerDriver()


@pytest.fixture
def store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def audit() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def manager(
    driver: FakeContainerDriver,
    store: InMemoryInstanceStore,
    audit: InMemoryAuditLog,
    codec: SecretCodec,
) -> InstanceManager:
    return InstanceManager(driver, store, audit, codec, SecurityConfig())


@pytest.fixture
async def broadcaster(driver: FakeContainerDriver):
    broadcaster = RealtimeBroadcaster(driver, poll_interval=0.01, log_tail=50)
    yield broadcaster
    await broadcaster.close()


@pytest.fixture
def make_subscriber():
    """Factory for RecordingSubscriber."""
    return RecordingSubscriber


@pytest.fixture
def make_log_stream():
    """Factory for FakeLogStream."""
    return FakeLogStream

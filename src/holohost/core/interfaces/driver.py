"""Container driver interface.

The driver is the only component that talks to the container runtime.
Lifecycle manager and broadcaster depend on this interface, never on a
concrete runtime client.

Implementations: DockerContainerDriver
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from holohost.core.models import (
    ContainerSpec,
    ContainerStats,
    ContainerStatus,
    CreatedContainer,
)


class LogStream(ABC):
    """Closable async stream of log chunks (stdout and stderr interleaved)."""

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def aclose(self) -> None:
        """Terminate the stream and release the underlying connection."""
        ...


class ContainerDriver(ABC):
    """Interface for per-instance container operations."""

    @abstractmethod
    async def ensure_network(self) -> None:
        """Ensure the isolated instance network exists (idempotent)."""
        ...

    @abstractmethod
    async def allocate_port(self) -> int:
        """Reserve the lowest free host port in the configured range.

        Raises:
            PortExhaustedError: No free port remains
        """
        ...

    @abstractmethod
    async def create_container(self, spec: ContainerSpec) -> CreatedContainer:
        """Create (but do not start) the container for one instance."""
        ...

    @abstractmethod
    async def start_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def stop_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def restart_container(self, container_id: str) -> None: ...

    @abstractmethod
    async def remove_container(self, container_id: str) -> None:
        """Best-effort stop, then forced removal."""
        ...

    @abstractmethod
    async def get_container_status(self, container_id: str) -> ContainerStatus | None:
        """Inspect a container. None if it cannot be inspected."""
        ...

    @abstractmethod
    async def get_container_stats(self, container_id: str) -> ContainerStats | None:
        """CPU/memory usage. None on any retrieval failure."""
        ...

    @abstractmethod
    async def get_container_logs(
        self,
        container_id: str,
        tail: int = 100,
        follow: bool = False,
    ) -> LogStream:
        """Open a log stream. Following streams must be closed by the caller."""
        ...

    @abstractmethod
    async def list_containers(self) -> list[ContainerStatus]:
        """List all managed containers (matching the instance-name prefix)."""
        ...

    @abstractmethod
    async def check_health(self) -> bool:
        """Ping the runtime daemon. Never raises."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release runtime client resources."""
        ...

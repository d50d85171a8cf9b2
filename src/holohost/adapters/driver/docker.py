"""Docker implementation of the container driver.

Every Docker call goes through _call(), which applies a timeout, records
metrics and maps httpx failures to DriverError/DriverTimeoutError.

Host port allocation is the one piece of shared state. The bound ports are
re-read from live containers on every allocation (containers are the source
of truth), then unioned with ports reserved by creations still in flight.
The scan and the reservation run under a single lock.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator, Awaitable
from datetime import datetime
from typing import TYPE_CHECKING, TypeVar

import httpx

from holohost.adapters.driver.naming import LABEL_INSTANCE, LABEL_PORT, ResourceNaming
from holohost.core.errors import DriverError, DriverTimeoutError, PortExhaustedError
from holohost.core.interfaces.driver import ContainerDriver, LogStream
from holohost.core.models import (
    ContainerSpec,
    ContainerStats,
    ContainerStatus,
    CreatedContainer,
)
from holohost.infra import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HealthCheck,
    HostConfig,
    ImageAPI,
    NetworkAPI,
    SystemAPI,
)
from holohost.logging_schema import LogEvent
from holohost.metrics import DOCKER_DURATION, DOCKER_ERRORS, PORT_ALLOCATIONS

if TYPE_CHECKING:
    from holohost.config import DockerConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MEGABYTE = 1024 * 1024
_FRAME_HEADER = 8
_ZERO_TIME_PREFIX = "0001-01-01"
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


# =============================================================================
# Log stream
# =============================================================================


def demultiplex(buffer: bytes) -> tuple[list[bytes], bytes]:
    """Split Docker's multiplexed log framing into payloads.

    Each frame is an 8-byte header (stream type, 3 zero bytes, big-endian
    payload size) followed by the payload. Returns complete payloads and the
    unconsumed remainder. Unframed (TTY) output is passed through as is.
    """
    payloads: list[bytes] = []
    while len(buffer) >= _FRAME_HEADER:
        if buffer[0] not in (0, 1, 2) or buffer[1:4] != b"\x00\x00\x00":
            payloads.append(buffer)
            return payloads, b""
        size = int.from_bytes(buffer[4:8], "big")
        if len(buffer) < _FRAME_HEADER + size:
            break
        payloads.append(buffer[_FRAME_HEADER : _FRAME_HEADER + size])
        buffer = buffer[_FRAME_HEADER + size :]
    return payloads, buffer


class DockerLogStream(LogStream):
    """Log stream over a streamed Docker logs response."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        pending = b""
        try:
            async for chunk in self._response.aiter_bytes():
                payloads, pending = demultiplex(pending + chunk)
                for payload in payloads:
                    if payload:
                        yield payload
        except httpx.HTTPError as e:
            if self._closed:
                return
            raise DriverError(f"Log stream failed: {e}") from e
        if pending:
            yield pending

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


# =============================================================================
# Parsing helpers
# =============================================================================


def _docker_message(error: httpx.HTTPStatusError) -> str:
    """Extract Docker's error message from a failed response."""
    try:
        message = error.response.json().get("message")
    except (ValueError, AttributeError, httpx.ResponseNotRead):
        message = None
    return message or f"Docker API returned {error.response.status_code}"


def _parse_timestamp(value: str | None) -> datetime | None:
    """Parse Docker's RFC 3339 timestamps (nanosecond precision)."""
    if not value or value.startswith(_ZERO_TIME_PREFIX):
        return None
    try:
        return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _health_from_status_text(status: str) -> str | None:
    """Health from the list endpoint's human-readable status ("Up 5 minutes (healthy)")."""
    if "(healthy)" in status:
        return "healthy"
    if "(unhealthy)" in status:
        return "unhealthy"
    if "(health: starting)" in status:
        return "starting"
    return None


def compute_stats(data: dict) -> ContainerStats:
    """CPU percent and memory MB from one stats sample.

    CPU is measured against the preceding sample (precpu_stats) the daemon
    includes in the response.
    """
    cpu_stats = data.get("cpu_stats") or {}
    precpu_stats = data.get("precpu_stats") or {}

    cpu_delta = (cpu_stats.get("cpu_usage") or {}).get("total_usage", 0) - (
        precpu_stats.get("cpu_usage") or {}
    ).get("total_usage", 0)
    system_delta = cpu_stats.get("system_cpu_usage", 0) - precpu_stats.get(
        "system_cpu_usage", 0
    )
    online_cpus = cpu_stats.get("online_cpus") or len(
        (cpu_stats.get("cpu_usage") or {}).get("percpu_usage") or []
    ) or 1

    cpu = 0.0
    if system_delta > 0 and cpu_delta > 0:
        cpu = (cpu_delta / system_delta) * online_cpus * 100

    memory = (data.get("memory_stats") or {}).get("usage", 0) / _MEGABYTE

    return ContainerStats(cpu=round(cpu, 2), memory=round(memory, 2))


# =============================================================================
# Driver
# =============================================================================


class DockerContainerDriver(ContainerDriver):
    """Container driver backed by the Docker Engine API."""

    def __init__(
        self,
        config: DockerConfig,
        client: DockerClient | None = None,
        containers: ContainerAPI | None = None,
        networks: NetworkAPI | None = None,
        images: ImageAPI | None = None,
        system: SystemAPI | None = None,
    ) -> None:
        self._config = config
        self._client = client or DockerClient(config.host, config.api_timeout)
        self._containers = containers or ContainerAPI(self._client, config.timeout_buffer)
        self._networks = networks or NetworkAPI(self._client)
        self._images = images or ImageAPI(self._client, config.image_pull_timeout)
        self._system = system or SystemAPI(self._client)
        self._naming = ResourceNaming(config.resource_prefix)

        self._port_lock = asyncio.Lock()
        self._reserved_ports: set[int] = set()
        self._network_ready = False

    @property
    def naming(self) -> ResourceNaming:
        return self._naming

    async def _call(
        self,
        operation: str,
        awaitable: Awaitable[T],
        timeout: float | None = None,
    ) -> T:
        """Run one Docker call with a timeout, mapping failures to driver errors."""
        timeout = timeout if timeout is not None else self._config.api_timeout
        start = time.monotonic()
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except (TimeoutError, httpx.TimeoutException) as e:
            DOCKER_ERRORS.labels(operation=operation, error_type="timeout").inc()
            logger.warning(
                "Docker call timed out",
                extra={
                    "event": LogEvent.DRIVER_TIMEOUT,
                    "operation": operation,
                    "timeout": timeout,
                },
            )
            raise DriverTimeoutError(f"Docker {operation} timed out after {timeout}s") from e
        except httpx.HTTPStatusError as e:
            DOCKER_ERRORS.labels(operation=operation, error_type="api_error").inc()
            message = _docker_message(e)
            logger.warning(
                "Docker call failed",
                extra={
                    "event": LogEvent.DRIVER_ERROR,
                    "operation": operation,
                    "status_code": e.response.status_code,
                    "error": message,
                },
            )
            raise DriverError(message) from e
        except httpx.HTTPError as e:
            DOCKER_ERRORS.labels(operation=operation, error_type="transport").inc()
            logger.warning(
                "Docker unreachable",
                extra={
                    "event": LogEvent.DRIVER_ERROR,
                    "operation": operation,
                    "error": str(e),
                },
            )
            raise DriverError(str(e) or type(e).__name__) from e
        finally:
            DOCKER_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    # -------------------------------------------------------------------------
    # Network and ports
    # -------------------------------------------------------------------------

    async def ensure_network(self) -> None:
        if self._network_ready:
            return
        name = self._config.network
        if not await self._call("network_inspect", self._networks.exists(name)):
            await self._call("network_create", self._networks.create(name))
        self._network_ready = True

    async def allocate_port(self) -> int:
        async with self._port_lock:
            containers = await self._call(
                "list", self._containers.list(filters={"name": [self._naming.prefix]})
            )
            used = {
                port
                for container in containers
                if (port := self._listed_port(container)) is not None
            }
            used |= self._reserved_ports

            for port in range(self._config.port_range_start, self._config.port_range_end + 1):
                if port not in used:
                    self._reserved_ports.add(port)
                    PORT_ALLOCATIONS.labels(result="allocated").inc()
                    logger.debug(
                        "Allocated host port",
                        extra={"event": LogEvent.PORT_ALLOCATED, "port": port},
                    )
                    return port

            PORT_ALLOCATIONS.labels(result="exhausted").inc()
            raise PortExhaustedError()

    def release_port(self, port: int) -> None:
        """Drop an in-flight reservation (the container now holds the port, or never will)."""
        self._reserved_ports.discard(port)

    def _listed_port(self, container: dict) -> int | None:
        """Host port of a container from the list endpoint."""
        label = (container.get("Labels") or {}).get(LABEL_PORT)
        if label and label.isdigit():
            return int(label)
        # Port mappings only appear for running containers
        for mapping in container.get("Ports") or []:
            if mapping.get("PrivatePort") == self._config.container_port and mapping.get(
                "PublicPort"
            ):
                return int(mapping["PublicPort"])
        return None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create_container(self, spec: ContainerSpec) -> CreatedContainer:
        await self.ensure_network()
        image = self._config.image
        await self._call(
            "image_ensure",
            self._images.ensure(image),
            timeout=self._config.image_pull_timeout,
        )

        allocated = spec.port is None
        port = await self.allocate_port() if allocated else spec.port
        container_port = self._config.container_port
        container_name = self._naming.container_name(spec.instance_id)

        env = {
            "DISCORD_TOKEN": spec.credential,
            "API_KEY": spec.api_key,
            "PORT": str(container_port),
            **spec.env,
        }
        config = ContainerConfig(
            image=image,
            name=container_name,
            env=[f"{key}={value}" for key, value in env.items()],
            exposed_ports={f"{container_port}/tcp": {}},
            labels=self._naming.labels(spec.instance_id, spec.name, port),
            healthcheck=HealthCheck(
                test=[
                    "CMD",
                    "wget",
                    "--no-verbose",
                    "--tries=1",
                    "--spider",
                    f"http://localhost:{container_port}/health",
                ],
            ),
            host_config=HostConfig(
                network_mode=self._config.network,
                port_bindings={f"{container_port}/tcp": port},
                memory_mb=self._config.memory_mb,
                memory_swap_mb=self._config.memory_swap_mb,
                cpu_quota=self._config.cpu_quota,
                cpu_period=self._config.cpu_period,
            ),
        )

        try:
            container_id = await self._call("create", self._containers.create(config))
        except DriverTimeoutError:
            # The daemon may have created it anyway; nothing else knows its name
            await self._discard_created(spec.instance_id, container_name)
            raise
        finally:
            if allocated:
                self.release_port(port)

        logger.info(
            "Created instance container",
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "instance_id": spec.instance_id,
                "container": container_name,
                "port": port,
            },
        )
        return CreatedContainer(container_id=container_id, port=port)

    async def _discard_created(self, instance_id: str, container_name: str) -> None:
        try:
            await self._call("remove", self._containers.remove(container_name, force=True))
        except DriverError as e:
            logger.error(
                "Failed to remove container after create timeout",
                extra={
                    "event": LogEvent.CLEANUP_FAILED,
                    "instance_id": instance_id,
                    "container": container_name,
                    "error": e.message,
                },
            )
            return
        logger.warning(
            "Removed container left by timed-out create",
            extra={
                "event": LogEvent.ORPHAN_REMOVED,
                "instance_id": instance_id,
                "container": container_name,
            },
        )

    async def start_container(self, container_id: str) -> None:
        await self._call("start", self._containers.start(container_id))

    async def stop_container(self, container_id: str) -> None:
        grace = self._config.stop_timeout
        await self._call(
            "stop",
            self._containers.stop(container_id, timeout=grace),
            timeout=grace + self._config.timeout_buffer,
        )

    async def restart_container(self, container_id: str) -> None:
        grace = self._config.stop_timeout
        await self._call(
            "restart",
            self._containers.restart(container_id, timeout=grace),
            timeout=grace + self._config.timeout_buffer,
        )

    async def remove_container(self, container_id: str) -> None:
        grace = self._config.remove_stop_timeout
        try:
            await self._call(
                "stop",
                self._containers.stop(container_id, timeout=grace),
                timeout=grace + self._config.timeout_buffer,
            )
        except DriverError as e:
            logger.debug("Stop before removal failed for %s: %s", container_id, e.message)
        await self._call("remove", self._containers.remove(container_id, force=True))

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    async def get_container_status(self, container_id: str) -> ContainerStatus | None:
        try:
            data = await self._call("inspect", self._containers.inspect(container_id))
        except DriverTimeoutError:
            raise
        except DriverError:
            return None
        if data is None:
            return None
        return self._parse_inspect(data)

    def _parse_inspect(self, data: dict) -> ContainerStatus:
        state = data.get("State") or {}
        name = (data.get("Name") or "").lstrip("/")
        labels = (data.get("Config") or {}).get("Labels") or {}
        health = (state.get("Health") or {}).get("Status")

        port = None
        port_bindings = (data.get("HostConfig") or {}).get("PortBindings") or {}
        bindings = port_bindings.get(f"{self._config.container_port}/tcp") or []
        if bindings and bindings[0].get("HostPort"):
            port = int(bindings[0]["HostPort"])

        return ContainerStatus(
            id=data["Id"],
            name=name,
            state=state.get("Status", "dead"),
            instance_id=labels.get(LABEL_INSTANCE) or self._naming.instance_id_from_container(name),
            health=health,
            port=port,
            started_at=_parse_timestamp(state.get("StartedAt")),
        )

    async def get_container_stats(self, container_id: str) -> ContainerStats | None:
        try:
            data = await self._call("stats", self._containers.stats(container_id))
            return compute_stats(data)
        except (DriverError, KeyError, TypeError, ValueError) as e:
            logger.debug("Stats unavailable for %s: %s", container_id, e)
            return None

    async def get_container_logs(
        self,
        container_id: str,
        tail: int = 100,
        follow: bool = False,
    ) -> LogStream:
        response = await self._call(
            "logs",
            self._containers.logs(container_id, tail=tail, follow=follow),
        )
        return DockerLogStream(response)

    async def list_containers(self) -> list[ContainerStatus]:
        prefix = self._naming.prefix
        containers = await self._call("list", self._containers.list(filters={"name": [prefix]}))

        results = []
        for container in containers:
            names = container.get("Names", [])
            name = names[0].lstrip("/") if names else ""
            # The name filter matches substrings
            if not name.startswith(prefix):
                continue

            labels = container.get("Labels") or {}
            results.append(
                ContainerStatus(
                    id=container["Id"],
                    name=name,
                    state=container.get("State", "dead"),
                    instance_id=labels.get(LABEL_INSTANCE)
                    or self._naming.instance_id_from_container(name),
                    health=_health_from_status_text(container.get("Status", "")),
                    port=self._listed_port(container),
                )
            )

        return results

    async def check_health(self) -> bool:
        try:
            await self._call("ping", self._system.ping())
        except DriverError:
            return False
        return True

    async def close(self) -> None:
        await self._client.close()

"""Docker Engine API client.

Provides async Docker API access for containers, networks and images.
Supports both Unix socket and TCP connections.

These wrappers raise raw httpx errors; DockerContainerDriver translates
them into DriverError/DriverTimeoutError.
"""

import json
import logging

import httpx
from pydantic import BaseModel

from holohost.logging_schema import LogEvent

logger = logging.getLogger(__name__)

_NANOSECONDS = 1_000_000_000
_MEGABYTE = 1024 * 1024


# =============================================================================
# Creation payloads
# =============================================================================


class HealthCheck(BaseModel):
    """Docker HEALTHCHECK for container creation (durations in seconds)."""

    test: list[str]
    interval: int = 30
    timeout: int = 10
    retries: int = 3
    start_period: int = 10

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API format (durations in nanoseconds)."""
        return {
            "Test": self.test,
            "Interval": self.interval * _NANOSECONDS,
            "Timeout": self.timeout * _NANOSECONDS,
            "Retries": self.retries,
            "StartPeriod": self.start_period * _NANOSECONDS,
        }


class HostConfig(BaseModel):
    """Networking, port publishing, restart and resource limits of a container."""

    network_mode: str = "bridge"
    port_bindings: dict[str, int] = {}
    restart_policy: str = "unless-stopped"
    memory_mb: int | None = None
    memory_swap_mb: int | None = None
    cpu_quota: int | None = None
    cpu_period: int | None = None

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Serialize to the Engine API HostConfig object."""
        result: dict = {
            "NetworkMode": self.network_mode,
            "PortBindings": {
                container_port: [{"HostPort": str(host_port)}]
                for container_port, host_port in self.port_bindings.items()
            },
            "RestartPolicy": {"Name": self.restart_policy},
        }
        if self.memory_mb is not None:
            result["Memory"] = self.memory_mb * _MEGABYTE
        if self.memory_swap_mb is not None:
            result["MemorySwap"] = self.memory_swap_mb * _MEGABYTE
        if self.cpu_quota is not None:
            result["CpuQuota"] = self.cpu_quota
        if self.cpu_period is not None:
            result["CpuPeriod"] = self.cpu_period
        return result


class ContainerConfig(BaseModel):
    """Body of POST /containers/create."""

    image: str
    name: str
    env: list[str] = []
    exposed_ports: dict[str, dict] = {}
    labels: dict[str, str] = {}
    healthcheck: HealthCheck | None = None
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Serialize to the Engine API create body."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": self.exposed_ports,
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        if self.healthcheck:
            result["Healthcheck"] = self.healthcheck.to_api()
        return result


# =============================================================================
# Docker Client
# =============================================================================


class DockerClient:
    """Lazily created httpx client bound to the daemon socket."""

    def __init__(self, docker_host: str, api_timeout: float = 30.0) -> None:
        self._host = docker_host
        self._timeout = api_timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _create_client(self) -> httpx.AsyncClient:
        """Build the client for a unix:// socket or a tcp:// address."""
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=self._timeout,
            )
        else:
            base_url = self._host
            if base_url.startswith("tcp://"):
                base_url = base_url.replace("tcp://", "http://")
            return httpx.AsyncClient(base_url=base_url, timeout=self._timeout)

    async def get(self) -> httpx.AsyncClient:
        """Return the open client, reopening it after close()."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def close(self) -> None:
        """Close the client. A later get() opens a new one."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """/containers endpoints. Stop and restart extend the timeout by the grace period."""

    def __init__(self, client: DockerClient, timeout_buffer: float = 10.0) -> None:
        self._docker = client
        self._timeout_buffer = timeout_buffer

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers (including stopped ones)."""
        client = await self._docker.get()
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        resp = await client.get("/containers/json", params=params)
        resp.raise_for_status()
        return resp.json()

    async def inspect(self, container_id: str) -> dict | None:
        """Inspect a container. None if it does not exist."""
        client = await self._docker.get()
        resp = await client.get(f"/containers/{container_id}/json")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    async def create(self, config: ContainerConfig) -> str:
        """Create a container and return its ID."""
        client = await self._docker.get()
        resp = await client.post(
            "/containers/create",
            params={"name": config.name},
            json=config.to_api(),
        )
        resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.info(
            "Created container",
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "container": config.name,
                "container_id": container_id,
            },
        )
        return container_id

    async def start(self, container_id: str) -> None:
        """Start a container (already running is fine)."""
        client = await self._docker.get()
        resp = await client.post(f"/containers/{container_id}/start")
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info(
            "Started container",
            extra={"event": LogEvent.CONTAINER_STARTED, "container_id": container_id},
        )

    async def stop(self, container_id: str, timeout: int = 10) -> None:
        """Stop a container, killing it after `timeout` seconds."""
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/stop",
            params={"t": str(timeout)},
            timeout=timeout + self._timeout_buffer,
        )
        if resp.status_code not in (204, 304):
            resp.raise_for_status()
        logger.info(
            "Stopped container",
            extra={"event": LogEvent.CONTAINER_STOPPED, "container_id": container_id},
        )

    async def restart(self, container_id: str, timeout: int = 10) -> None:
        """Restart a container, killing it after `timeout` seconds."""
        client = await self._docker.get()
        resp = await client.post(
            f"/containers/{container_id}/restart",
            params={"t": str(timeout)},
            timeout=timeout + self._timeout_buffer,
        )
        resp.raise_for_status()
        logger.info(
            "Restarted container",
            extra={"event": LogEvent.CONTAINER_RESTARTED, "container_id": container_id},
        )

    async def remove(self, container_id: str, force: bool = True) -> None:
        """Remove a container. Already gone counts as removed."""
        client = await self._docker.get()
        resp = await client.delete(
            f"/containers/{container_id}",
            params={"force": "true" if force else "false"},
        )
        if resp.status_code == 404:
            logger.debug("Container not found: %s", container_id)
            return
        resp.raise_for_status()
        logger.info(
            "Removed container",
            extra={"event": LogEvent.CONTAINER_REMOVED, "container_id": container_id},
        )

    async def stats(self, container_id: str) -> dict:
        """Get a single stats sample (includes the preceding precpu sample)."""
        client = await self._docker.get()
        resp = await client.get(
            f"/containers/{container_id}/stats",
            params={"stream": "false"},
        )
        resp.raise_for_status()
        return resp.json()

    async def logs(
        self,
        container_id: str,
        tail: int = 100,
        follow: bool = False,
    ) -> httpx.Response:
        """Open a streamed logs response (stdout+stderr, with timestamps).

        The caller owns the response and must close it.
        """
        client = await self._docker.get()
        params = {
            "stdout": "true",
            "stderr": "true",
            "timestamps": "true",
            "tail": str(tail),
            "follow": "true" if follow else "false",
        }
        # Following streams may stay idle for a long time
        timeout = httpx.Timeout(self._docker.timeout, read=None if follow else self._docker.timeout)
        request = client.build_request(
            "GET",
            f"/containers/{container_id}/logs",
            params=params,
            timeout=timeout,
        )
        resp = await client.send(request, stream=True)
        if resp.is_error:
            await resp.aread()
            await resp.aclose()
            resp.raise_for_status()
        return resp


# =============================================================================
# Network API
# =============================================================================


class NetworkAPI:
    """Docker Network API operations."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def exists(self, name: str) -> bool:
        """Check if a network with exactly this name exists."""
        client = await self._docker.get()
        resp = await client.get(
            "/networks",
            params={"filters": json.dumps({"name": [name]})},
        )
        resp.raise_for_status()
        # The name filter matches substrings
        return any(network.get("Name") == name for network in resp.json())

    async def create(self, name: str, driver: str = "bridge") -> None:
        """Create a network (idempotent)."""
        client = await self._docker.get()
        resp = await client.post(
            "/networks/create",
            json={"Name": name, "Driver": driver, "Internal": False},
        )
        if resp.status_code == 409:
            logger.debug("Network already exists: %s", name)
            return
        resp.raise_for_status()
        logger.info(
            "Created Docker network",
            extra={"event": LogEvent.NETWORK_CREATED, "network": name},
        )


# =============================================================================
# Image API
# =============================================================================


class ImageAPI:
    """/images endpoints for the instance image."""

    def __init__(self, client: DockerClient, pull_timeout: float = 600.0) -> None:
        self._docker = client
        self._pull_timeout = pull_timeout

    async def exists(self, image_ref: str) -> bool:
        """True if the image is present on the daemon."""
        client = await self._docker.get()
        resp = await client.get(f"/images/{image_ref}/json")
        return resp.status_code == 200

    async def pull(self, image_ref: str) -> None:
        """Pull an image, waiting up to the pull timeout."""
        client = await self._docker.get()

        if ":" in image_ref:
            image, tag = image_ref.rsplit(":", 1)
        else:
            image, tag = image_ref, "latest"

        resp = await client.post(
            "/images/create",
            params={"fromImage": image, "tag": tag},
            timeout=self._pull_timeout,
        )
        resp.raise_for_status()
        logger.info(
            "Pulled image",
            extra={"event": LogEvent.IMAGE_PULLED, "image": f"{image}:{tag}"},
        )

    async def ensure(self, image_ref: str) -> None:
        """Pull the image unless it is already present."""
        if not await self.exists(image_ref):
            await self.pull(image_ref)


# =============================================================================
# System API
# =============================================================================


class SystemAPI:
    """Docker daemon system endpoints."""

    def __init__(self, client: DockerClient) -> None:
        self._docker = client

    async def ping(self) -> None:
        """Ping the daemon. Raises on failure."""
        client = await self._docker.get()
        resp = await client.get("/_ping")
        resp.raise_for_status()

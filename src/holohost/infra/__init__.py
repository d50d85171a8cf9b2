"""HoloHost infrastructure layer."""

from holohost.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HealthCheck,
    HostConfig,
    ImageAPI,
    NetworkAPI,
    SystemAPI,
)

__all__ = [
    # Docker
    "ContainerAPI",
    "ContainerConfig",
    "DockerClient",
    "HealthCheck",
    "HostConfig",
    "ImageAPI",
    "NetworkAPI",
    "SystemAPI",
]

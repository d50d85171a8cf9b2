"""Container driver implementations."""

from holohost.adapters.driver.docker import DockerContainerDriver, DockerLogStream
from holohost.adapters.driver.naming import ResourceNaming

__all__ = ["DockerContainerDriver", "DockerLogStream", "ResourceNaming"]

"""Resource naming utilities for the Docker driver."""

LABEL_INSTANCE = "holohost.instance"
LABEL_NAME = "holohost.name"
LABEL_PORT = "holohost.port"


class ResourceNaming:
    """Centralized naming conventions for instance containers."""

    def __init__(self, prefix: str) -> None:
        self._prefix = prefix

    @property
    def prefix(self) -> str:
        return self._prefix

    def container_name(self, instance_id: str) -> str:
        return f"{self._prefix}{instance_id}"

    def instance_id_from_container(self, container_name: str) -> str | None:
        if not container_name.startswith(self._prefix):
            return None
        return container_name[len(self._prefix) :] or None

    def labels(self, instance_id: str, name: str, port: int) -> dict[str, str]:
        return {
            LABEL_INSTANCE: instance_id,
            LABEL_NAME: name,
            LABEL_PORT: str(port),
        }

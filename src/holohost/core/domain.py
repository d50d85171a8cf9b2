"""Instance lifecycle domain enums."""

from enum import StrEnum


class InstanceStatus(StrEnum):
    """Persisted instance status.

    stopped -> starting -> running -> stopping -> stopped
    Any transition driven by a failing runtime call ends in error.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class ContainerState(StrEnum):
    """Container state as reported by the runtime (never persisted)."""

    CREATED = "created"
    RUNNING = "running"
    EXITED = "exited"
    PAUSED = "paused"
    RESTARTING = "restarting"
    REMOVING = "removing"
    DEAD = "dead"


class AuditAction(StrEnum):
    """Actions recorded in the audit trail."""

    INSTANCE_CREATE = "instance.create"
    INSTANCE_START = "instance.start"
    INSTANCE_STOP = "instance.stop"
    INSTANCE_RESTART = "instance.restart"
    INSTANCE_DELETE = "instance.delete"
    INSTANCE_CONFIG_UPDATE = "instance.config.update"

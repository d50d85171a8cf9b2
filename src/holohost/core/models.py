"""Instance records and runtime observations."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from holohost.core.domain import ContainerState, InstanceStatus


class InstanceConfig(BaseModel):
    """Bridge process settings, passed to the container as environment."""

    debug: bool = False
    plugins_enabled: bool = True
    rate_limit_enabled: bool = True
    rate_limit_max: int = 100
    rate_limit_window_ms: int = 60000

    def merged(self, overrides: dict[str, Any] | None) -> "InstanceConfig":
        """Shallow-merge overrides over this config."""
        if not overrides:
            return self.model_copy()
        return InstanceConfig.model_validate({**self.model_dump(), **overrides})

    def to_env(self) -> dict[str, str]:
        """Environment variables understood by the bridge process."""
        return {
            "DEBUG": "true" if self.debug else "false",
            "PLUGINS_ENABLED": "true" if self.plugins_enabled else "false",
            "RATE_LIMIT_ENABLED": "true" if self.rate_limit_enabled else "false",
            "RATE_LIMIT_MAX": str(self.rate_limit_max),
            "RATE_LIMIT_WINDOW_MS": str(self.rate_limit_window_ms),
        }


class Instance(BaseModel):
    """One tenant's provisioned instance."""

    id: str
    owner_id: str
    name: str = Field(min_length=1, max_length=50)
    security_code: str = Field(repr=False)
    container_id: str | None = None
    status: InstanceStatus = InstanceStatus.STOPPED
    port: int | None = None
    credential_encrypted: str = Field(repr=False)
    config: InstanceConfig = Field(default_factory=InstanceConfig)
    created_at: datetime
    updated_at: datetime


class CreateInstanceRequest(BaseModel):
    """Create instance request."""

    name: str = Field(min_length=1, max_length=50)
    credential: str = Field(min_length=1, repr=False)
    config: dict[str, Any] | None = None


class UpdateInstanceRequest(BaseModel):
    """Update instance request. Omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=50)
    config: dict[str, Any] | None = None


class ContainerSpec(BaseModel):
    """Everything the driver needs to create one instance container."""

    instance_id: str
    name: str
    credential: str = Field(repr=False)
    api_key: str = Field(repr=False)
    env: dict[str, str] = {}
    port: int | None = None

    model_config = {"frozen": True}


class CreatedContainer(BaseModel):
    """Result of container creation."""

    container_id: str
    port: int

    model_config = {"frozen": True}


class ContainerStatus(BaseModel):
    """Container status derived from the runtime."""

    id: str
    name: str
    state: ContainerState
    instance_id: str | None = None
    health: str | None = None
    port: int | None = None
    started_at: datetime | None = None

    model_config = {"frozen": True}


class ContainerStats(BaseModel):
    """Resource usage snapshot."""

    cpu: float
    memory: float

    model_config = {"frozen": True}


class InstanceWithStats(BaseModel):
    """Instance record plus live container observations."""

    instance: Instance
    container_status: ContainerStatus | None = None
    stats: ContainerStats | None = None


class AuditEntry(BaseModel):
    """One audit trail entry."""

    owner_id: str
    instance_id: str | None
    action: str
    details: dict[str, Any] | None = None
    created_at: datetime

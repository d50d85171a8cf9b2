"""Instance lifecycle manager.

Orchestrates instance operations against the container driver and the
instance store:

    create  -> container created, record stored as stopped
    start   -> starting -> running | error
    stop    -> stopping -> stopped | error
    restart -> running
    delete  -> container removed (best effort), record deleted

Transient states are persisted before the driver call and terminal states
after it, so a crash mid-operation leaves starting/stopping/error rather
than a stale stopped/running. A DriverTimeoutError restores the status the
instance had before the operation.

Per-instance operations are not serialized here; callers must not issue
overlapping operations for the same instance.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import ValidationError

from holohost.config import SecurityConfig
from holohost.core.domain import AuditAction, ContainerState, InstanceStatus
from holohost.core.errors import (
    DriverError,
    DriverTimeoutError,
    InstanceNotFoundError,
    InvalidRequestError,
    StoreError,
)
from holohost.core.models import (
    ContainerSpec,
    ContainerStats,
    ContainerStatus,
    CreateInstanceRequest,
    Instance,
    InstanceConfig,
    InstanceWithStats,
    UpdateInstanceRequest,
)
from holohost.core.security import generate_secure_token
from holohost.logging_schema import LogEvent

if TYPE_CHECKING:
    from holohost.core.interfaces import AuditLog, ContainerDriver, InstanceStore
    from holohost.core.security import SecretCodec

logger = logging.getLogger(__name__)


class InstanceManager:
    """Lifecycle state machine for container-backed instances."""

    def __init__(
        self,
        driver: ContainerDriver,
        store: InstanceStore,
        audit: AuditLog,
        codec: SecretCodec,
        config: SecurityConfig | None = None,
    ) -> None:
        self._driver = driver
        self._store = store
        self._audit_log = audit
        self._codec = codec
        self._config = config or SecurityConfig()

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, instance_id: str) -> Instance:
        """Load an instance.

        Raises:
            InstanceNotFoundError: Unknown instance
        """
        instance = await self._store.get_by_id(instance_id)
        if instance is None:
            raise InstanceNotFoundError()
        return instance

    async def list(self, owner_id: str) -> list[Instance]:
        return await self._store.list_by_owner(owner_id)

    async def get_with_stats(self, instance_id: str) -> InstanceWithStats:
        """Instance plus live container status, and stats when running.

        Status and stats are None whenever unavailable; a stopped or missing
        container is not an error.
        """
        instance = await self.get(instance_id)

        container_status: ContainerStatus | None = None
        stats: ContainerStats | None = None
        if instance.container_id:
            try:
                container_status = await self._driver.get_container_status(instance.container_id)
            except DriverError as e:
                logger.warning(
                    "Container status unavailable",
                    extra={
                        "event": LogEvent.DRIVER_ERROR,
                        "instance_id": instance_id,
                        "error": e.message,
                    },
                )
            if container_status and container_status.state == ContainerState.RUNNING:
                stats = await self._driver.get_container_stats(instance.container_id)

        return InstanceWithStats(
            instance=instance,
            container_status=container_status,
            stats=stats,
        )

    def decrypt_credential(self, instance: Instance) -> str:
        """Recover the instance's bridge credential."""
        return self._codec.decrypt(instance.credential_encrypted)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self, owner_id: str, request: CreateInstanceRequest) -> Instance:
        """Create the container and persist the instance as stopped.

        If persisting fails, the freshly created container is removed before
        the error is raised.
        """
        config = self._merge_config(InstanceConfig(), request.config)

        instance_id = str(uuid4())
        security_code = generate_secure_token(self._config.security_code_length)
        api_key = generate_secure_token(self._config.api_key_length, self._config.api_key_prefix)
        credential_encrypted = self._codec.encrypt(request.credential)

        created = await self._driver.create_container(
            ContainerSpec(
                instance_id=instance_id,
                name=request.name,
                credential=request.credential,
                api_key=api_key,
                env=config.to_env(),
            )
        )

        now = datetime.now(UTC)
        record = Instance(
            id=instance_id,
            owner_id=owner_id,
            name=request.name,
            security_code=security_code,
            container_id=created.container_id,
            status=InstanceStatus.STOPPED,
            port=created.port,
            credential_encrypted=credential_encrypted,
            config=config,
            created_at=now,
            updated_at=now,
        )

        try:
            instance = await self._store.insert(record)
        except Exception:
            await self._remove_orphan(instance_id, created.container_id)
            raise

        logger.info(
            "Instance created",
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "instance_id": instance_id,
                "owner_id": owner_id,
                "port": created.port,
            },
        )
        await self._audit(owner_id, instance_id, AuditAction.INSTANCE_CREATE, {"name": request.name})
        return instance

    async def start(self, instance_id: str, owner_id: str) -> Instance:
        instance, container_id = await self._get_with_container(instance_id)
        return await self._transition(
            instance,
            owner_id,
            transient=InstanceStatus.STARTING,
            target=InstanceStatus.RUNNING,
            operation=self._driver.start_container,
            container_id=container_id,
            action=AuditAction.INSTANCE_START,
        )

    async def stop(self, instance_id: str, owner_id: str) -> Instance:
        instance, container_id = await self._get_with_container(instance_id)
        return await self._transition(
            instance,
            owner_id,
            transient=InstanceStatus.STOPPING,
            target=InstanceStatus.STOPPED,
            operation=self._driver.stop_container,
            container_id=container_id,
            action=AuditAction.INSTANCE_STOP,
        )

    async def restart(self, instance_id: str, owner_id: str) -> Instance:
        """Restart in one blocking driver call; no intermediate state is recorded."""
        _, container_id = await self._get_with_container(instance_id)
        await self._driver.restart_container(container_id)
        instance = await self._set_status(instance_id, InstanceStatus.RUNNING)
        await self._audit(owner_id, instance_id, AuditAction.INSTANCE_RESTART)
        return instance

    async def delete(self, instance_id: str, owner_id: str) -> None:
        """Remove the container (failure ignored) and delete the record."""
        instance = await self.get(instance_id)

        if instance.container_id:
            try:
                await self._driver.remove_container(instance.container_id)
            except DriverError as e:
                logger.warning(
                    "Container removal failed, deleting record anyway",
                    extra={
                        "event": LogEvent.CLEANUP_FAILED,
                        "instance_id": instance_id,
                        "container_id": instance.container_id,
                        "error": e.message,
                    },
                )

        await self._store.delete(instance_id)
        logger.info(
            "Instance deleted",
            extra={"event": LogEvent.INSTANCE_DELETED, "instance_id": instance_id},
        )
        # The instance row is gone; keep the reference in details only
        await self._audit(
            owner_id,
            None,
            AuditAction.INSTANCE_DELETE,
            {"instance_id": instance_id, "name": instance.name},
        )

    async def update_config(
        self,
        instance_id: str,
        owner_id: str,
        request: UpdateInstanceRequest,
    ) -> Instance:
        """Replace the name and/or shallow-merge config overrides."""
        instance = await self.get(instance_id)

        patch: dict[str, Any] = {}
        if request.name is not None:
            patch["name"] = request.name
        if request.config is not None:
            patch["config"] = self._merge_config(instance.config, request.config)
        if not patch:
            return instance

        updated = await self._store.update(instance_id, patch)
        logger.info(
            "Instance updated",
            extra={
                "event": LogEvent.INSTANCE_UPDATED,
                "instance_id": instance_id,
                "fields": sorted(patch),
            },
        )
        await self._audit(
            owner_id,
            instance_id,
            AuditAction.INSTANCE_CONFIG_UPDATE,
            request.model_dump(exclude_none=True),
        )
        return updated

    # =========================================================================
    # Internals
    # =========================================================================

    async def _get_with_container(self, instance_id: str) -> tuple[Instance, str]:
        instance = await self.get(instance_id)
        if not instance.container_id:
            raise InstanceNotFoundError("Instance has no container")
        return instance, instance.container_id

    async def _transition(
        self,
        instance: Instance,
        owner_id: str,
        *,
        transient: InstanceStatus,
        target: InstanceStatus,
        operation: Callable[[str], Awaitable[None]],
        container_id: str,
        action: AuditAction,
    ) -> Instance:
        previous = instance.status
        await self._set_status(instance.id, transient)

        try:
            await operation(container_id)
        except DriverTimeoutError:
            await self._record_failure_status(instance.id, previous)
            raise
        except Exception as e:
            logger.error(
                "Instance operation failed",
                extra={
                    "event": LogEvent.OPERATION_FAILED,
                    "instance_id": instance.id,
                    "action": action,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            await self._record_failure_status(instance.id, InstanceStatus.ERROR)
            raise

        updated = await self._set_status(instance.id, target)
        await self._audit(owner_id, instance.id, action)
        return updated

    async def _set_status(self, instance_id: str, status: InstanceStatus) -> Instance:
        instance = await self._store.update(instance_id, {"status": status})
        logger.info(
            "Instance status changed",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "instance_id": instance_id,
                "status": status,
            },
        )
        return instance

    async def _record_failure_status(self, instance_id: str, status: InstanceStatus) -> None:
        """Persist the post-failure status without masking the driver error."""
        try:
            await self._set_status(instance_id, status)
        except StoreError as e:
            logger.error(
                "Failed to record status after failed operation",
                extra={
                    "event": LogEvent.STATUS_WRITE_FAILED,
                    "instance_id": instance_id,
                    "status": status,
                    "error": e.message,
                },
            )

    async def _remove_orphan(self, instance_id: str, container_id: str) -> None:
        try:
            await self._driver.remove_container(container_id)
            logger.warning(
                "Removed orphaned container after failed insert",
                extra={
                    "event": LogEvent.ORPHAN_REMOVED,
                    "instance_id": instance_id,
                    "container_id": container_id,
                },
            )
        except DriverError as e:
            logger.error(
                "Failed to remove orphaned container",
                extra={
                    "event": LogEvent.CLEANUP_FAILED,
                    "instance_id": instance_id,
                    "container_id": container_id,
                    "error": e.message,
                },
            )

    async def _audit(
        self,
        owner_id: str,
        instance_id: str | None,
        action: AuditAction,
        details: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._audit_log.record(owner_id, instance_id, action, details)
        except StoreError as e:
            logger.warning(
                "Audit record failed",
                extra={
                    "event": LogEvent.AUDIT_FAILED,
                    "instance_id": instance_id,
                    "action": action,
                    "error": e.message,
                },
            )

    @staticmethod
    def _merge_config(base: InstanceConfig, overrides: dict[str, Any] | None) -> InstanceConfig:
        try:
            return base.merged(overrides)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid instance config: {e.error_count()} error(s)") from e

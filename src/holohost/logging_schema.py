"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for HoloHost.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.CONTAINER_STARTED, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"

    # Docker events
    DOCKER_UNAVAILABLE = "docker_unavailable"
    NETWORK_CREATED = "network_created"
    IMAGE_PULLED = "image_pulled"
    PORT_ALLOCATED = "port_allocated"
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_RESTARTED = "container_restarted"
    CONTAINER_REMOVED = "container_removed"
    DRIVER_ERROR = "driver_error"
    DRIVER_TIMEOUT = "driver_timeout"

    # Instance lifecycle
    INSTANCE_CREATED = "instance_created"
    INSTANCE_DELETED = "instance_deleted"
    INSTANCE_UPDATED = "instance_updated"
    STATE_CHANGED = "state_changed"
    OPERATION_FAILED = "operation_failed"
    ORPHAN_REMOVED = "orphan_removed"
    CLEANUP_FAILED = "cleanup_failed"
    AUDIT_FAILED = "audit_failed"
    STATUS_WRITE_FAILED = "status_write_failed"

    # Store events
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"

    # Realtime events
    SUBSCRIBED = "subscribed"
    UNSUBSCRIBED = "unsubscribed"
    POLL_FAILED = "poll_failed"
    DELIVERY_FAILED = "delivery_failed"
    LOG_STREAM_OPENED = "log_stream_opened"
    LOG_STREAM_CLOSED = "log_stream_closed"
    WS_CONNECTED = "ws_connected"
    WS_DISCONNECTED = "ws_disconnected"
    WS_REJECTED = "ws_rejected"

    # Error events
    UNHANDLED_EXCEPTION = "unhandled_exception"
    HOLOHOST_ERROR = "holohost_error"

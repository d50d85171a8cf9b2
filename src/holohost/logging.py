"""Logging configuration for HoloHost.

Two output formats:
- text: Human-readable for local development
- json: One object per line for log aggregation

Records carry structured fields through `extra` (event, instance_id, ...).
The WebSocket transport binds the connected instance to a context variable
so every record emitted while serving that connection is tagged with it.
"""

import logging
import sys
import time
from collections import OrderedDict
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from pythonjsonlogger import json as jsonlogger

from holohost.config import LoggingConfig

connection_instance_ctx: ContextVar[str | None] = ContextVar("connection_instance", default=None)

_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


def bind_connection_instance(instance_id: str | None) -> None:
    """Tag subsequent records in this context with an instance id."""
    connection_instance_ctx.set(instance_id)


class RateLimitFilter(logging.Filter):
    """Drop repeats of the same warning for the same instance.

    Records are keyed by logger, event (message when no event is set) and
    instance_id, so a daemon outage logs once per instance per window
    instead of once per poll. When a key passes again, the number of
    records dropped meanwhile is attached as `suppressed`.

    Args:
        rate_limit_seconds: Window during which a key is logged once
        max_cache_size: Keys tracked before the least recently seen is evicted
    """

    def __init__(
        self,
        rate_limit_seconds: float = 5.0,
        max_cache_size: int = 1000,
        name: str = "",
    ) -> None:
        super().__init__(name)
        self._window = rate_limit_seconds
        self._max_keys = max_cache_size
        # key -> (last emitted at, dropped since)
        self._seen: OrderedDict[tuple, tuple[float, int]] = OrderedDict()

    @staticmethod
    def _key(record: logging.LogRecord) -> tuple:
        event = getattr(record, "event", None)
        return (
            record.name,
            str(event) if event is not None else record.getMessage(),
            getattr(record, "instance_id", None),
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = self._key(record)
        now = time.monotonic()
        emitted_at, dropped = self._seen.get(key, (None, 0))

        if emitted_at is not None and now - emitted_at < self._window:
            self._seen[key] = (emitted_at, dropped + 1)
            self._seen.move_to_end(key)
            return False

        if dropped:
            record.suppressed = dropped
        self._seen[key] = (now, 0)
        self._seen.move_to_end(key)
        while len(self._seen) > self._max_keys:
            self._seen.popitem(last=False)
        return True


class HoloHostJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, logger, service and source location."""

    def __init__(self, config: LoggingConfig, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service = config.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=UTC).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = self._service
        log_record["source"] = f"{record.module}:{record.lineno}"

        connection_instance = connection_instance_ctx.get()
        if connection_instance and "instance_id" not in log_record:
            log_record["instance_id"] = connection_instance

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        # uvicorn duplicates the message with ANSI codes
        log_record.pop("color_message", None)


def setup_logging(config: LoggingConfig) -> None:
    """Install a single stdout handler on the root and uvicorn loggers."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter: logging.Formatter = HoloHostJsonFormatter(config)
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s [%(name)s] %(message)s")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RateLimitFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").disabled = True

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

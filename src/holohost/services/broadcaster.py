"""Realtime broadcaster.

Turns the driver's pull-based status/log APIs into pushed events:

- Status: a polling loop lists managed containers every poll_interval and,
  for each instance with status subscribers, pushes instance.status (and
  instance.stats when running).
- Logs: each log subscription owns one following log stream, pumped by a
  background task that stops as soon as the subscriber is gone.

Registries map instance_id -> set of subscribers. An entry is dropped when
its last subscriber leaves, so the polling loop does no work for it.
Failures for one instance or one subscriber are logged and never propagate.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from holohost.core.domain import ContainerState
from holohost.core.errors import HoloHostError
from holohost.core.events import ServerEvent, logs_event, stats_event, status_event
from holohost.logging_schema import LogEvent
from holohost.metrics import BROADCASTER_ERRORS, BROADCASTER_EVENTS, BROADCASTER_SUBSCRIPTIONS

if TYPE_CHECKING:
    from holohost.core.interfaces import ContainerDriver, LogStream, Subscriber
    from holohost.core.models import ContainerStatus

logger = logging.getLogger(__name__)

CONTAINER_NOT_FOUND_LINE = "[Container not found]"
LOG_STREAM_ENDED_LINE = "[Log stream ended]"


def _error_line(error: Exception) -> str:
    message = error.message if isinstance(error, HoloHostError) else str(error)
    return f"[Error: {message or type(error).__name__}]"


class RealtimeBroadcaster:
    """Per-instance status and log fan-out to subscribers."""

    def __init__(
        self,
        driver: ContainerDriver,
        poll_interval: float = 5.0,
        log_tail: int = 50,
    ) -> None:
        self._driver = driver
        self._poll_interval = poll_interval
        self._log_tail = log_tail

        self._status_subscribers: dict[str, set[Subscriber]] = {}
        self._log_subscribers: dict[str, set[Subscriber]] = {}
        self._log_tasks: dict[tuple[str, Subscriber], asyncio.Task] = {}

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def status_instances(self) -> set[str]:
        """Instance ids with at least one status subscriber."""
        return set(self._status_subscribers)

    @property
    def log_instances(self) -> set[str]:
        """Instance ids with at least one log subscriber."""
        return set(self._log_subscribers)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe_status(self, instance_id: str, subscriber: Subscriber) -> None:
        self._status_subscribers.setdefault(instance_id, set()).add(subscriber)
        self._update_gauges()
        logger.debug(
            "Status subscribed",
            extra={"event": LogEvent.SUBSCRIBED, "instance_id": instance_id, "kind": "status"},
        )

    def unsubscribe_status(self, instance_id: str, subscriber: Subscriber) -> None:
        self._discard(self._status_subscribers, instance_id, subscriber)
        self._update_gauges()
        logger.debug(
            "Status unsubscribed",
            extra={"event": LogEvent.UNSUBSCRIBED, "instance_id": instance_id, "kind": "status"},
        )

    async def subscribe_logs(
        self,
        instance_id: str,
        subscriber: Subscriber,
    ) -> asyncio.Task | None:
        """Register for logs and start following the instance's container.

        Returns the pump task, or None when no stream was opened (container
        missing or the runtime failed; the subscriber gets one line saying so)
        or the subscriber left before the stream was ready.
        """
        self._log_subscribers.setdefault(instance_id, set()).add(subscriber)
        self._update_gauges()

        try:
            container = await self._find_container(instance_id)
            if container is None:
                await self._deliver(subscriber, logs_event(instance_id, CONTAINER_NOT_FOUND_LINE))
                return None
            stream = await self._driver.get_container_logs(
                container.id, tail=self._log_tail, follow=True
            )
        except Exception as e:
            BROADCASTER_ERRORS.labels(error_type="log_stream").inc()
            logger.warning(
                "Failed to open log stream",
                extra={
                    "event": LogEvent.POLL_FAILED,
                    "instance_id": instance_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            await self._deliver(subscriber, logs_event(instance_id, _error_line(e)))
            return None

        # Unsubscribed or disconnected while the stream was being opened
        if not self.is_log_subscriber(instance_id, subscriber):
            await stream.aclose()
            return None

        key = (instance_id, subscriber)
        previous = self._log_tasks.pop(key, None)
        if previous:
            previous.cancel()

        task = asyncio.create_task(
            self._pump_logs(instance_id, subscriber, stream),
            name=f"logs-{instance_id}",
        )
        self._log_tasks[key] = task
        task.add_done_callback(lambda t: self._forget_task(key, t))
        logger.info(
            "Log stream opened",
            extra={
                "event": LogEvent.LOG_STREAM_OPENED,
                "instance_id": instance_id,
                "container_id": container.id,
            },
        )
        return task

    def unsubscribe_logs(self, instance_id: str, subscriber: Subscriber) -> None:
        self._discard(self._log_subscribers, instance_id, subscriber)
        self._update_gauges()
        task = self._log_tasks.pop((instance_id, subscriber), None)
        if task:
            task.cancel()

    def remove_subscriber(self, subscriber: Subscriber) -> None:
        """Drop a subscriber from every registry (client disconnected)."""
        for instance_id in list(self._status_subscribers):
            self._discard(self._status_subscribers, instance_id, subscriber)
        for instance_id in list(self._log_subscribers):
            self._discard(self._log_subscribers, instance_id, subscriber)
        for key in [k for k in self._log_tasks if k[1] is subscriber]:
            self._log_tasks.pop(key).cancel()
        self._update_gauges()

    def is_log_subscriber(self, instance_id: str, subscriber: Subscriber) -> bool:
        return subscriber in self._log_subscribers.get(instance_id, ())

    # =========================================================================
    # Polling loop
    # =========================================================================

    async def tick(self) -> None:
        """Push status (and stats) for every subscribed instance once."""
        instance_ids = list(self._status_subscribers)
        if not instance_ids:
            return

        try:
            containers = await self._driver.list_containers()
        except Exception as e:
            BROADCASTER_ERRORS.labels(error_type="poll").inc()
            logger.warning(
                "Container listing failed",
                extra={"event": LogEvent.POLL_FAILED, "error_type": type(e).__name__, "error": str(e)},
            )
            return

        by_instance = {c.instance_id: c for c in containers if c.instance_id}
        for instance_id in instance_ids:
            try:
                await self._poll_instance(instance_id, by_instance.get(instance_id))
            except Exception as e:
                BROADCASTER_ERRORS.labels(error_type="poll").inc()
                logger.warning(
                    "Status poll failed",
                    extra={
                        "event": LogEvent.POLL_FAILED,
                        "instance_id": instance_id,
                        "error_type": type(e).__name__,
                        "error": str(e),
                    },
                )

    async def _poll_instance(self, instance_id: str, container: ContainerStatus | None) -> None:
        if container is None:
            return
        # May have been unsubscribed while an earlier instance was polled
        if instance_id not in self._status_subscribers:
            return

        await self._broadcast(instance_id, status_event(instance_id, container.state))

        if container.state == ContainerState.RUNNING:
            stats = await self._driver.get_container_stats(container.id)
            if stats is not None:
                await self._broadcast(
                    instance_id, stats_event(instance_id, stats.cpu, stats.memory)
                )

    async def run(self) -> None:
        """Main polling loop."""
        self._running = True
        logger.info(
            "Starting broadcaster",
            extra={"event": LogEvent.APP_STARTED, "poll_interval": self._poll_interval},
        )

        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.exception(
                    "Broadcaster tick failed",
                    extra={"event": LogEvent.POLL_FAILED, "error": str(e)},
                )
            await asyncio.sleep(self._poll_interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="broadcaster")
        return self._task

    async def close(self) -> None:
        """Stop polling and terminate every log stream."""
        self._running = False
        tasks = list(self._log_tasks.values())
        if self._task:
            tasks.append(self._task)
            self._task = None
        for task in tasks:
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await asyncio.gather(*tasks, return_exceptions=True)

        self._log_tasks.clear()
        self._status_subscribers.clear()
        self._log_subscribers.clear()
        self._update_gauges()
        logger.info("Broadcaster stopped", extra={"event": LogEvent.APP_STOPPED})

    # =========================================================================
    # Internals
    # =========================================================================

    async def _find_container(self, instance_id: str) -> ContainerStatus | None:
        for container in await self._driver.list_containers():
            if container.instance_id == instance_id:
                return container
        return None

    async def _pump_logs(
        self,
        instance_id: str,
        subscriber: Subscriber,
        stream: LogStream,
    ) -> None:
        """Forward log chunks until the stream ends or the subscriber leaves."""
        try:
            async for chunk in stream:
                if not self.is_log_subscriber(instance_id, subscriber):
                    return
                line = chunk.decode("utf-8", errors="replace").rstrip("\n")
                await self._deliver(subscriber, logs_event(instance_id, line))
            if self.is_log_subscriber(instance_id, subscriber):
                await self._deliver(subscriber, logs_event(instance_id, LOG_STREAM_ENDED_LINE))
        except Exception as e:
            BROADCASTER_ERRORS.labels(error_type="log_stream").inc()
            logger.warning(
                "Log stream failed",
                extra={
                    "event": LogEvent.LOG_STREAM_CLOSED,
                    "instance_id": instance_id,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            if self.is_log_subscriber(instance_id, subscriber):
                await self._deliver(subscriber, logs_event(instance_id, _error_line(e)))
        finally:
            await stream.aclose()
            logger.debug(
                "Log stream closed",
                extra={"event": LogEvent.LOG_STREAM_CLOSED, "instance_id": instance_id},
            )

    async def _broadcast(self, instance_id: str, event: ServerEvent) -> None:
        for subscriber in list(self._status_subscribers.get(instance_id, ())):
            await self._deliver(subscriber, event)

    async def _deliver(self, subscriber: Subscriber, event: ServerEvent) -> bool:
        try:
            await subscriber.deliver(event)
        except Exception as e:
            BROADCASTER_ERRORS.labels(error_type="delivery").inc()
            logger.warning(
                "Event delivery failed",
                extra={
                    "event": LogEvent.DELIVERY_FAILED,
                    "event_type": event.type,
                    "error_type": type(e).__name__,
                    "error": str(e),
                },
            )
            return False
        BROADCASTER_EVENTS.labels(event_type=event.type).inc()
        return True

    def _forget_task(self, key: tuple[str, Subscriber], task: asyncio.Task) -> None:
        if self._log_tasks.get(key) is task:
            del self._log_tasks[key]

    @staticmethod
    def _discard(
        registry: dict[str, set[Subscriber]],
        instance_id: str,
        subscriber: Subscriber,
    ) -> None:
        subscribers = registry.get(instance_id)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            del registry[instance_id]

    def _update_gauges(self) -> None:
        BROADCASTER_SUBSCRIPTIONS.labels(kind="status").set(len(self._status_subscribers))
        BROADCASTER_SUBSCRIPTIONS.labels(kind="logs").set(len(self._log_subscribers))

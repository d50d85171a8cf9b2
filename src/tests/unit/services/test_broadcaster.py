"""Unit tests for RealtimeBroadcaster."""

import asyncio

import pytest

from holohost.core.domain import ContainerState
from holohost.core.errors import DriverError
from holohost.core.models import ContainerStats
from holohost.services import RealtimeBroadcaster
from holohost.services.broadcaster import CONTAINER_NOT_FOUND_LINE, LOG_STREAM_ENDED_LINE


async def wait_until(predicate, timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class TestStatusSubscriptions:
    """Registry bookkeeping for status subscribers."""

    async def test_subscribe_and_unsubscribe(
        self,
        broadcaster: RealtimeBroadcaster,
        make_subscriber,
    ) -> None:
        first, second = make_subscriber(), make_subscriber()

        broadcaster.subscribe_status("i1", first)
        broadcaster.subscribe_status("i1", second)
        broadcaster.unsubscribe_status("i1", first)
        assert broadcaster.status_instances == {"i1"}

        broadcaster.unsubscribe_status("i1", second)
        assert broadcaster.status_instances == set()

    async def test_unsubscribe_unknown_is_noop(
        self,
        broadcaster: RealtimeBroadcaster,
        make_subscriber,
    ) -> None:
        broadcaster.unsubscribe_status("nope", make_subscriber())

        assert broadcaster.status_instances == set()

    async def test_no_polling_without_subscribers(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        broadcaster.subscribe_status("i1", subscriber)
        broadcaster.unsubscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert driver.calls["list_containers"] == 0
        assert subscriber.events == []


class TestTick:
    """One polling pass."""

    async def test_running_emits_status_and_stats(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1", ContainerState.RUNNING)
        driver.stats["ctr-i1"] = ContainerStats(cpu=1.5, memory=20.0)
        broadcaster.subscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert [e.type for e in subscriber.events] == ["instance.status", "instance.stats"]
        assert subscriber.events[0].data.status == "running"
        assert subscriber.events[1].data.cpu == 1.5
        assert subscriber.events[1].data.memory == 20.0

    async def test_stopped_emits_status_only(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1", ContainerState.EXITED)
        broadcaster.subscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert [e.type for e in subscriber.events] == ["instance.status"]
        assert subscriber.events[0].data.status == "exited"
        assert driver.calls["get_container_stats"] == 0

    async def test_missing_stats_skipped(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        driver.failures["get_container_stats"] = DriverError("stats unavailable")
        broadcaster.subscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert [e.type for e in subscriber.events] == ["instance.status"]

    async def test_missing_container_emits_nothing(
        self,
        broadcaster: RealtimeBroadcaster,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        broadcaster.subscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert subscriber.events == []

    async def test_one_listing_per_tick(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        for instance_id in ("i1", "i2", "i3"):
            driver.add_container(instance_id, ContainerState.EXITED)
            broadcaster.subscribe_status(instance_id, make_subscriber())

        await broadcaster.tick()

        assert driver.calls["list_containers"] == 1

    async def test_instance_failure_does_not_stop_others(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        first, second = make_subscriber(), make_subscriber()
        driver.add_container("i1")
        driver.add_container("i2")
        driver.stats["ctr-i2"] = ContainerStats(cpu=0.0, memory=1.0)

        original = driver.get_container_stats

        async def flaky_stats(container_id: str):
            if container_id == "ctr-i1":
                raise RuntimeError("unexpected payload")
            return await original(container_id)

        driver.get_container_stats = flaky_stats
        broadcaster.subscribe_status("i1", first)
        broadcaster.subscribe_status("i2", second)

        await broadcaster.tick()

        assert [e.type for e in first.events] == ["instance.status"]
        assert [e.type for e in second.events] == ["instance.status", "instance.stats"]

    async def test_listing_failure_is_contained(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        driver.failures["list_containers"] = DriverError("daemon unreachable")
        broadcaster.subscribe_status("i1", subscriber)

        await broadcaster.tick()

        assert subscriber.events == []

    async def test_delivery_failure_isolated(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        """A broken subscriber does not prevent delivery to the others."""
        broken, healthy = make_subscriber(fail=True), make_subscriber()
        driver.add_container("i1", ContainerState.EXITED)
        broadcaster.subscribe_status("i1", broken)
        broadcaster.subscribe_status("i1", healthy)

        await broadcaster.tick()

        assert [e.type for e in healthy.events] == ["instance.status"]


class TestLogs:
    """Log subscriptions and the per-subscriber pump."""

    async def test_lines_then_end_marker(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        stream = make_log_stream([b"hello\n", b"world\n", None])
        driver.log_streams["ctr-i1"] = stream

        task = await broadcaster.subscribe_logs("i1", subscriber)
        await task

        assert subscriber.log_lines() == ["hello", "world", LOG_STREAM_ENDED_LINE]
        assert stream.closed

    async def test_container_not_found(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()

        task = await broadcaster.subscribe_logs("i1", subscriber)

        assert task is None
        assert subscriber.log_lines() == [CONTAINER_NOT_FOUND_LINE]
        assert driver.calls["get_container_logs"] == 0

    async def test_open_failure_reports_error(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        driver.failures["get_container_logs"] = DriverError("No such container")

        task = await broadcaster.subscribe_logs("i1", subscriber)

        assert task is None
        assert subscriber.log_lines() == ["[Error: No such container]"]

    async def test_stream_failure_reports_error(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        stream = make_log_stream([b"first\n", DriverError("connection reset")])
        driver.log_streams["ctr-i1"] = stream

        task = await broadcaster.subscribe_logs("i1", subscriber)
        await task

        assert subscriber.log_lines() == ["first", "[Error: connection reset]"]
        assert stream.closed

    async def test_unsubscribe_cancels_pump(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        stream = make_log_stream([b"one\n"])
        driver.log_streams["ctr-i1"] = stream

        task = await broadcaster.subscribe_logs("i1", subscriber)
        await wait_until(lambda: subscriber.log_lines() == ["one"])

        broadcaster.unsubscribe_logs("i1", subscriber)
        with pytest.raises(asyncio.CancelledError):
            await task

        stream.push(b"two\n")
        await asyncio.sleep(0.02)

        assert subscriber.log_lines() == ["one"]
        assert stream.closed
        assert broadcaster.log_instances == set()

    @pytest.mark.parametrize("leave", ["unsubscribe_logs", "remove_subscriber"])
    async def test_leaving_while_opening_closes_stream(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
        leave: str,
    ) -> None:
        """A subscriber gone before the stream is ready gets no pump."""
        subscriber = make_subscriber()
        driver.add_container("i1")
        stream = make_log_stream()
        driver.log_streams["ctr-i1"] = stream

        listing, release = asyncio.Event(), asyncio.Event()
        original = driver.list_containers

        async def gated_list():
            listing.set()
            await release.wait()
            return await original()

        driver.list_containers = gated_list

        pending = asyncio.create_task(broadcaster.subscribe_logs("i1", subscriber))
        await listing.wait()
        if leave == "unsubscribe_logs":
            broadcaster.unsubscribe_logs("i1", subscriber)
        else:
            broadcaster.remove_subscriber(subscriber)
        release.set()

        assert await pending is None
        assert stream.closed
        assert broadcaster._log_tasks == {}
        assert broadcaster.log_instances == set()

    async def test_resubscribe_replaces_pump(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1")
        driver.log_streams["ctr-i1"] = make_log_stream()

        first = await broadcaster.subscribe_logs("i1", subscriber)
        second = await broadcaster.subscribe_logs("i1", subscriber)
        await asyncio.sleep(0)

        assert first.cancelled() or first.cancelling()
        assert not second.done()

    async def test_subscribers_get_independent_streams(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        first, second = make_subscriber(), make_subscriber()
        driver.add_container("i1")
        driver.log_streams["ctr-i1"] = make_log_stream([b"shared\n", None])

        task = await broadcaster.subscribe_logs("i1", first)
        await task
        driver.log_streams["ctr-i1"] = make_log_stream([b"later\n", None])
        task = await broadcaster.subscribe_logs("i1", second)
        await task

        assert first.log_lines() == ["shared", LOG_STREAM_ENDED_LINE]
        assert second.log_lines() == ["later", LOG_STREAM_ENDED_LINE]
        assert broadcaster.log_instances == {"i1"}


class TestLifecycle:
    async def test_remove_subscriber_everywhere(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber, other = make_subscriber(), make_subscriber()
        driver.add_container("i1")
        stream = make_log_stream()
        driver.log_streams["ctr-i1"] = stream
        broadcaster.subscribe_status("i1", subscriber)
        broadcaster.subscribe_status("i2", subscriber)
        broadcaster.subscribe_status("i2", other)
        task = await broadcaster.subscribe_logs("i1", subscriber)
        await asyncio.sleep(0)

        broadcaster.remove_subscriber(subscriber)
        await asyncio.gather(task, return_exceptions=True)

        assert broadcaster.status_instances == {"i2"}
        assert broadcaster.log_instances == set()
        assert task.cancelled()
        assert stream.closed

    async def test_run_polls_until_closed(
        self,
        broadcaster: RealtimeBroadcaster,
        driver,
        make_subscriber,
        make_log_stream,
    ) -> None:
        subscriber = make_subscriber()
        driver.add_container("i1", ContainerState.EXITED)
        driver.log_streams["ctr-i1"] = make_log_stream()
        broadcaster.subscribe_status("i1", subscriber)
        task = await broadcaster.subscribe_logs("i1", subscriber)

        poller = broadcaster.start()
        await wait_until(lambda: len(subscriber.of_type("instance.status")) >= 2)
        await broadcaster.close()

        assert poller.done()
        assert task.done()
        assert broadcaster.status_instances == set()
        assert broadcaster.log_instances == set()

    async def test_start_is_idempotent(self, broadcaster: RealtimeBroadcaster) -> None:
        assert broadcaster.start() is broadcaster.start()

"""Tests for the HTTP endpoints and the WebSocket transport.

The app runs without its lifespan; a runtime built from test doubles is
installed with set_runtime().
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from holohost import __version__
from holohost.app.dependencies import Runtime, reset_runtime, set_runtime
from holohost.app.main import app
from holohost.core.models import CreateInstanceRequest
from holohost.services import RealtimeBroadcaster
from holohost.services.broadcaster import LOG_STREAM_ENDED_LINE


@pytest.fixture
def runtime(driver, store, audit, manager):
    runtime = Runtime(
        driver=driver,
        store=store,
        audit=audit,
        manager=manager,
        broadcaster=RealtimeBroadcaster(driver, poll_interval=60.0),
    )
    set_runtime(runtime)
    yield runtime
    reset_runtime()


@pytest.fixture
def client(runtime) -> TestClient:
    return TestClient(app)


@pytest.fixture
async def instance(manager):
    return await manager.create("owner-1", CreateInstanceRequest(name="bot", credential="tok"))


class TestHealth:
    def test_healthy(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "version": __version__,
            "docker": "connected",
        }

    def test_docker_unavailable_still_healthy(self, client: TestClient, driver) -> None:
        driver.healthy = False

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["docker"] == "unavailable"

    def test_metrics(self, client: TestClient) -> None:
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "holohost_broadcaster_subscriptions" in response.text


class TestWebSocketAuth:
    """Connections must present a known security code."""

    def test_missing_code_rejected(self, client: TestClient) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        assert exc_info.value.code == 4401

    def test_unknown_code_rejected(self, client: TestClient, instance) -> None:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws", headers={"X-Security-Code": "wrong"}):
                pass

        assert exc_info.value.code == 4401

    def test_query_parameter_rejected_by_default(self, client: TestClient, instance) -> None:
        """Codes in URLs leak into proxy logs, so only the header counts."""
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws?security_code={instance.security_code}"):
                pass

        assert exc_info.value.code == 4401

    def test_query_parameter_accepted_when_enabled(
        self,
        client: TestClient,
        runtime: Runtime,
        instance,
    ) -> None:
        runtime.ws_query_auth = True

        with client.websocket_connect(f"/ws?security_code={instance.security_code}") as ws:
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid event"}}


class TestWebSocketEvents:
    def test_other_instance_forbidden(
        self,
        client: TestClient,
        runtime: Runtime,
        instance,
    ) -> None:
        with client.websocket_connect(
            "/ws", headers={"X-Security-Code": instance.security_code}
        ) as ws:
            ws.send_json({"type": "subscribe.instance", "instance_id": "someone-elses"})

            assert ws.receive_json() == {
                "type": "error",
                "data": {"message": "Not authorized for this instance"},
            }
        assert runtime.broadcaster.status_instances == set()

    def test_unknown_event_type(self, client: TestClient, instance) -> None:
        with client.websocket_connect(
            "/ws", headers={"X-Security-Code": instance.security_code}
        ) as ws:
            ws.send_json({"type": "subscribe.everything", "instance_id": instance.id})

            assert ws.receive_json()["data"]["message"] == "Invalid event"

    def test_subscribe_logs(
        self,
        client: TestClient,
        driver,
        instance,
        make_log_stream,
    ) -> None:
        driver.log_streams[instance.container_id] = make_log_stream([b"ready\n", None])

        with client.websocket_connect(
            "/ws", headers={"X-Security-Code": instance.security_code}
        ) as ws:
            ws.send_json({"type": "subscribe.logs", "instance_id": instance.id})

            assert ws.receive_json() == {
                "type": "instance.logs",
                "data": {"instance_id": instance.id, "line": "ready"},
            }
            assert ws.receive_json()["data"]["line"] == LOG_STREAM_ENDED_LINE

    def test_disconnect_removes_subscriptions(
        self,
        client: TestClient,
        runtime: Runtime,
        instance,
    ) -> None:
        with client.websocket_connect(
            "/ws", headers={"X-Security-Code": instance.security_code}
        ) as ws:
            ws.send_json({"type": "subscribe.instance", "instance_id": instance.id})
            # Round-trip so the subscription is processed before disconnecting
            ws.send_text("{}")
            ws.receive_json()
            assert runtime.broadcaster.status_instances == {instance.id}

        assert runtime.broadcaster.status_instances == set()

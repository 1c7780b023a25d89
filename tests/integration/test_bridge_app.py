"""Integration tests for the bridge HTTP surface."""

import asyncio
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from openworld import __version__
from openworld.engine_spine.app import create_bridge_app, run_bridge
from openworld.engine_spine.stream import sse_event_generator


class TestRoot:
    def test_root(self, bridge_client):
        response = bridge_client.get("/")
        assert response.status_code == 200
        assert response.json()["version"] == __version__
        assert response.json()["api"] == "/v1"


class TestEngineRoutes:
    def test_status(self, bridge_client):
        data = bridge_client.get("/v1/engine/status").json()

        assert data == {
            "running": True,
            "managed_process": False,
            "pid": None,
            "engine_host": "http://engine.test",
        }

    def test_ensure_with_running_engine(self, bridge_client, services):
        events = []
        services.broadcaster.subscribe(events.append)

        data = bridge_client.post("/v1/engine/ensure").json()

        assert data["success"] is True
        assert data["stage"] == "ready"
        assert [e["payload"]["stage"] for e in events] == ["checking", "ready"]

    def test_ensure_timeout_reported_not_raised(self, bridge_client, services, fake_engine):
        """A down engine with a found binary ends in the error stage."""
        fake_engine.status_overrides["/api/tags"] = (503, {})
        services.controller.locator = type(
            "Found", (), {"locate": lambda self: Path("/usr/bin/ollama")}
        )()

        response = bridge_client.post("/v1/engine/ensure")

        assert response.status_code == 200
        assert response.json()["error_code"] == "timeout"


class TestModelRoutes:
    def test_list(self, bridge_client):
        models = bridge_client.get("/v1/models").json()
        assert [m["name"] for m in models] == ["llama3:8b"]

    def test_pull(self, bridge_client, services):
        events = []
        services.broadcaster.subscribe(events.append)

        data = bridge_client.post("/v1/models/pull", json={"name": "llama3:8b"}).json()

        assert data == {"name": "llama3:8b", "events": 2}
        assert [e["payload"]["status"] for e in events] == ["pulling manifest", "success"]

    def test_delete(self, bridge_client, fake_engine):
        response = bridge_client.delete("/v1/models/llama3:8b")

        assert response.status_code == 204
        assert fake_engine.requests[-1] == ("DELETE", "/api/delete", {"name": "llama3:8b"})

    def test_engine_failure_maps_to_502(self, bridge_client, fake_engine):
        fake_engine.status_overrides["/api/tags"] = (500, {"error": "disk full"})

        response = bridge_client.get("/v1/models")

        assert response.status_code == 502
        detail = response.json()["detail"]
        assert detail["code"] == "network"
        assert detail["engine_status"] == 500


class TestChatRoute:
    def test_chat(self, bridge_client, services):
        events = []
        services.broadcaster.subscribe(events.append)

        response = bridge_client.post(
            "/v1/chat",
            json={
                "conversation_id": "conv-1",
                "model": "llama3:8b",
                "messages": [{"role": "user", "content": "hello"}],
            },
        )

        assert response.json() == {"conversation_id": "conv-1", "content": "Hi there"}
        tokens = [e["payload"] for e in events if e["event_type"] == "chat.token"]
        assert [t["content"] for t in tokens] == ["Hi", " there"]
        assert tokens[-1]["done"] is True

    def test_chat_validation(self, bridge_client):
        response = bridge_client.post("/v1/chat", json={"model": "x"})
        assert response.status_code == 422


class TestShutdown:
    def test_lifespan_shutdown_kills_managed_engine(self, services):
        app = create_bridge_app(services=services)
        with TestClient(app):
            process = services.controller.supervisor.start(Path("/usr/bin/ollama"))
            assert not process.handle.killed

        assert process.handle.killed
        assert services.controller.supervisor.process is None


class TestSseGenerator:
    @pytest.mark.asyncio
    async def test_streams_published_events(self, services):
        broadcaster = services.broadcaster
        stream = sse_event_generator(broadcaster)
        first = asyncio.ensure_future(stream.__anext__())

        while broadcaster.get_connection_count() == 0:
            await asyncio.sleep(0)
        broadcaster.publish("engine.status", {"stage": "ready"})

        text = await asyncio.wait_for(first, timeout=1.0)
        await stream.aclose()

        assert text.startswith("event: engine.status\n")
        assert 'data: {"stage": "ready"}' in text
        assert broadcaster.get_connection_count() == 0

    @pytest.mark.asyncio
    async def test_event_type_filter(self, services):
        broadcaster = services.broadcaster
        stream = sse_event_generator(broadcaster, {"chat.token"})
        first = asyncio.ensure_future(stream.__anext__())

        while broadcaster.get_connection_count() == 0:
            await asyncio.sleep(0)
        broadcaster.publish("engine.status", {"stage": "ready"})
        broadcaster.publish("chat.token", {"content": "x"})

        text = await asyncio.wait_for(first, timeout=1.0)
        await stream.aclose()

        assert text.startswith("event: chat.token\n")


class TestRunBridge:
    def test_refuses_public_bind(self):
        with pytest.raises(ValueError):
            run_bridge(host="0.0.0.0")

"""Shared fixtures for bridge integration tests."""

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import FakeEngine, FakeSpawner, ndjson
from openworld.client.chat import ChatService
from openworld.client.ollama import EngineClient
from openworld.config import Settings
from openworld.engine_spine.app import create_bridge_app
from openworld.engine_spine.broadcaster import EventBroadcaster
from openworld.engine_spine.installer import ArtifactInstaller
from openworld.engine_spine.lifecycle import LifecycleController
from openworld.engine_spine.locator import BinaryLocator
from openworld.engine_spine.models import PlatformInfo
from openworld.engine_spine.platforms import PlatformResolver
from openworld.engine_spine.probe import ReadinessProbe
from openworld.engine_spine.status import EngineServices
from openworld.engine_spine.supervisor import ProcessSupervisor

ENGINE_URL = "http://engine.test"


@pytest.fixture
def fake_engine():
    """A running engine with one model and canned streams."""
    return FakeEngine(
        chat_body=ndjson(
            {"message": {"content": "Hi"}, "done": False},
            {"message": {"content": " there"}, "done": True},
        ),
        pull_body=ndjson({"status": "pulling manifest"}, {"status": "success"}),
        tags={"models": [{"name": "llama3:8b", "size": 4_700_000_000}]},
    )


@pytest.fixture
def services(tmp_path, fake_engine):
    """Bridge services wired to the fake engine; no real processes."""
    settings = Settings(data_dir=tmp_path, engine_host=ENGINE_URL)
    transport = httpx.MockTransport(fake_engine.handler)
    broadcaster = EventBroadcaster()
    info = PlatformInfo(os_name="linux", arch="x86_64")
    controller = LifecycleController(
        probe=ReadinessProbe(ENGINE_URL, interval=0.01, transport=transport),
        locator=BinaryLocator(
            settings.bin_dir, info.os_name, common_paths=[], which=lambda name: None
        ),
        installer=ArtifactInstaller(settings.bin_dir, info, transport=transport),
        supervisor=ProcessSupervisor(spawn=FakeSpawner()),
        resolver=PlatformResolver(info),
        sink=broadcaster,
        short_budget=0.05,
        long_budget=0.05,
    )
    client = EngineClient(ENGINE_URL, transport=transport)
    return EngineServices(
        settings=settings,
        broadcaster=broadcaster,
        controller=controller,
        client=client,
        chat=ChatService(client, broadcaster),
    )


@pytest.fixture
def bridge_client(services):
    """TestClient with lifespan running."""
    app = create_bridge_app(services=services)
    with TestClient(app) as client:
        yield client

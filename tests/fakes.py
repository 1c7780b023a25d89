"""Fakes for engine lifecycle and client tests."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import httpx

from openworld.client.ollama import EngineClient
from openworld.engine_spine.installer import CommandResult


class RecordingSink:
    """Event sink that keeps every published event."""

    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, event_type: str, payload: dict[str, Any]) -> int:
        self.events.append((event_type, payload))
        return 1

    def payloads(self, event_type: str) -> list[dict[str, Any]]:
        return [p for t, p in self.events if t == event_type]

    def stages(self) -> list[str]:
        return [p["stage"] for t, p in self.events if t == "engine.status"]


class FailingSink:
    """Event sink whose every publish raises."""

    def __init__(self):
        self.attempts = 0

    def publish(self, event_type: str, payload: dict[str, Any]) -> int:
        self.attempts += 1
        raise RuntimeError("sink is down")


class FakeHandle:
    """Stand-in for a Popen handle."""

    def __init__(self, pid: int):
        self.pid = pid
        self.returncode: int | None = None
        self.killed = False
        self.kill_count = 0

    def poll(self) -> int | None:
        return self.returncode

    def kill(self) -> None:
        self.kill_count += 1
        self.killed = True
        self.returncode = -9

    def wait(self, timeout: float | None = None) -> int | None:
        return self.returncode

    def exit(self, code: int = 1) -> None:
        self.returncode = code


class FakeSpawner:
    """Counts spawns and hands out FakeHandles."""

    def __init__(self, error: Exception | None = None):
        self.calls: list[dict[str, Any]] = []
        self.handles: list[FakeHandle] = []
        self.error = error
        self.max_live = 0
        self._lock = threading.Lock()

    def __call__(self, args, **kwargs) -> FakeHandle:
        if self.error is not None:
            raise self.error
        with self._lock:
            self.calls.append({"args": list(args), **kwargs})
            handle = FakeHandle(pid=1000 + len(self.handles))
            self.handles.append(handle)
            live = sum(1 for h in self.handles if h.returncode is None)
            self.max_live = max(self.max_live, live)
        return handle


class FakeRunner:
    """Async command runner that records commands.

    ``on_extract`` is called with the destination directory whenever an
    extraction command runs, so tests can lay out archive contents.
    """

    def __init__(
        self,
        on_extract=None,
        extract_result: CommandResult | None = None,
        version_result: CommandResult | None = None,
        extract_error: Exception | None = None,
    ):
        self.commands: list[list[str]] = []
        self.on_extract = on_extract
        self.extract_result = extract_result or CommandResult(0)
        self.version_result = version_result or CommandResult(0, stdout="ollama 0.5.7")
        self.extract_error = extract_error

    async def __call__(self, args, timeout: float) -> CommandResult:
        args = list(args)
        self.commands.append(args)
        if args[-1] == "--version":
            return self.version_result
        if self.extract_error is not None:
            raise self.extract_error
        if self.on_extract is not None:
            dest = Path(args[args.index("-C") + 1] if "-C" in args else args[-1])
            self.on_extract(dest)
        return self.extract_result

BASE_URL = "http://engine.test"


def ndjson(*records: dict) -> bytes:
    return b"".join(json.dumps(r).encode() + b"\n" for r in records)


class ChunkedStream(httpx.AsyncByteStream):
    """Serves a body in fixed-size chunks."""

    def __init__(self, body: bytes, size: int = 5):
        self.body = body
        self.size = size

    async def __aiter__(self):
        for i in range(0, len(self.body), self.size):
            yield self.body[i : i + self.size]


class FakeEngine:
    """Minimal /api/* surface for the client."""

    def __init__(self, chat_body: bytes = b"", pull_body: bytes = b"", tags=None):
        self.chat_body = chat_body
        self.pull_body = pull_body
        self.tags = tags if tags is not None else {"models": []}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.status_overrides: dict[str, tuple[int, dict]] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, request.url.path, body))

        if request.url.path in self.status_overrides:
            code, payload = self.status_overrides[request.url.path]
            return httpx.Response(code, json=payload)
        if request.url.path == "/api/tags":
            return httpx.Response(200, json=self.tags)
        if request.url.path == "/api/chat":
            return httpx.Response(200, stream=ChunkedStream(self.chat_body))
        if request.url.path == "/api/pull":
            return httpx.Response(200, stream=ChunkedStream(self.pull_body, 7))
        if request.url.path == "/api/delete":
            return httpx.Response(200)
        return httpx.Response(404)

    def client(self) -> EngineClient:
        return EngineClient(BASE_URL, transport=httpx.MockTransport(self.handler))

"""Tests for readiness polling."""

import httpx
import pytest

from openworld.engine_spine.probe import HEALTH_PATH, ReadinessProbe


def counting_transport(responses):
    """Serve the given status codes (or exceptions) in order, repeating the last."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        item = responses[min(len(calls) - 1, len(responses) - 1)]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, json={"models": []})

    return httpx.MockTransport(handler), calls


class TestIsReady:
    @pytest.mark.asyncio
    async def test_success_status_is_ready(self):
        transport, calls = counting_transport([200])
        probe = ReadinessProbe("http://engine.test/", transport=transport)

        assert await probe.is_ready() is True
        assert calls == [HEALTH_PATH]

    @pytest.mark.asyncio
    async def test_error_status_is_not_ready(self):
        transport, _ = counting_transport([503])
        probe = ReadinessProbe("http://engine.test", transport=transport)
        assert await probe.is_ready() is False

    @pytest.mark.asyncio
    async def test_connection_refused_is_not_ready(self):
        transport, _ = counting_transport([httpx.ConnectError("refused")])
        probe = ReadinessProbe("http://engine.test", transport=transport)
        assert await probe.is_ready() is False


class TestWaitUntilReady:
    @pytest.mark.asyncio
    async def test_returns_when_engine_comes_up(self):
        transport, calls = counting_transport(
            [httpx.ConnectError("refused"), 503, 200]
        )
        probe = ReadinessProbe("http://engine.test", interval=0.01, transport=transport)

        assert await probe.wait_until_ready(1.0) is True
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_budget_bounds_attempts(self):
        """The budget divided by the interval caps the number of requests."""
        transport, calls = counting_transport([httpx.ConnectError("refused")])
        probe = ReadinessProbe("http://engine.test", interval=0.125, transport=transport)

        assert await probe.wait_until_ready(0.5) is False
        assert len(calls) == 4

    @pytest.mark.asyncio
    async def test_zero_budget_still_checks_once(self):
        transport, calls = counting_transport([200])
        probe = ReadinessProbe("http://engine.test", interval=0.5, transport=transport)

        assert await probe.wait_until_ready(0) is True
        assert len(calls) == 1

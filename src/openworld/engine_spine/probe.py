"""Readiness polling against the engine's tags endpoint."""

from __future__ import annotations

import asyncio
import logging
import math

import httpx

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 0.5
REQUEST_TIMEOUT_SECONDS = 2.0
HEALTH_PATH = "/api/tags"


class ReadinessProbe:
    """Polls GET /api/tags until the engine answers or the budget runs out.

    The probe only reports; turning a False into a timeout error is the
    caller's decision.
    """

    def __init__(
        self,
        base_url: str,
        *,
        interval: float = POLL_INTERVAL_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.interval = interval
        self.request_timeout = request_timeout
        self._transport = transport

    async def is_ready(self, client: httpx.AsyncClient | None = None) -> bool:
        """Single health request."""
        if client is None:
            async with self._client() as own_client:
                return await self._check(own_client)
        return await self._check(client)

    async def wait_until_ready(self, budget_seconds: float) -> bool:
        """Poll at a fixed interval within the time budget.

        Args:
            budget_seconds: Total polling budget

        Returns:
            True as soon as the engine answers, False once the budget is spent
        """
        attempts = max(1, math.ceil(budget_seconds / self.interval))
        async with self._client() as client:
            for attempt in range(1, attempts + 1):
                if await self._check(client):
                    logger.debug(f"Engine ready after {attempt} attempt(s)")
                    return True
                if attempt < attempts:
                    await asyncio.sleep(self.interval)

        logger.info(f"Engine not ready within {budget_seconds:g}s ({attempts} attempts)")
        return False

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.request_timeout,
            transport=self._transport,
        )

    async def _check(self, client: httpx.AsyncClient) -> bool:
        try:
            response = await client.get(HEALTH_PATH)
        except httpx.HTTPError as e:
            logger.debug(f"Readiness check failed: {type(e).__name__}")
            return False
        return response.is_success

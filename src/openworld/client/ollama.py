"""Async client for the engine's HTTP API.

Streaming endpoints (/api/chat, /api/pull) are decoded incrementally with a
per-request ``StreamDecoder``; events are handed to the caller as they
arrive.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

import httpx
from pydantic import ValidationError

from openworld.client.decoder import ChatTokenSchema, PullProgressSchema, StreamDecoder
from openworld.config import ConfigProvider
from openworld.engine_spine.errors import EngineRequestError, NetworkError
from openworld.engine_spine.models import ChatMessage, ChatToken, ModelInfo, PullProgress
from openworld.engine_spine.probe import ReadinessProbe

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
PULL_TIMEOUT_SECONDS = 3600.0  # large models take a while
NOT_RUNNING_MESSAGE = "AI engine is not running. Please restart the app."


class EngineClient:
    """Talks to one engine instance at ``base_url``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: ConfigProvider) -> "EngineClient":
        return cls(config.engine_host)

    def _client(self, timeout: httpx.Timeout | float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout if timeout is None else timeout,
            transport=self._transport,
        )

    async def is_running(self) -> bool:
        """Single readiness check against /api/tags."""
        probe = ReadinessProbe(self.base_url, transport=self._transport)
        return await probe.is_ready()

    async def list_models(self) -> list[ModelInfo]:
        """GET /api/tags mapped to ModelInfo."""
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to connect to engine: {e}") from e

        _raise_for_status(response)
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkError(f"Failed to parse model list: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise NetworkError(
                f"Failed to parse model list: expected an object, got {type(data).__name__}"
            )

        models = []
        for raw in data.get("models") or []:
            if not isinstance(raw, dict):
                continue
            # Engine may send explicit nulls; fall back to field defaults
            cleaned = {k: v for k, v in raw.items() if v is not None}
            try:
                models.append(ModelInfo.model_validate(cleaned))
            except ValidationError as e:
                raise NetworkError(f"Failed to parse model list: {e}") from e
        logger.debug(f"Found {len(models)} installed models")
        return models

    async def pull_model(
        self,
        name: str,
        on_progress: Callable[[PullProgress], None],
    ) -> int:
        """POST /api/pull, streaming progress records to on_progress.

        Returns:
            Number of progress events delivered
        """
        if not await self.is_running():
            raise NetworkError(NOT_RUNNING_MESSAGE)

        decoder = StreamDecoder(PullProgressSchema(), on_progress)
        await self._stream(
            "POST",
            "/api/pull",
            {"name": name, "stream": True},
            decoder,
            timeout=httpx.Timeout(PULL_TIMEOUT_SECONDS, connect=self.timeout),
        )
        logger.info(f"Pull of {name} finished ({decoder.events_emitted} events)")
        return decoder.events_emitted

    async def delete_model(self, name: str) -> None:
        """DELETE /api/delete for one model."""
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE", "/api/delete", json={"name": name}
                )
        except httpx.HTTPError as e:
            raise NetworkError(f"Failed to delete model: {e}") from e
        _raise_for_status(response)
        logger.info(f"Deleted model {name}")

    async def stream_chat(
        self,
        conversation_id: str,
        model: str,
        messages: Sequence[ChatMessage | dict[str, Any]],
        on_token: Callable[[ChatToken], None],
    ) -> str:
        """POST /api/chat, streaming tokens to on_token.

        Returns:
            The concatenated reply text
        """
        parts: list[str] = []

        def collect(token: ChatToken) -> None:
            parts.append(token.content)
            on_token(token)

        payload = {
            "model": model,
            "messages": [_message_dict(m) for m in messages],
            "stream": True,
        }
        decoder = StreamDecoder(ChatTokenSchema(conversation_id), collect)
        await self._stream(
            "POST",
            "/api/chat",
            payload,
            decoder,
            timeout=httpx.Timeout(self.timeout, read=None),
        )
        return "".join(parts)

    async def _stream(
        self,
        method: str,
        path: str,
        payload: dict[str, Any],
        decoder: StreamDecoder,
        timeout: httpx.Timeout,
    ) -> None:
        try:
            async with self._client(timeout) as client:
                async with client.stream(method, path, json=payload) as response:
                    if not response.is_success:
                        await response.aread()
                        _raise_for_status(response)
                    async for chunk in response.aiter_bytes():
                        decoder.feed(chunk)
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {path} failed: {e}") from e

        decoder.finish()


def _message_dict(message: ChatMessage | dict[str, Any]) -> dict[str, Any]:
    if isinstance(message, ChatMessage):
        return message.model_dump()
    return {"role": message["role"], "content": message["content"]}


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    detail = ""
    try:
        body = response.json()
        if isinstance(body, dict):
            detail = str(body.get("error", "")) or response.text
    except ValueError:
        detail = response.text
    raise EngineRequestError(response.status_code, detail.strip()[:500])

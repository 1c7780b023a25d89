"""Chat and model-pull orchestration on top of EngineClient.

Streamed events are published to the event sink as they arrive. The
assistant reply is handed to the conversation store only once a terminal
token has been seen.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from openworld.client.ollama import EngineClient
from openworld.engine_spine.broadcaster import (
    CHAT_TOKEN_TOPIC,
    PULL_PROGRESS_TOPIC,
    EventSink,
)
from openworld.engine_spine.models import ChatMessage, ChatToken, PullProgress

logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    """Persistence for conversations (lives outside this package)."""

    def get_memory_context(self) -> str: ...

    def add_message(self, conversation_id: str, role: str, content: str) -> Any: ...


def build_messages(
    messages: Sequence[ChatMessage],
    memory_context: str = "",
    system_prompt: str = "",
) -> list[ChatMessage]:
    """Prefix the conversation with one system message, if there is any.

    The system message carries the remembered facts first and the user's
    custom system prompt second, separated by a blank line.
    """
    system_parts = [part for part in (memory_context, system_prompt) if part]
    result: list[ChatMessage] = []
    if system_parts:
        result.append(ChatMessage(role="system", content="\n\n".join(system_parts)))
    result.extend(messages)
    return result


class ChatService:
    """Sends chats and pulls models, publishing decoded events."""

    def __init__(
        self,
        client: EngineClient,
        sink: EventSink,
        store: ConversationStore | None = None,
        system_prompt: str = "",
    ):
        self.client = client
        self._sink = sink
        self.store = store
        self.system_prompt = system_prompt

    async def send_message(
        self,
        conversation_id: str,
        messages: Sequence[ChatMessage],
        model: str,
    ) -> str:
        """Stream one assistant reply.

        Returns:
            The full reply text
        """
        memory_context = self.store.get_memory_context() if self.store else ""
        request = build_messages(messages, memory_context, self.system_prompt)

        terminal_seen = False

        def on_token(token: ChatToken) -> None:
            nonlocal terminal_seen
            if token.done:
                terminal_seen = True
            self._publish(CHAT_TOKEN_TOPIC, token.model_dump(mode="json"))

        content = await self.client.stream_chat(
            conversation_id, model, request, on_token
        )

        if not terminal_seen:
            logger.warning(
                f"Chat stream for {conversation_id} ended without a final token; "
                "reply not stored"
            )
        elif self.store is not None:
            self.store.add_message(conversation_id, "assistant", content)

        return content

    async def pull_model(self, name: str) -> int:
        """Pull a model, publishing every progress record."""

        def on_progress(progress: PullProgress) -> None:
            self._publish(
                PULL_PROGRESS_TOPIC,
                {"model": name, **progress.model_dump(mode="json")},
            )

        return await self.client.pull_model(name, on_progress)

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self._sink.publish(event_type, payload)
        except Exception as e:
            logger.debug(f"Dropped {event_type} event: {e}")

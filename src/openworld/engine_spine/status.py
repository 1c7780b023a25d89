"""Wiring of bridge services and engine status reporting."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from openworld.client.chat import ChatService, ConversationStore
from openworld.client.ollama import EngineClient
from openworld.config import Settings
from openworld.engine_spine.broadcaster import EventBroadcaster
from openworld.engine_spine.lifecycle import LifecycleController
from openworld.engine_spine.models import EngineStatusResponse

logger = logging.getLogger(__name__)


@dataclass
class EngineServices:
    """Everything the bridge routes need, built once per app."""

    settings: Settings
    broadcaster: EventBroadcaster
    controller: LifecycleController
    client: EngineClient
    chat: ChatService

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: ConversationStore | None = None,
    ) -> "EngineServices":
        broadcaster = EventBroadcaster()
        controller = LifecycleController.from_settings(settings, broadcaster)
        client = EngineClient.from_config(settings)
        chat = ChatService(
            client,
            broadcaster,
            store=store,
            system_prompt=settings.system_prompt,
        )
        return cls(
            settings=settings,
            broadcaster=broadcaster,
            controller=controller,
            client=client,
            chat=chat,
        )

    async def get_status(self) -> EngineStatusResponse:
        """Current engine reachability and managed-process state."""
        process = self.controller.supervisor.process
        return EngineStatusResponse(
            running=await self.client.is_running(),
            managed_process=process is not None,
            pid=process.pid if process else None,
            engine_host=self.settings.engine_host,
        )

    def shutdown(self) -> None:
        if self.controller.shutdown():
            logger.info("Managed engine stopped on shutdown")

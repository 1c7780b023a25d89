"""Engine lifecycle state machine.

Checking -> Ready
Checking -> (binary found | Downloading) -> Starting -> Ready
Any failing step -> Error

Every transition is published as a LifecycleStatus on the ``engine.status``
topic before the controller proceeds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx

from openworld.config import DEFAULT_ENGINE_HOST, Settings
from openworld.engine_spine.broadcaster import STATUS_TOPIC, EventSink
from openworld.engine_spine.errors import EngineError, ReadinessTimeout, StartError
from openworld.engine_spine.installer import ArtifactInstaller
from openworld.engine_spine.locator import BinaryLocator
from openworld.engine_spine.models import LifecycleStage, LifecycleStatus
from openworld.engine_spine.platforms import PlatformResolver
from openworld.engine_spine.probe import ReadinessProbe
from openworld.engine_spine.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "AI engine is taking too long to start. Please restart the app."


@dataclass
class LifecycleResult:
    """Outcome of one ensure_ready run."""

    success: bool
    stage: LifecycleStage
    message: str
    binary_path: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "stage": self.stage.value,
            "message": self.message,
            "binary_path": self.binary_path,
            "error_code": self.error_code,
        }


def engine_environment(engine_host: str) -> dict[str, str]:
    """Environment for ``serve`` so the engine listens where we probe."""
    if engine_host.rstrip("/") == DEFAULT_ENGINE_HOST:
        return {}
    url = httpx.URL(engine_host)
    if not url.host:
        return {}
    bind = f"{url.host}:{url.port}" if url.port else url.host
    return {"OLLAMA_HOST": bind}


class LifecycleController:
    """Brings the engine to a ready state.

    Usage:
        controller = LifecycleController.from_settings(settings, broadcaster)
        result = await controller.ensure_ready()
        ...
        controller.shutdown()  # host exit hook
    """

    def __init__(
        self,
        *,
        probe: ReadinessProbe,
        locator: BinaryLocator,
        installer: ArtifactInstaller,
        supervisor: ProcessSupervisor,
        resolver: PlatformResolver,
        sink: EventSink,
        short_budget: float = 3.0,
        long_budget: float = 30.0,
    ):
        self.probe = probe
        self.locator = locator
        self.installer = installer
        self.supervisor = supervisor
        self.resolver = resolver
        self._sink = sink
        self.short_budget = short_budget
        self.long_budget = long_budget
        self._run_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        sink: EventSink,
        supervisor: ProcessSupervisor | None = None,
    ) -> "LifecycleController":
        """Wire the default components for the running platform."""
        resolver = PlatformResolver(url_override=settings.engine_download_url)
        if supervisor is None:
            supervisor = ProcessSupervisor(
                inherit_output=settings.inherit_engine_output,
                env=engine_environment(settings.engine_host),
            )
        return cls(
            probe=ReadinessProbe(settings.engine_host),
            locator=BinaryLocator(settings.bin_dir, resolver.info.os_name),
            installer=ArtifactInstaller(settings.bin_dir, resolver.info),
            supervisor=supervisor,
            resolver=resolver,
            sink=sink,
            short_budget=settings.short_probe_seconds,
            long_budget=settings.long_probe_seconds,
        )

    async def ensure_ready(self) -> LifecycleResult:
        """Run the state machine once; concurrent calls are serialized."""
        async with self._run_lock:
            return await self._run()

    def shutdown(self) -> bool:
        """Kill the engine this controller started, if any."""
        return self.supervisor.stop()

    async def _run(self) -> LifecycleResult:
        # Maybe the user already runs an engine themselves
        self._emit(LifecycleStage.CHECKING, "Checking AI engine...")
        if await self.probe.wait_until_ready(self.short_budget):
            return self._ready(None)

        binary = self.locator.locate()
        if binary is not None:
            self._emit(LifecycleStage.STARTING, "Found AI engine, starting...")
        else:
            try:
                binary = await self._install()
            except EngineError as e:
                return self._fail(f"Download failed: {e}", e.code)

        self._emit(LifecycleStage.STARTING, "Starting AI engine...")
        try:
            self.supervisor.start(binary)
        except StartError as e:
            return self._fail(str(e), e.code, binary)

        self._emit(LifecycleStage.STARTING, "Waiting for AI engine to be ready...")
        if await self.probe.wait_until_ready(self.long_budget):
            return self._ready(binary)

        return self._fail(TIMEOUT_MESSAGE, ReadinessTimeout.code, binary)

    async def _install(self) -> Path:
        source = self.resolver.resolve()
        self._emit(LifecycleStage.DOWNLOADING, "Downloading AI engine...", 0.0)
        artifact = await self.installer.install(
            source, on_progress=self._on_download_progress
        )
        self._emit(LifecycleStage.DOWNLOADING, "Download complete!", 1.0)
        return artifact.path

    def _on_download_progress(self, received: int, total: int | None) -> None:
        if total:
            fraction = min(received / total, 1.0)
            self._emit(
                LifecycleStage.DOWNLOADING,
                f"Downloading AI engine... {int(fraction * 100)}%",
                fraction,
            )
        else:
            self._emit(
                LifecycleStage.DOWNLOADING,
                f"Downloading AI engine... {received / (1024 * 1024):.1f} MB",
            )

    def _ready(self, binary: Path | None) -> LifecycleResult:
        self._emit(LifecycleStage.READY, "AI engine ready!")
        return LifecycleResult(
            success=True,
            stage=LifecycleStage.READY,
            message="AI engine ready!",
            binary_path=str(binary) if binary else None,
        )

    def _fail(
        self,
        message: str,
        error_code: str,
        binary: Path | None = None,
    ) -> LifecycleResult:
        logger.error(f"Engine lifecycle failed ({error_code}): {message}")
        self._emit(LifecycleStage.ERROR, message)
        return LifecycleResult(
            success=False,
            stage=LifecycleStage.ERROR,
            message=message,
            binary_path=str(binary) if binary else None,
            error_code=error_code,
        )

    def _emit(
        self,
        stage: LifecycleStage,
        message: str,
        progress: float | None = None,
    ) -> None:
        """Publish a status update; sink failures never reach the state machine."""
        status = LifecycleStatus(stage=stage, message=message, progress=progress)
        try:
            self._sink.publish(STATUS_TOPIC, status.model_dump(mode="json"))
        except Exception as e:
            logger.debug(f"Dropped status update ({stage.value}): {e}")

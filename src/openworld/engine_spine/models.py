"""Pydantic models for engine lifecycle events and decoded stream records.

Status events and decoded events are published to the event sink as plain
dicts via ``model_dump(mode="json")``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class LifecycleStage(str, Enum):
    """Lifecycle state machine stages."""

    CHECKING = "checking"
    DOWNLOADING = "downloading"
    STARTING = "starting"
    READY = "ready"
    ERROR = "error"


class ArchiveKind(str, Enum):
    """How a downloaded artifact is packaged."""

    NONE = "none"
    TAR = "tar"
    ZIP = "zip"


# --- Lifecycle ---


class LifecycleStatus(BaseModel):
    """Status update emitted on every lifecycle transition."""

    stage: LifecycleStage
    message: str
    progress: Optional[float] = Field(None, ge=0.0, le=1.0)


class PlatformInfo(BaseModel):
    """Normalised operating system and CPU architecture."""

    model_config = ConfigDict(frozen=True)

    os_name: str
    arch: str

    def __str__(self) -> str:
        return f"{self.os_name}-{self.arch}"


class DownloadSource(BaseModel):
    """Where the engine build for a platform comes from."""

    model_config = ConfigDict(frozen=True)

    url: str
    archive_kind: ArchiveKind = ArchiveKind.NONE

    @property
    def is_archive(self) -> bool:
        return self.archive_kind != ArchiveKind.NONE


class Artifact(BaseModel):
    """A downloaded engine binary that passed size and version checks."""

    path: Path
    size_bytes: int
    platform: PlatformInfo


# --- Engine HTTP API ---


class ModelDetails(BaseModel):
    """Optional detail block of a model descriptor."""

    format: Optional[str] = None
    family: Optional[str] = None
    parameter_size: Optional[str] = None
    quantization_level: Optional[str] = None


class ModelInfo(BaseModel):
    """An installed model as reported by GET /api/tags."""

    name: str = ""
    size: int = 0
    modified_at: str = ""
    digest: str = ""
    details: Optional[ModelDetails] = None


class ChatMessage(BaseModel):
    """A single chat turn sent to the engine."""

    role: str
    content: str


# --- Decoded stream events ---


class ChatToken(BaseModel):
    """One streamed chunk of an assistant reply."""

    conversation_id: str
    content: str = ""
    done: bool = False


class PullProgress(BaseModel):
    """One progress record of a model pull."""

    status: str
    digest: Optional[str] = None
    total: Optional[int] = None
    completed: Optional[int] = None

    @property
    def fraction(self) -> Optional[float]:
        """Completed share of the current layer, if the engine reported sizes."""
        if not self.total or self.completed is None:
            return None
        return min(max(self.completed / self.total, 0.0), 1.0)


# --- Bridge request/response bodies ---


class PullRequest(BaseModel):
    """Request body for POST /v1/models/pull."""

    name: str


class ChatRequest(BaseModel):
    """Request body for POST /v1/chat."""

    conversation_id: str
    model: str
    messages: List[ChatMessage] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """Response for POST /v1/chat."""

    conversation_id: str
    content: str


class EngineStatusResponse(BaseModel):
    """Response for GET /v1/engine/status."""

    running: bool
    managed_process: bool
    pid: Optional[int] = None
    engine_host: str

"""Engine spine: lifecycle of the local AI engine and the desktop bridge.

- Platform resolution and binary discovery
- First-run download, extraction and verification
- A single supervised ``serve`` process per app
- Readiness probing against the engine's HTTP API
- Status and decoded stream events fanned out over SSE

Usage:
    # Make sure the engine is installed and running
    openworld engine ensure

    # Start the bridge for the desktop front-end
    openworld engine serve
"""

from openworld.engine_spine.errors import (
    EngineError,
    EngineRequestError,
    ExtractionError,
    IntegrityError,
    NetworkError,
    PlatformUnsupported,
    ReadinessTimeout,
    StartError,
    StreamParseError,
)
from openworld.engine_spine.models import (
    Artifact,
    ArchiveKind,
    ChatMessage,
    ChatToken,
    DownloadSource,
    LifecycleStage,
    LifecycleStatus,
    ModelInfo,
    PlatformInfo,
    PullProgress,
)

__all__ = [
    # Errors
    "EngineError",
    "EngineRequestError",
    "ExtractionError",
    "IntegrityError",
    "NetworkError",
    "PlatformUnsupported",
    "ReadinessTimeout",
    "StartError",
    "StreamParseError",
    # Models
    "Artifact",
    "ArchiveKind",
    "ChatMessage",
    "ChatToken",
    "DownloadSource",
    "LifecycleStage",
    "LifecycleStatus",
    "ModelInfo",
    "PlatformInfo",
    "PullProgress",
]

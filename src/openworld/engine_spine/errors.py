"""Error taxonomy for engine lifecycle and stream decoding."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all engine lifecycle errors."""

    code = "engine"


class PlatformUnsupported(EngineError):
    """Raised when no engine build exists for this OS/architecture."""

    code = "platform_unsupported"

    def __init__(self, os_name: str, arch: str):
        self.os_name = os_name
        self.arch = arch
        super().__init__(f"Unsupported platform: {os_name}-{arch}")


class NetworkError(EngineError):
    """Raised when a download or engine request cannot complete."""

    code = "network"


class EngineRequestError(NetworkError):
    """Raised when the engine answers with a non-success status."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        message = f"Engine returned HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class IntegrityError(EngineError):
    """Raised when a downloaded artifact is truncated or does not run."""

    code = "integrity"


class ExtractionError(EngineError):
    """Raised when an archive cannot be unpacked into a usable binary."""

    code = "extraction"


class StartError(EngineError):
    """Raised when the engine process cannot be spawned."""

    code = "start"


class ReadinessTimeout(EngineError):
    """Raised by callers when the engine never answered within budget."""

    code = "timeout"


class StreamParseError(EngineError):
    """Raised for a malformed NDJSON record under the strict parse policy."""

    code = "parse"

    def __init__(self, record: bytes, reason: str):
        self.record = record
        self.reason = reason
        preview = record[:80].decode("utf-8", errors="replace")
        super().__init__(f"Unparseable stream record ({reason}): {preview!r}")

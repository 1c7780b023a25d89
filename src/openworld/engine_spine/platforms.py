"""Platform detection and engine download source resolution."""

from __future__ import annotations

import platform

from openworld.engine_spine.errors import PlatformUnsupported
from openworld.engine_spine.models import ArchiveKind, DownloadSource, PlatformInfo

ENGINE_NAME = "ollama"

# Default engine builds per (os, arch). Overridable via settings.
DEFAULT_SOURCES: dict[tuple[str, str], DownloadSource] = {
    ("macos", "arm64"): DownloadSource(
        url="https://ollama.com/download/ollama-darwin.tgz",
        archive_kind=ArchiveKind.TAR,
    ),
    ("macos", "x86_64"): DownloadSource(
        url="https://ollama.com/download/ollama-darwin.tgz",
        archive_kind=ArchiveKind.TAR,
    ),
    ("linux", "x86_64"): DownloadSource(
        url="https://ollama.com/download/ollama-linux-amd64.tgz",
        archive_kind=ArchiveKind.TAR,
    ),
    ("linux", "arm64"): DownloadSource(
        url="https://ollama.com/download/ollama-linux-arm64.tgz",
        archive_kind=ArchiveKind.TAR,
    ),
    ("windows", "x86_64"): DownloadSource(
        url="https://ollama.com/download/ollama-windows-amd64.exe",
        archive_kind=ArchiveKind.NONE,
    ),
}


def normalize_os(system: str) -> str:
    system_lower = system.lower()
    if system_lower == "darwin":
        return "macos"
    if system_lower.startswith("win"):
        return "windows"
    return system_lower


def normalize_arch(machine: str) -> str:
    value = machine.lower()
    if value in {"x86_64", "amd64", "x64"}:
        return "x86_64"
    if value in {"arm64", "aarch64"}:
        return "arm64"
    return value


def current_platform(system: str | None = None, machine: str | None = None) -> PlatformInfo:
    """Detect the running platform (arguments override detection)."""
    return PlatformInfo(
        os_name=normalize_os(system if system is not None else platform.system()),
        arch=normalize_arch(machine if machine is not None else platform.machine()),
    )


def executable_name(os_name: str) -> str:
    """File name of the engine executable on the given OS."""
    return f"{ENGINE_NAME}.exe" if os_name == "windows" else ENGINE_NAME


def archive_kind_for_url(url: str) -> ArchiveKind:
    """Infer packaging from a download URL's suffix."""
    path = url.split("?", 1)[0].lower()
    if path.endswith((".tgz", ".tar.gz", ".tar")):
        return ArchiveKind.TAR
    if path.endswith(".zip"):
        return ArchiveKind.ZIP
    return ArchiveKind.NONE


def resolve_download_source(
    info: PlatformInfo,
    url_override: str | None = None,
) -> DownloadSource:
    """Map a platform to its download source.

    Args:
        info: Target platform
        url_override: Configured URL that replaces the default one

    Returns:
        DownloadSource for the platform

    Raises:
        PlatformUnsupported: If the platform has no engine build
    """
    default = DEFAULT_SOURCES.get((info.os_name, info.arch))
    if default is None:
        raise PlatformUnsupported(info.os_name, info.arch)

    if url_override:
        return DownloadSource(
            url=url_override,
            archive_kind=archive_kind_for_url(url_override),
        )
    return default


class PlatformResolver:
    """Resolves the download source for the running (or a given) platform."""

    def __init__(
        self,
        info: PlatformInfo | None = None,
        url_override: str | None = None,
    ):
        self.info = info or current_platform()
        self.url_override = url_override

    @property
    def executable(self) -> str:
        return executable_name(self.info.os_name)

    def resolve(self) -> DownloadSource:
        return resolve_download_source(self.info, self.url_override)

"""Engine artifact installer.

Handles:
- Streaming download of the platform build into the private bin directory
- Size gate against error pages and truncated transfers
- Archive extraction via the platform's tar/unzip tools
- Executable bit and a ``--version`` smoke run before promotion

An artifact is only promoted to the bundled binary path after every check
passes; any failed check removes what was written.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from openworld.engine_spine.errors import ExtractionError, IntegrityError, NetworkError
from openworld.engine_spine.models import (
    ArchiveKind,
    Artifact,
    DownloadSource,
    PlatformInfo,
)
from openworld.engine_spine.platforms import executable_name

logger = logging.getLogger(__name__)

# A real engine build is tens of MB; anything smaller is an error page or a
# truncated transfer.
MIN_ARTIFACT_BYTES = 1_000_000

DOWNLOAD_TIMEOUT_SECONDS = 600.0
EXTRACT_TIMEOUT_SECONDS = 300.0
VERSION_PROBE_TIMEOUT_SECONDS = 30.0
CHUNK_SIZE = 64 * 1024


@dataclass
class CommandResult:
    """Outcome of an external command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[Sequence[str], float], Awaitable[CommandResult]]
ProgressCallback = Callable[[int, Optional[int]], None]


async def run_command(args: Sequence[str], timeout: float) -> CommandResult:
    """Run an external command without blocking the event loop.

    Raises:
        OSError: If the executable cannot be launched
        asyncio.TimeoutError: If it does not finish in time (it is killed)
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise

    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _content_length(response: httpx.Response) -> int | None:
    raw = response.headers.get("Content-Length")
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class ArtifactInstaller:
    """Downloads and validates the engine binary for one platform.

    Usage:
        installer = ArtifactInstaller(settings.bin_dir, resolver.info)
        artifact = await installer.install(resolver.resolve())
    """

    def __init__(
        self,
        bin_dir: Path,
        platform_info: PlatformInfo,
        *,
        min_bytes: int = MIN_ARTIFACT_BYTES,
        timeout: float = DOWNLOAD_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        run: CommandRunner = run_command,
    ):
        """Initialize installer.

        Args:
            bin_dir: Private directory the binary is installed into
            platform_info: Platform the artifact is built for
            min_bytes: Size gate for downloaded files
            timeout: Download timeout in seconds
            transport: Optional httpx transport (tests)
            run: External command runner for extraction and version probe
        """
        self.bin_dir = Path(bin_dir)
        self.platform_info = platform_info
        self.min_bytes = min_bytes
        self.timeout = timeout
        self._transport = transport
        self._run = run

    @property
    def executable(self) -> str:
        return executable_name(self.platform_info.os_name)

    @property
    def binary_path(self) -> Path:
        """Canonical location of the installed binary."""
        return self.bin_dir / self.executable

    async def install(
        self,
        source: DownloadSource,
        on_progress: ProgressCallback | None = None,
    ) -> Artifact:
        """Download, unpack and validate the engine.

        Args:
            source: Resolved download source
            on_progress: Called with (bytes_received, total_or_None) per chunk

        Returns:
            Validated Artifact at the canonical binary path

        Raises:
            NetworkError: Download failed
            IntegrityError: Artifact too small or does not run
            ExtractionError: Archive could not be unpacked
        """
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
            download_path = self._temp_path()
        except OSError as e:
            raise IntegrityError(f"Cannot write to {self.bin_dir}: {e}") from e

        try:
            size = await self._download(source.url, download_path, on_progress)
            self._check_size(download_path, size)

            if source.is_archive:
                before = {entry.name for entry in self.bin_dir.iterdir()}
                await self._extract(source, download_path)
                binary = self._locate_extracted(before)
            else:
                binary = self._promote(download_path)
        finally:
            download_path.unlink(missing_ok=True)

        try:
            self._make_executable(binary)
        except OSError as e:
            binary.unlink(missing_ok=True)
            raise IntegrityError(f"Cannot mark {binary} executable: {e}") from e
        await self._verify(binary)

        try:
            size_bytes = binary.stat().st_size
        except OSError as e:
            raise IntegrityError(f"Installed engine vanished: {e}") from e
        artifact = Artifact(
            path=binary,
            size_bytes=size_bytes,
            platform=self.platform_info,
        )
        logger.info(f"Installed engine {artifact.path} ({artifact.size_bytes} bytes)")
        return artifact

    def _temp_path(self) -> Path:
        fd, name = tempfile.mkstemp(dir=self.bin_dir, prefix=".download-")
        os.close(fd)
        return Path(name)

    def _promote(self, download_path: Path) -> Path:
        """Move a direct download to the canonical binary path."""
        try:
            os.replace(download_path, self.binary_path)
        except OSError as e:
            # e.g. a directory in the way, or a locked .exe on Windows
            raise IntegrityError(
                f"Cannot install engine at {self.binary_path}: {e}"
            ) from e
        return self.binary_path

    async def _download(
        self,
        url: str,
        dest: Path,
        on_progress: ProgressCallback | None,
    ) -> int:
        """Stream the resource into dest, returning bytes written."""
        received = 0
        logger.info(f"Downloading engine from {url}")

        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    if not response.is_success:
                        raise NetworkError(
                            f"Download failed with HTTP {response.status_code}"
                        )
                    total = _content_length(response)

                    with open(dest, "wb") as fh:
                        async for chunk in response.aiter_bytes(CHUNK_SIZE):
                            if not chunk:
                                continue
                            fh.write(chunk)
                            received += len(chunk)
                            if on_progress is not None:
                                on_progress(received, total)
        except httpx.HTTPError as e:
            raise NetworkError(f"Download request failed: {e}") from e
        except OSError as e:
            raise IntegrityError(f"Could not write download to {dest}: {e}") from e

        logger.debug(f"Downloaded {received} bytes to {dest}")
        return received

    def _check_size(self, path: Path, size: int) -> None:
        if size < self.min_bytes:
            path.unlink(missing_ok=True)
            raise IntegrityError(
                f"Downloaded file is too small ({size} bytes, expected at least "
                f"{self.min_bytes}); the server may have returned an error page"
            )

    def _extract_command(self, source: DownloadSource, archive: Path) -> list[str]:
        if source.archive_kind == ArchiveKind.TAR:
            url = source.url.split("?", 1)[0].lower()
            flags = "-xzf" if url.endswith((".tgz", ".tar.gz")) else "-xf"
            return ["tar", flags, str(archive), "-C", str(self.bin_dir)]
        if self.platform_info.os_name == "windows":
            # bsdtar ships with Windows 10+ and reads zip archives
            return ["tar", "-xf", str(archive), "-C", str(self.bin_dir)]
        return ["unzip", "-o", "-q", str(archive), "-d", str(self.bin_dir)]

    async def _extract(self, source: DownloadSource, archive: Path) -> None:
        cmd = self._extract_command(source, archive)
        logger.debug(f"Extracting: {' '.join(cmd)}")

        # TimeoutError is an OSError subclass on 3.11+, so it is caught first
        try:
            result = await self._run(cmd, EXTRACT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f"Extraction timed out after {EXTRACT_TIMEOUT_SECONDS:.0f}s"
            ) from e
        except OSError as e:
            raise ExtractionError(f"Archive tool '{cmd[0]}' is not available: {e}") from e

        if not result.ok:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise ExtractionError(f"Extraction failed: {detail}")

    def _locate_extracted(self, before: set[str]) -> Path:
        """Find the executable after extraction and move it into place.

        Archive layouts differ between releases: the binary is either at the
        top level or inside a directory the archive created (e.g. ``bin/``).
        """
        target = self.binary_path
        if target.is_file():
            return target

        created = sorted(
            entry
            for entry in self.bin_dir.iterdir()
            if entry.name not in before and entry.is_dir()
        )
        for subdir in created:
            candidates = [subdir / self.executable]
            candidates.extend(
                child / self.executable
                for child in sorted(subdir.iterdir())
                if child.is_dir()
            )
            for candidate in candidates:
                if candidate.is_file():
                    logger.debug(f"Relocating {candidate} to {target}")
                    try:
                        os.replace(candidate, target)
                    except OSError as e:
                        shutil.rmtree(subdir, ignore_errors=True)
                        raise ExtractionError(
                            f"Cannot move {candidate.name} to {target}: {e}"
                        ) from e
                    shutil.rmtree(subdir, ignore_errors=True)
                    return target

        for subdir in created:
            shutil.rmtree(subdir, ignore_errors=True)
        raise ExtractionError(
            f"Archive did not contain '{self.executable}' at the top level "
            f"or in a subdirectory"
        )

    def _make_executable(self, path: Path) -> None:
        if self.platform_info.os_name == "windows" or os.name == "nt":
            return
        mode = path.stat().st_mode
        path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH | stat.S_IRUSR)

    async def _verify(self, binary: Path) -> None:
        """Run ``<binary> --version``; a binary that cannot run is discarded."""
        try:
            result = await self._run(
                [str(binary), "--version"], VERSION_PROBE_TIMEOUT_SECONDS
            )
        except (OSError, asyncio.TimeoutError) as e:
            binary.unlink(missing_ok=True)
            raise IntegrityError(f"Downloaded engine does not run: {e}") from e

        if not result.ok:
            binary.unlink(missing_ok=True)
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise IntegrityError(f"Downloaded engine failed version check: {detail}")

        logger.debug(f"Engine version check: {result.stdout.strip()}")

"""Search for an already-installed engine executable."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Sequence

from openworld.engine_spine.platforms import ENGINE_NAME, executable_name

logger = logging.getLogger(__name__)

# Where package managers and the vendor installer put the binary
POSIX_INSTALL_PATHS = (
    "/usr/local/bin/ollama",
    "/opt/homebrew/bin/ollama",
    "/usr/bin/ollama",
)


def common_install_paths(os_name: str) -> list[Path]:
    """System install locations checked after the bundled copy."""
    if os_name == "windows":
        local_app_data = os.environ.get("LOCALAPPDATA")
        if not local_app_data:
            return []
        return [Path(local_app_data) / "Programs" / "Ollama" / "ollama.exe"]
    return [Path(p) for p in POSIX_INSTALL_PATHS]


class BinaryLocator:
    """Finds the engine executable in fixed priority order.

    1. Bundled copy in the private bin directory
    2. Common system install paths
    3. PATH lookup

    Existence is the only check; the binary is validated when it runs.
    """

    def __init__(
        self,
        bin_dir: Path,
        os_name: str,
        common_paths: Sequence[Path] | None = None,
        which: Callable[[str], str | None] = shutil.which,
    ):
        self.bin_dir = Path(bin_dir)
        self.executable = executable_name(os_name)
        self.common_paths = (
            list(common_paths)
            if common_paths is not None
            else common_install_paths(os_name)
        )
        self._which = which

    @property
    def bundled_path(self) -> Path:
        return self.bin_dir / self.executable

    def locate(self) -> Path | None:
        """Return the first existing engine executable, or None."""
        if self.bundled_path.is_file():
            logger.debug(f"Using bundled engine at {self.bundled_path}")
            return self.bundled_path

        for path in self.common_paths:
            if path.is_file():
                logger.debug(f"Using system engine at {path}")
                return path

        found = self._which(ENGINE_NAME)
        if found and Path(found).is_file():
            logger.debug(f"Using engine from PATH at {found}")
            return Path(found)

        logger.info("No engine binary found")
        return None

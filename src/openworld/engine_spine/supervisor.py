"""Ownership of the single engine child process."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

from openworld.engine_spine.errors import StartError

logger = logging.getLogger(__name__)

KILL_WAIT_SECONDS = 5.0

Spawner = Callable[..., Any]


class EngineProcess:
    """A spawned engine serve process."""

    def __init__(self, handle: Any, binary_path: Path):
        self.handle = handle
        self.binary_path = binary_path

    @property
    def pid(self) -> int | None:
        return getattr(self.handle, "pid", None)

    def is_alive(self) -> bool:
        return self.handle.poll() is None

    def kill(self) -> None:
        """Force-kill the process and reap it (best-effort)."""
        try:
            self.handle.kill()
        except OSError as e:
            logger.debug(f"Kill of engine pid {self.pid} failed: {e}")
            return
        try:
            self.handle.wait(timeout=KILL_WAIT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"Engine pid {self.pid} did not exit after kill")


class ProcessSupervisor:
    """Owns at most one engine process.

    Thread-safe: start/stop take the same lock, which is never held across
    an await, so concurrent callers see a consistent reference and the
    engine is never double-spawned or double-killed.
    """

    def __init__(
        self,
        spawn: Spawner = subprocess.Popen,
        inherit_output: bool = False,
        env: Mapping[str, str] | None = None,
    ):
        self._spawn = spawn
        self._inherit_output = inherit_output
        self._env = dict(env) if env else None
        self._lock = threading.Lock()
        self._process: EngineProcess | None = None

    @property
    def process(self) -> EngineProcess | None:
        """Held process if it is still alive."""
        with self._lock:
            return self._live_process()

    @property
    def is_running(self) -> bool:
        return self.process is not None

    def _live_process(self) -> EngineProcess | None:
        if self._process is None:
            return None
        if not self._process.is_alive():
            code = self._process.handle.poll()
            logger.warning(f"Engine pid {self._process.pid} exited with code {code}")
            self._process = None
        return self._process

    def _command(self, binary_path: Path) -> Sequence[str]:
        return [str(binary_path), "serve"]

    def start(self, binary_path: Path | str) -> EngineProcess:
        """Start ``<binary> serve`` unless a live engine is already held.

        Raises:
            StartError: If the process cannot be spawned
        """
        binary_path = Path(binary_path)
        with self._lock:
            current = self._live_process()
            if current is not None:
                logger.debug(f"Engine already running (pid {current.pid})")
                return current

            output = None if self._inherit_output else subprocess.DEVNULL
            env = None
            if self._env:
                env = {**os.environ, **self._env}

            try:
                handle = self._spawn(
                    list(self._command(binary_path)),
                    stdout=output,
                    stderr=output,
                    env=env,
                )
            except (OSError, ValueError) as e:
                raise StartError(f"Failed to start engine: {e}") from e

            self._process = EngineProcess(handle, binary_path)
            logger.info(f"Started engine {binary_path} (pid {self._process.pid})")
            return self._process

    def stop(self) -> bool:
        """Kill the held engine, if any.

        Returns:
            True if a process was held and has been killed
        """
        with self._lock:
            process, self._process = self._process, None
            if process is None:
                return False
            process.kill()

        logger.info(f"Stopped engine (pid {process.pid})")
        return True

"""Configuration settings for OpenWorld."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_ENGINE_HOST = "http://localhost:11434"
DEFAULT_MODEL = "llama3:8b"

# Environment overrides (checked after config.json)
ENV_DATA_DIR = "OPENWORLD_DATA_DIR"
ENV_ENGINE_HOST = "OPENWORLD_ENGINE_HOST"
ENV_DOWNLOAD_URL = "OPENWORLD_ENGINE_DOWNLOAD_URL"


class ConfigProvider(Protocol):
    """Anything that can tell the core where the engine listens."""

    @property
    def engine_host(self) -> str: ...


def _default_data_dir() -> Path:
    env_dir = os.environ.get(ENV_DATA_DIR)
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".openworld"


@dataclass
class Settings:
    """Application settings."""

    data_dir: Path = field(default_factory=_default_data_dir)

    # Engine
    engine_host: str = DEFAULT_ENGINE_HOST
    engine_download_url: str | None = None
    inherit_engine_output: bool = False

    # Readiness budgets (seconds)
    short_probe_seconds: float = 3.0
    long_probe_seconds: float = 30.0

    # Chat
    default_model: str = DEFAULT_MODEL
    system_prompt: str = ""

    @property
    def bin_dir(self) -> Path:
        """Directory holding the bundled engine binary."""
        return self.data_dir / "bin"

    @property
    def config_path(self) -> Path:
        """Path to the desktop app's config.json."""
        return self.data_dir / "config.json"

    @classmethod
    def load(cls, data_dir: Path | str | None = None) -> "Settings":
        """Load settings from config.json plus environment overrides.

        The config file is only read; the desktop front-end owns writing it.
        A missing or unreadable file falls back to defaults.
        """
        settings = cls(data_dir=Path(data_dir)) if data_dir else cls()

        path = settings.config_path
        if path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Ignoring unreadable config {path}: {e}")
                data = {}
            settings._apply(data)

        if os.environ.get(ENV_ENGINE_HOST):
            settings.engine_host = os.environ[ENV_ENGINE_HOST]
        if os.environ.get(ENV_DOWNLOAD_URL):
            settings.engine_download_url = os.environ[ENV_DOWNLOAD_URL]

        settings.engine_host = settings.engine_host.rstrip("/")
        return settings

    def _apply(self, data: dict) -> None:
        if not isinstance(data, dict):
            return
        self.engine_host = data.get("ollama_host") or self.engine_host
        self.default_model = data.get("default_model") or self.default_model
        self.system_prompt = data.get("system_prompt", self.system_prompt) or ""
        self.engine_download_url = (
            data.get("engine_download_url") or self.engine_download_url
        )

"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is absent.

Usage:
    from clevercard.config.app_config import load_app_config

    config = load_app_config()
    backend = RestBackend.from_config(config.remote)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root); overridable for deployments
CONFIG_FILE = Path(os.environ.get("CLEVERCARD_CONFIG", "data/config/app_config_v1.yaml"))


@dataclass
class RemoteConfig:
    """Remote persistence backend settings."""

    base_url: str | None = None
    api_key_env: str | None = "CLEVERCARD_ANON_KEY"
    timeout: float = 30.0

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class AIConfig:
    """OpenAI-compatible endpoint used for recognition, transcription and insights."""

    provider: str = "openai"
    base_url: str | None = None
    model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    api_key_env: str | None = "OPENAI_API_KEY"
    timeout: int = 120

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class CaptureConfig:
    """Device capture settings."""

    sample_rate: int = 16000
    channels: int = 1
    recordings_dir: str = "data/recordings"


@dataclass
class AppConfig:
    """Application-wide configuration."""

    remote: RemoteConfig = field(default_factory=RemoteConfig)
    ai: AIConfig = field(default_factory=AIConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "remote": {
            "base_url": None,
            "api_key_env": "CLEVERCARD_ANON_KEY",
            "timeout": 30.0,
        },
        "ai": {
            "provider": "openai",
            "base_url": None,
            "model": "gpt-4o-mini",
            "vision_model": "gpt-4o-mini",
            "transcription_model": "whisper-1",
            "api_key_env": "OPENAI_API_KEY",
            "timeout": 120,
        },
        "capture": {
            "sample_rate": 16000,
            "channels": 1,
            "recordings_dir": "data/recordings",
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object.

    Missing sections and keys fall back to defaults.
    """
    defaults = _get_defaults()

    remote_data = {**defaults["remote"], **(data.get("remote") or {})}
    remote = RemoteConfig(
        base_url=remote_data.get("base_url") or os.environ.get("CLEVERCARD_REMOTE_URL"),
        api_key_env=remote_data.get("api_key_env"),
        timeout=float(remote_data.get("timeout", 30.0)),
    )

    ai_data = {**defaults["ai"], **(data.get("ai") or {})}
    ai = AIConfig(
        provider=ai_data["provider"],
        base_url=ai_data.get("base_url"),
        model=ai_data["model"],
        vision_model=ai_data["vision_model"],
        transcription_model=ai_data["transcription_model"],
        api_key_env=ai_data.get("api_key_env"),
        timeout=int(ai_data.get("timeout", 120)),
    )

    capture_data = {**defaults["capture"], **(data.get("capture") or {})}
    capture = CaptureConfig(
        sample_rate=int(capture_data["sample_rate"]),
        channels=int(capture_data["channels"]),
        recordings_dir=capture_data["recordings_dir"],
    )

    return AppConfig(remote=remote, ai=ai, capture=capture)


def load_app_config(
    force_reload: bool = False,
    config_path: Path | None = None,
) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_path: Read this file instead of CONFIG_FILE (not cached).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if config_path is None and _cached_config is not None and not force_reload:
        return _cached_config

    path = config_path or CONFIG_FILE
    data: dict[str, Any]

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = {}

    config = _parse_config(data)
    if config_path is None:
        _cached_config = config
    return config


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None

"""Configuration package for CleverCard."""

from clevercard.config.app_config import (
    AIConfig,
    AppConfig,
    CaptureConfig,
    RemoteConfig,
    clear_config_cache,
    load_app_config,
)

__all__ = [
    "AIConfig",
    "AppConfig",
    "CaptureConfig",
    "RemoteConfig",
    "clear_config_cache",
    "load_app_config",
]

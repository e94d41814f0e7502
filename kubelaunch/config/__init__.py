"""Configuration for the launcher."""

from .provider import (
    ConfigProvider,
    EnvConfigProvider,
    LaunchConfig,
    LauncherSettings,
)

__all__ = ["ConfigProvider", "EnvConfigProvider", "LaunchConfig", "LauncherSettings"]

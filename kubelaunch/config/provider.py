"""Configuration provider following Black Box Design principles."""
import os
from dataclasses import dataclass
from typing import Optional, Protocol


DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class LaunchConfig:
    """Launch configuration assembled once from the command line.

    An empty namespace means "watch all namespaces" and is kept as-is.
    """
    kubeconfig_path: str
    operator_flags: str = ""
    namespace: str = DEFAULT_NAMESPACE
    ldflags: Optional[str] = None


@dataclass
class LauncherSettings:
    """Launcher settings that are not exposed as command-line flags."""
    proxy_host: str = "localhost"
    proxy_port: int = 8888
    resync_interval: float = 60.0
    watches_file: str = "./watches.yaml"
    go_binary: str = "go"
    project_dir: str = "."
    shutdown_timeout: float = 10.0
    log_level: str = "INFO"


class ConfigProvider(Protocol):
    """Protocol for settings providers."""

    def get_settings(self) -> LauncherSettings:
        """Get launcher settings."""
        ...


class EnvConfigProvider:
    """Environment-based settings provider."""

    def get_settings(self) -> LauncherSettings:
        """Get launcher settings from environment variables."""
        return LauncherSettings(
            proxy_host=os.getenv("KUBELAUNCH_PROXY_HOST", "localhost"),
            proxy_port=int(os.getenv("KUBELAUNCH_PROXY_PORT", "8888")),
            resync_interval=float(os.getenv("KUBELAUNCH_RESYNC_SECONDS", "60")),
            watches_file=os.getenv("KUBELAUNCH_WATCHES_FILE", "./watches.yaml"),
            go_binary=os.getenv("KUBELAUNCH_GO_BINARY", "go"),
            project_dir=os.getenv("KUBELAUNCH_PROJECT_DIR", "."),
            shutdown_timeout=float(os.getenv("KUBELAUNCH_SHUTDOWN_TIMEOUT", "10")),
            log_level=os.getenv("KUBELAUNCH_LOG_LEVEL", "INFO").upper(),
        )

"""Launch error taxonomy.

Every error raised by the launcher derives from LaunchError. The CLI logs
any LaunchError as fatal and exits non-zero; nothing is retried internally.
"""


class LaunchError(Exception):
    """Base exception for launch errors."""


class ConfigurationError(LaunchError):
    """Launch configuration is missing or unusable. Nothing was started."""


class HomeDirUnavailable(ConfigurationError):
    """The current user's home directory could not be determined."""


class KubeconfigNotFound(ConfigurationError):
    """The kubeconfig file does not exist."""


class KubeconfigInvalid(ConfigurationError):
    """The kubeconfig file could not be parsed into cluster credentials."""


class UnknownOperatorType(ConfigurationError):
    """The project is neither a Go operator nor a watches-driven operator."""


class WatchesFileInvalid(ConfigurationError):
    """The watch configuration file is missing or malformed."""


class StartupError(LaunchError):
    """A subsystem failed to start."""


class ManagerInitFailed(StartupError):
    """The cluster client manager could not be constructed."""


class ProxyStartFailed(StartupError):
    """The admission proxy could not bind its listener."""


class OperatorRuntimeError(LaunchError):
    """The running operator failed."""


class ChildProcessFailed(OperatorRuntimeError):
    """The operator child process exited with a non-zero status."""

    def __init__(self, returncode: int):
        super().__init__(f"operator process exited with status {returncode}")
        self.returncode = returncode


class ChildKillFailed(OperatorRuntimeError):
    """The operator child process could not be terminated."""


class ReconcileFailed(OperatorRuntimeError):
    """The reconciliation loop or the proxy reported a failure."""

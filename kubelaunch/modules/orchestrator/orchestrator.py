import asyncio
import dataclasses
import logging
from enum import Enum
from typing import Callable, Optional

from kubelaunch.config.provider import LaunchConfig, LauncherSettings
from kubelaunch.errors import UnknownOperatorType
from kubelaunch.modules.classifier import OperatorKind, classify
from kubelaunch.modules.kubeconfig import resolve
from kubelaunch.modules.native import NativeLauncher
from kubelaunch.modules.runtime import RuntimeStarter

logger = logging.getLogger(__name__)


class LaunchState(Enum):
    IDLE = "idle"
    RESOLVING_CONFIG = "resolving_config"
    CLASSIFYING = "classifying"
    LAUNCHING = "launching"
    TERMINATED = "terminated"


class LaunchOrchestrator:
    """
    Single-shot launch lifecycle.

    Resolves the kubeconfig, classifies the project and hands over to exactly
    one strategy. Every failure propagates as a LaunchError; the orchestrator
    ends in TERMINATED either way and cannot be run again.
    """

    def __init__(
        self,
        config: LaunchConfig,
        settings: Optional[LauncherSettings] = None,
        resolver: Callable[[str], str] = resolve,
        classifier: Callable[[str], OperatorKind] = classify,
        native_factory: Callable[..., NativeLauncher] = NativeLauncher,
        runtime_factory: Callable[..., RuntimeStarter] = RuntimeStarter,
    ):
        self.config = config
        self.settings = settings or LauncherSettings()
        self.resolver = resolver
        self.classifier = classifier
        self.native_factory = native_factory
        self.runtime_factory = runtime_factory
        self.state = LaunchState.IDLE
        self.kind: Optional[OperatorKind] = None

    async def run(self, timeout: Optional[float] = None, stop: Optional[asyncio.Event] = None) -> int:
        """
        Run the launch to completion.

        Args:
            timeout: Seconds after which a clean shutdown is requested; None waits forever
            stop: Event the caller can set to request a clean shutdown

        Returns:
            Process exit status (0 on clean shutdown)

        Raises:
            LaunchError: On any configuration, startup or runtime failure
        """
        if self.state is not LaunchState.IDLE:
            raise RuntimeError(f"launch already {self.state.value}")

        stop = stop or asyncio.Event()
        deadline = None
        try:
            self.state = LaunchState.RESOLVING_CONFIG
            path = self.resolver(self.config.kubeconfig_path)
            self.config = dataclasses.replace(self.config, kubeconfig_path=path)

            logger.info("Running the operator locally.")

            self.state = LaunchState.CLASSIFYING
            self.kind = self.classifier(self.settings.project_dir)
            if self.kind is OperatorKind.UNKNOWN:
                raise UnknownOperatorType("failed to determine operator type")

            self.state = LaunchState.LAUNCHING
            if timeout is not None:
                deadline = asyncio.get_running_loop().call_later(timeout, self._expire, stop, timeout)

            if self.kind is OperatorKind.NATIVE_BINARY:
                return await self.native_factory(self.config, self.settings).run(stop)
            return await self.runtime_factory(self.config, self.settings).run(stop)
        finally:
            if deadline is not None:
                deadline.cancel()
            self.state = LaunchState.TERMINATED

    def _expire(self, stop: asyncio.Event, timeout: float) -> None:
        logger.info(f"Launch deadline of {timeout}s reached, shutting down")
        stop.set()

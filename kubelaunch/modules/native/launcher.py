"""
Native launcher - runs `go run cmd/manager/main.go` as a child process.

The child inherits stdout/stderr so its logs stream live. SIGINT and SIGTERM
only set a stop event; the launcher reacts to it by killing the child and
returning a zero status.
"""

import asyncio
import logging
import os
import signal
from typing import Dict, List, Mapping, Optional

from kubelaunch.config.provider import LaunchConfig, LauncherSettings
from kubelaunch.errors import ChildKillFailed, ChildProcessFailed, OperatorRuntimeError
from kubelaunch.modules.classifier import MAIN_FILE
from kubelaunch.modules.kubeconfig import KUBECONFIG_ENV_VAR, WATCH_NAMESPACE_ENV_VAR

logger = logging.getLogger(__name__)

ENTRY_POINT = MAIN_FILE
SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def build_command(config: LaunchConfig, go_binary: str = "go") -> List[str]:
    """
    Build the command line that runs the operator.

    Operator flags are split on single spaces; quoting is not supported, so a
    flag value cannot contain a space.
    """
    args = [go_binary, "run"]
    if config.ldflags:
        args.extend(["-ldflags", config.ldflags])
    args.append(ENTRY_POINT)
    if config.operator_flags:
        args.extend(config.operator_flags.split(" "))
    return args


def build_environment(
    config: LaunchConfig, base: Optional[Mapping[str, str]] = None
) -> Dict[str, str]:
    """Copy the current environment and add the kubeconfig and namespace."""
    env = dict(os.environ if base is None else base)
    env[KUBECONFIG_ENV_VAR] = config.kubeconfig_path
    env[WATCH_NAMESPACE_ENV_VAR] = config.namespace
    return env


class NativeLauncher:
    """Owns the operator child process for one launch."""

    def __init__(
        self,
        config: LaunchConfig,
        settings: Optional[LauncherSettings] = None,
        install_signal_handlers: bool = True,
    ):
        self.config = config
        self.settings = settings or LauncherSettings()
        self.install_signal_handlers = install_signal_handlers
        self.process: Optional[asyncio.subprocess.Process] = None
        self._installed: List[signal.Signals] = []

    def _install(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig, stop)
            except (NotImplementedError, RuntimeError):
                # No loop signal support (e.g. Windows); fall back to signal.signal
                signal.signal(
                    sig, lambda signum, frame: loop.call_soon_threadsafe(stop.set)
                )
            self._installed.append(sig)

    def _uninstall(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed = []

    def _on_signal(self, sig: signal.Signals, stop: asyncio.Event) -> None:
        logger.info(f"Received {sig.name}, stopping the operator")
        stop.set()

    async def run(self, stop: asyncio.Event) -> int:
        """
        Run the operator until it exits or a stop is requested.

        Args:
            stop: Set by signal handlers (or the orchestrator) to request shutdown

        Returns:
            0 when the operator exits cleanly or was stopped

        Raises:
            ChildProcessFailed: If the operator exits non-zero on its own
            ChildKillFailed: If the operator cannot be killed on shutdown
            OperatorRuntimeError: If the operator process cannot be spawned
        """
        command = build_command(self.config, self.settings.go_binary)
        env = build_environment(self.config)

        # Handlers go in before the child exists so no signal is missed
        if self.install_signal_handlers:
            self._install(stop)
        try:
            try:
                self.process = await asyncio.create_subprocess_exec(
                    *command, env=env, cwd=self.settings.project_dir
                )
            except OSError as e:
                raise OperatorRuntimeError(f"failed to run operator locally: ({e})") from e

            logger.info(f"Started operator (pid {self.process.pid}): {' '.join(command)}")
            return await self._supervise(stop)
        finally:
            if self.install_signal_handlers:
                self._uninstall()

    async def _supervise(self, stop: asyncio.Event) -> int:
        wait_task = asyncio.ensure_future(self.process.wait())
        stop_task = asyncio.ensure_future(stop.wait())
        try:
            done, _ = await asyncio.wait(
                {wait_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            wait_task.cancel()
            stop_task.cancel()
            if self.process.returncode is None:
                try:
                    self.process.kill()
                except ProcessLookupError:
                    pass
            raise

        if stop_task in done:
            await self._kill(wait_task)
            return 0

        stop_task.cancel()
        returncode = wait_task.result()
        if returncode != 0:
            raise ChildProcessFailed(returncode)
        logger.info("Operator exited")
        return 0

    async def _kill(self, wait_task: "asyncio.Future[int]") -> None:
        """Hard-kill the child and reap it."""
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
            except OSError as e:
                wait_task.cancel()
                raise ChildKillFailed(f"failed to terminate the operator: ({e})") from e

        try:
            returncode = await asyncio.wait_for(wait_task, self.settings.shutdown_timeout)
        except asyncio.TimeoutError as e:
            raise ChildKillFailed(
                f"operator (pid {self.process.pid}) still running "
                f"{self.settings.shutdown_timeout}s after kill"
            ) from e
        logger.info(f"Operator stopped (status {returncode})")

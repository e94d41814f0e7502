"""
In-process starter for watches-driven operators.

Starts the admission proxy and the reconciliation loop in this process and
waits for whichever of them finishes first.
"""

import asyncio
import logging
import os
from typing import Callable, Optional

from kubelaunch.config.provider import LaunchConfig, LauncherSettings
from kubelaunch.errors import ReconcileFailed
from kubelaunch.modules.kubeconfig import KUBECONFIG_ENV_VAR
from kubelaunch.modules.runtime.completion import CompletionSlot
from kubelaunch.modules.runtime.manager import ClusterManager
from kubelaunch.modules.runtime.proxy import ProxyServer
from kubelaunch.modules.runtime.reconciler import Reconciler
from kubelaunch.version import version_info

logger = logging.getLogger(__name__)


class RuntimeStarter:
    """Runs the proxy and the reconciliation loop for one launch."""

    def __init__(
        self,
        config: LaunchConfig,
        settings: Optional[LauncherSettings] = None,
        manager_factory: Callable[[str, str], ClusterManager] = ClusterManager.from_kubeconfig,
        proxy_factory: Callable[..., ProxyServer] = ProxyServer,
        reconciler_factory: Callable[..., Reconciler] = Reconciler,
    ):
        self.config = config
        self.settings = settings or LauncherSettings()
        self.manager_factory = manager_factory
        self.proxy_factory = proxy_factory
        self.reconciler_factory = reconciler_factory

    async def run(self, stop: Optional[asyncio.Event] = None) -> int:
        """
        Start both subsystems and wait for the first to finish.

        Args:
            stop: Optional event requesting a clean shutdown

        Returns:
            0 when the first subsystem to finish stopped cleanly

        Raises:
            ManagerInitFailed: If the cluster client cannot be built
            ProxyStartFailed: If the proxy cannot bind; the loop is never started
            ReconcileFailed: If the first subsystem to finish reports an error
        """
        # Library code reads the kubeconfig location from the environment
        os.environ[KUBECONFIG_ENV_VAR] = self.config.kubeconfig_path

        manager = self.manager_factory(self.config.kubeconfig_path, self.config.namespace)

        for key, value in version_info().items():
            logger.info(f"{key}: {value}")
        logger.info(f"watching namespace: {self.config.namespace or '(all namespaces)'}")

        slot = CompletionSlot()
        proxy = None
        reconciler = None
        reconcile_task = None
        try:
            proxy = self.proxy_factory(manager, self.settings.proxy_host, self.settings.proxy_port)
            proxy.start(slot)

            reconciler = self.reconciler_factory(
                manager,
                self.settings.watches_file,
                self.settings.resync_interval,
                proxy_url=proxy.url,
            )
            reconcile_task = asyncio.ensure_future(reconciler.run(slot))

            source, error = await self._wait(slot, stop)
            if error is not None:
                raise ReconcileFailed(f"{source} failed: {error}") from error
            logger.info("Exiting.")
            return 0
        finally:
            if reconciler is not None:
                reconciler.stop()
            if reconcile_task is not None and not reconcile_task.done():
                reconcile_task.cancel()
                await asyncio.gather(reconcile_task, return_exceptions=True)
            if proxy is not None:
                await proxy.stop()
            await manager.close()

    async def _wait(self, slot: CompletionSlot, stop: Optional[asyncio.Event]):
        if stop is None:
            return await slot.wait()

        slot_task = asyncio.ensure_future(slot.wait())
        stop_task = asyncio.ensure_future(stop.wait())
        try:
            await asyncio.wait({slot_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_task.cancel()
            slot_task.cancel()

        if slot.delivered:
            return await slot.wait()
        logger.info("Stop requested")
        return "stop", None

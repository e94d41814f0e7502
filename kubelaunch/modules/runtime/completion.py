import asyncio
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class CompletionSlot:
    """
    Single-value handoff shared by the proxy and the reconciliation loop.

    The first delivery wins and decides the launch outcome. Later deliveries
    are discarded; discarded errors are logged so they are not lost silently.
    Must be created inside a running event loop.
    """

    def __init__(self):
        self._future: "asyncio.Future[Tuple[str, Optional[BaseException]]]" = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def delivered(self) -> bool:
        return self._future.done()

    def deliver(self, source: str, error: Optional[BaseException] = None) -> bool:
        """
        Report a subsystem's terminal outcome.

        Returns:
            True if this delivery won the slot
        """
        if self._future.done():
            winner, _ = self._future.result()
            if error is not None:
                logger.warning(f"Discarding {source} failure reported after {winner} finished: {error}")
            else:
                logger.debug(f"Discarding {source} completion reported after {winner} finished")
            return False
        self._future.set_result((source, error))
        return True

    async def wait(self) -> Tuple[str, Optional[BaseException]]:
        """Wait for the first delivery; returns (source, error or None)."""
        return await asyncio.shield(self._future)

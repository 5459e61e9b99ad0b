"""
Sync Coordination

Ensures only one Live TV sync cycle runs at a time, whether it was triggered
by the scheduler or manually over HTTP.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


class SyncCoordinator:
    """
    Serializes sync cycles with an asyncio.Lock.

    A request that arrives while a cycle is running is skipped rather than
    queued, since the running cycle already refreshes every user.
    """

    def __init__(self):
        self._sync_lock = asyncio.Lock()

    async def execute(self, sync_func: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run a sync operation unless one is already in progress.

        Args:
            sync_func: Async function performing the sync

        Returns:
            Result from sync_func, or a skip response if already running

        Raises:
            Any exception raised by sync_func
        """
        if self._sync_lock.locked():
            logger.warning("Live TV sync already in progress, skipping this request")
            return {
                "status": "skipped",
                "message": "Live TV sync already in progress",
            }

        async with self._sync_lock:
            return await sync_func()

    def is_syncing(self) -> bool:
        return self._sync_lock.locked()


_coordinator: SyncCoordinator | None = None


def get_sync_coordinator() -> SyncCoordinator:
    """Get or create the process-wide coordinator."""
    global _coordinator
    if _coordinator is None:
        _coordinator = SyncCoordinator()
    return _coordinator


def reset_sync_coordinator() -> None:
    """Drop the process-wide coordinator (tests only)."""
    global _coordinator
    _coordinator = None

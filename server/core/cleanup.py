"""Periodic sweep of expired key-value entries.

Redis expires keys on its own; the SQLite and in-memory backends only drop
an entry when that exact key is read again, so rate-limit windows for
one-off callers and cache entries for one-off query shapes would otherwise
accumulate.
"""
import asyncio
from typing import Dict, List, Optional, TYPE_CHECKING

from core.logging import get_logger

if TYPE_CHECKING:
    from core.config import Settings
    from core.kv_store import KeyValueStore

logger = get_logger(__name__)


class CleanupService:
    """Background task removing expired entries from every key-value namespace."""

    def __init__(self, stores: List["KeyValueStore"], settings: "Settings"):
        self.stores = stores
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the cleanup background task."""
        if self._running or not self.settings.cleanup_enabled:
            return
        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info("Cleanup service started", interval=self.settings.cleanup_interval)

    async def stop(self) -> None:
        """Stop the cleanup task gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup service stopped")

    async def _cleanup_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.settings.cleanup_interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Cleanup failed", error=str(e))

    async def run_once(self) -> Dict[str, int]:
        """Sweep every store once; returns removed counts per namespace."""
        results: Dict[str, int] = {}
        for store in self.stores:
            try:
                results[store.namespace] = await store.cleanup_expired()
            except Exception as e:
                logger.warning("Failed to cleanup expired entries", namespace=store.namespace, error=str(e))
                results[store.namespace] = 0

        if sum(results.values()) > 0:
            logger.info("Cleanup completed", **results)
        return results

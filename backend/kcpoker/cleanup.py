"""Stale table cleanup: background task that tears down abandoned tables.

A table is stale when nothing has happened on it for STALE_THRESHOLD
seconds (default 3 h).  Teardown returns every human stack to its wallet,
deletes the wallets of the table's bots and removes the table document.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from kcpoker import game_manager
from kcpoker.store import get_store

logger = logging.getLogger(__name__)

# How often the cleanup loop runs (seconds).  Default: every 30 minutes.
CLEANUP_INTERVAL = float(os.getenv("CLEANUP_INTERVAL", str(30 * 60)))

# Inactivity threshold before a table is torn down (seconds)
STALE_THRESHOLD = float(os.getenv("STALE_THRESHOLD", str(3 * 60 * 60)))


async def cleanup_stale_tables(now: float | None = None) -> dict[str, list[str]]:
    """Tear down every table idle for longer than STALE_THRESHOLD.

    Returns a dict with 'deleted' (table ids removed) and 'failed'
    (table ids whose teardown raised).
    """
    now = now if now is not None else time.time()
    stale = await get_store().query("tables", "last_activity", lt=now - STALE_THRESHOLD)
    deleted: list[str] = []
    failed: list[str] = []

    for doc_id, doc in stale:
        table_id = doc.get("table_id") or doc_id.split("/", 1)[1]
        try:
            if await game_manager.teardown_table(table_id):
                logger.info(
                    "Cleaned up table %s (idle %.1fh)",
                    table_id,
                    (now - doc["last_activity"]) / 3600,
                )
                deleted.append(table_id)
        except Exception:
            logger.exception("Error tearing down table %s", table_id)
            failed.append(table_id)

    return {"deleted": deleted, "failed": failed}


class TableCleaner:
    """Background asyncio task that periodically removes stale tables."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Table cleaner started (interval=%ds)", int(CLEANUP_INTERVAL))

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Table cleaner stopped")

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(CLEANUP_INTERVAL)
                try:
                    result = await cleanup_stale_tables()
                    if result["deleted"]:
                        logger.info(
                            "Cleanup pass: deleted %d table(s): %s",
                            len(result["deleted"]),
                            ", ".join(result["deleted"]),
                        )
                    else:
                        logger.debug("Cleanup pass: nothing to delete")
                except Exception:
                    logger.exception("Cleanup pass failed")
        except asyncio.CancelledError:
            pass


# Singleton
table_cleaner = TableCleaner()

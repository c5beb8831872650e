"""Timeout scheduler: background task that acts for seats whose turn expired.

One loop per process.  Each tick queries tables whose ``turn_deadline``
has passed and runs ``process_timeout`` against the exact turn it saw, so
a player who acted in the meantime (or a second scheduler) turns the
timeout into a no-op.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time

from kcpoker import game_manager
from kcpoker.store import get_store

logger = logging.getLogger(__name__)

# How often the scheduler looks for expired turns (seconds)
SCHEDULER_INTERVAL = float(os.getenv("SCHEDULER_INTERVAL", "60"))

# Upper bound on tables handled per tick
BATCH_SIZE = 100


async def process_expired_turns(now: float | None = None) -> list[str]:
    """Handle every table whose turn deadline is before *now*.

    Returns the ids of the tables where a timeout was applied.
    """
    now = now if now is not None else time.time()
    expired = await get_store().query("tables", "turn_deadline", lt=now, limit=BATCH_SIZE)
    handled: list[str] = []

    for doc_id, doc in expired:
        table_id = doc.get("table_id") or doc_id.split("/", 1)[1]
        expected = (doc["phase"], doc.get("active_seat"), doc.get("turn_deadline"))
        try:
            if await game_manager.process_timeout(table_id, expected):
                handled.append(table_id)
                await game_manager.run_bot_turns(table_id)
        except Exception:
            logger.exception("Timeout processing failed for table %s", table_id)

    return handled


class TimeoutScheduler:
    """Runs ``process_expired_turns`` on a fixed interval."""

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
            logger.info("Timeout scheduler started (interval=%ds)", int(SCHEDULER_INTERVAL))

    def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            logger.info("Timeout scheduler stopped")

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(SCHEDULER_INTERVAL)
                try:
                    handled = await process_expired_turns()
                    if handled:
                        logger.info("Timed out %d turn(s): %s", len(handled), ", ".join(handled))
                except Exception:
                    logger.exception("Timeout pass failed")
        except asyncio.CancelledError:
            pass


# Singleton
timeout_scheduler = TimeoutScheduler()

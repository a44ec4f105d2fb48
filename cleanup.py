from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

import keys
from events import utc_now
from store import RedisStore


logger = logging.getLogger(__name__)


class CleanupSweeper:
    """Deletes daily stats buckets older than the retention window.

    Pure deletions of keys dated before the cutoff, so it is safe to run
    while ingestion is writing today's bucket.
    """

    def __init__(self, store: RedisStore, retention_days: int = 90, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.retention_days = retention_days
        self.clock = clock

    def cutoff_date(self) -> str:
        return (self.clock() - timedelta(days=self.retention_days)).date().isoformat()

    def run(self) -> int:
        cutoff = self.cutoff_date()
        stale = []
        for key in self.store.scan_prefix(keys.DAILY_STATS_PREFIX):
            day = key[len(keys.DAILY_STATS_PREFIX):]
            # ISO dates compare correctly as strings.
            if day < cutoff:
                stale.append(key)
        deleted = self.store.delete(*stale)
        if deleted:
            logger.info("Cleanup removed %d daily stats keys older than %s", deleted, cutoff)
        return deleted

    def run_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self._run_logged, name="daily-stats-cleanup", daemon=True)
        thread.start()
        return thread

    def _run_logged(self) -> None:
        try:
            self.run()
        except Exception:
            logger.exception("Daily stats cleanup failed")

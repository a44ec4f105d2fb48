#!/usr/bin/env python3
"""Delete daily stats buckets past the retention window.

Ingestion already sweeps on a small fraction of requests; this is for a
scheduler (e.g., Render Cron) when traffic is too low to trigger it.
"""

from dotenv import load_dotenv

from cleanup import CleanupSweeper
from config import Settings
from store import RedisStore


def main():
    load_dotenv()
    settings = Settings.from_env()
    sweeper = CleanupSweeper(RedisStore.from_url(settings.redis_url), settings.daily_stats_retention_days)
    deleted = sweeper.run()
    print({"ok": True, "deleted": deleted, "cutoff": sweeper.cutoff_date()})


if __name__ == "__main__":
    main()

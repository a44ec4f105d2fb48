from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import keys
from events import Event, previous_date, utc_date
from store import Batch


@dataclass
class StreakUpdate:
    streak: int
    longest_streak: int
    changed: bool


def _int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def next_streak(profile: dict, today: str) -> StreakUpdate:
    """Advance the daily streak at most once per UTC day.

    No history starts at 1, yesterday extends by one, today is a no-op,
    and any older date resets to 1.
    """
    streak = _int(profile.get("streak"))
    longest = _int(profile.get("longest_streak"))
    last_active_date = profile.get("last_active_date")

    if last_active_date == today:
        return StreakUpdate(streak, longest, False)

    if last_active_date and last_active_date == previous_date(today):
        streak = streak + 1
    else:
        streak = 1

    if streak > longest:
        longest = streak
    return StreakUpdate(streak, longest, True)


class WalletTracker:
    """Stages first-seen, streak, cohort and journey writes for a wallet."""

    def track(self, batch: Batch, event: Event, profile: dict, now: datetime) -> StreakUpdate | None:
        if not event.has_wallet:
            return None

        wallet = event.wallet
        today = utc_date(now)
        update: dict = {"last_active": event.timestamp}

        batch.sadd(keys.active_day(today), wallet)
        batch.expire(keys.active_day(today), keys.ACTIVE_DAY_TTL)

        if not profile.get("first_seen"):
            # HSETNX keeps the earliest value if two first events race.
            batch.hsetnx(keys.profile(wallet), "first_seen", event.timestamp)
            batch.sadd(keys.cohort(today), wallet)

        streak = next_streak(profile, today)
        if streak.changed:
            update["streak"] = streak.streak
            update["longest_streak"] = streak.longest_streak
            update["last_active_date"] = today

        batch.hset(keys.profile(wallet), update)

        entry = {
            "type": event.type.value,
            "collection": event.collection,
            "page": event.page,
            "timestamp": event.timestamp,
        }
        if event.tx_hash:
            entry["txHash"] = event.tx_hash
        if event.price > 0:
            entry["price"] = event.price
        batch.lpush_capped(keys.journey(wallet), entry, keys.JOURNEY_CAP)
        return streak

"""Gamification points and wallet reputation."""

from __future__ import annotations

import logging
import math
from datetime import datetime

import keys
from errors import ReputationComputationError
from store import Batch, RedisStore


logger = logging.getLogger(__name__)

MINT_BASE_POINTS = 10
PRICE_MULTIPLIER = 50
PRICE_BONUS_CAP = 500
STREAK_BONUS_MIN = 3
STREAK_BONUS_PER_DAY = 3

COLLECTION_VIEW_POINTS = 1
FIRST_CONNECT_POINTS = 2

# Streak badges, highest first.
BADGES: list[tuple[int, str]] = [
    (30, "Legendary Minter"),
    (14, "Streak Master"),
    (7, "Committed Collector"),
    (3, "Rising Minter"),
]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _int(value) -> int:
    try:
        return int(float(value or 0))
    except (TypeError, ValueError):
        return 0


def _float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def mint_points(price: float, streak: int) -> int:
    points = MINT_BASE_POINTS
    if price > 0:
        points += min(price * PRICE_MULTIPLIER, PRICE_BONUS_CAP)
    if streak >= STREAK_BONUS_MIN:
        points += streak * STREAK_BONUS_PER_DAY
    return _round_half_up(points)


def award_points(batch: Batch, wallet: str, points: int, week: str) -> None:
    batch.hincrby(keys.profile(wallet), "total_points", points)
    batch.zincrby(keys.leaderboard("points"), points, wallet)
    batch.zincrby(keys.weekly_board("points", week), points, wallet)


def record_points(batch: Batch, wallet: str, entry: dict) -> None:
    batch.lpush_capped(keys.points_log(wallet), entry, keys.POINTS_LOG_CAP)


def reputation_score(profile: dict) -> float:
    mints = _int(profile.get("total_mints"))
    volume = _float(profile.get("total_volume"))
    attempts = max(_int(profile.get("total_attempts")), 1)
    failures = _int(profile.get("total_failures"))
    streak = _int(profile.get("streak"))

    success_rate = mints / attempts
    fail_rate = failures / attempts
    score = (
        mints * 2
        + (math.log(volume + 1) * 10 if volume > 0 else 0)
        + streak * 5
        + success_rate * 20
        - fail_rate * 10
    )
    return math.floor(max(0.0, score) * 100 + 0.5) / 100


def update_reputation(store: RedisStore, wallet: str) -> float | None:
    """Recompute and store a wallet's reputation.

    Runs after the event batch has committed; raises
    ReputationComputationError so the caller can log and move on.
    """
    try:
        profile = store.hgetall(keys.profile(wallet))
        if not profile:
            return None
        score = reputation_score(profile)
        batch = store.batch()
        batch.hset(keys.profile(wallet), {"reputation_score": score})
        batch.zadd(keys.leaderboard("reputation"), wallet, score)
        batch.commit()
        return score
    except Exception as e:
        raise ReputationComputationError(str(e)) from e


def streak_badge(streak: int) -> str | None:
    for threshold, name in BADGES:
        if streak >= threshold:
            return name
    return None


def activity_level(total_mints: int, streak: int) -> str:
    if total_mints >= 50 or streak >= 7:
        return "Power Minter"
    if total_mints >= 20 or streak >= 3:
        return "Active Collector"
    if total_mints >= 5:
        return "Rising Minter"
    if total_mints >= 1:
        return "Newcomer"
    return "Visitor"


def member_days(first_seen_ms: int, now: datetime) -> int:
    return max(0, int((now.timestamp() * 1000 - first_seen_ms) // (1000 * 60 * 60 * 24)))

"""Redis key layout shared by ingestion and read queries."""

from __future__ import annotations


GLOBAL_STATS = "stats:global"
CONNECTED_WALLETS = "wallets:connected"
FUNNEL = "funnel:mint"
GLOBAL_ACTIVITY = "activity:global"
MINT_LOG = "log:mints"
GALLERY_PAGE = "gallery"

DAILY_STATS_PREFIX = "daily:stats:"

# List caps (newest first).
GLOBAL_ACTIVITY_CAP = 100
COLLECTION_ACTIVITY_CAP = 50
MINT_LOG_CAP = 10_000
JOURNEY_CAP = 200
POINTS_LOG_CAP = 500

# TTLs in seconds.
DAY = 60 * 60 * 24
DAILY_VIEW_TTL = 60 * 60 * 25
PROCESSED_TX_TTL = DAY * 7
WEEKLY_BOARD_TTL = DAY * 56
ACTIVE_DAY_TTL = DAY * 60

LEADERBOARD_TYPES = ("mints", "volume", "gas", "points", "reputation")
COLLECTION_BOARD_TYPES = ("mints", "volume", "gas")


def collection_stats(slug: str) -> str:
    return f"collection:{slug}:stats"


def collection_wallets(slug: str) -> str:
    return f"collection:{slug}:wallets"


def collection_activity(slug: str) -> str:
    return f"activity:collection:{slug}"


def collection_funnel(slug: str) -> str:
    return f"{FUNNEL}:{slug}"


def page_stats(page: str) -> str:
    return f"page:{page}:stats"


def profile(wallet: str) -> str:
    return f"user:{wallet}:profile"


def journey(wallet: str) -> str:
    return f"user:{wallet}:journey"


def points_log(wallet: str) -> str:
    return f"user:{wallet}:points_log"


def daily_view(wallet: str, day: str) -> str:
    return f"user:{wallet}:daily_view:{day}"


def first_connect(wallet: str) -> str:
    return f"user:{wallet}:first_connect"


def daily_stats(day: str) -> str:
    return f"{DAILY_STATS_PREFIX}{day}"


def cohort(day: str) -> str:
    return f"cohort:{day}"


def active_day(day: str) -> str:
    return f"active:{day}"


def processed_tx(tx_hash: str) -> str:
    return f"mint:processed:{tx_hash}"


def rate_limit(identity: str, action: str) -> str:
    return f"ratelimit:{identity}:{action}"


def leaderboard(kind: str, period: str = "all_time", collection: str | None = None) -> str:
    """Sorted-set key for a board.

    Points and reputation boards have no `all_time` suffix. Weekly boards
    take the ISO week as `period` (`week:2025-W02`).
    """
    if kind in ("points", "reputation"):
        return f"leaderboard:{kind}" if period == "all_time" else f"leaderboard:{kind}:{period}"
    if collection and kind in COLLECTION_BOARD_TYPES and period == "all_time":
        return f"leaderboard:{kind}:{period}:{collection}"
    return f"leaderboard:{kind}:{period}"


def weekly_board(kind: str, week: str) -> str:
    return leaderboard(kind, f"week:{week}")

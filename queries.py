"""Read-only views over the aggregates written by ingestion.

Nothing here writes to the store. Percentages are one-decimal strings,
matching what the dashboards render.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import keys
from events import FUNNEL_STEPS, iso_week
from scoring import activity_level, member_days, streak_badge
from store import RedisStore


FUNNEL_LABELS = {
    "page_view": "Page View",
    "wallet_connect": "Wallet Connect",
    "collection_view": "View Collection",
    "mint_click": "Click Mint",
    "tx_sent": "Send Transaction",
    "mint_success": "Mint Success",
}

MILESTONES = (1000, 500, 100, 50, 10)


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


def pct(numerator: float, denominator: float, places: int = 1) -> str:
    if not denominator:
        return f"{0:.{places}f}"
    return f"{numerator / denominator * 100:.{places}f}"


def shorten_addr(addr: str | None) -> str:
    if not addr or len(addr) < 10:
        return addr or "Unknown"
    return f"{addr[:6]}...{addr[-4:]}"


# ---- funnel ----
def build_funnel(raw: dict) -> list[dict]:
    steps = [
        {"step": s.value, "label": FUNNEL_LABELS[s.value], "count": _int(raw.get(s.value))}
        for s in FUNNEL_STEPS
    ]
    first = steps[0]["count"] or 1
    for i, step in enumerate(steps):
        if i > 0:
            prev = steps[i - 1]["count"]
            step["conversionFromPrev"] = pct(step["count"], prev)
            step["dropOff"] = pct(prev - step["count"], prev)
        step["overallConversion"] = pct(step["count"], first)
    return steps


def overall_conversion(steps: list[dict]) -> str:
    if not steps or not steps[0]["count"]:
        return "0.0"
    return pct(steps[-1]["count"], steps[0]["count"])


# ---- leaderboards ----
def resolve_period(period: str, now: datetime) -> str:
    if period == "week":
        return f"week:{iso_week(now)}"
    if period.startswith("week:"):
        return period
    return "all_time"


def format_leaderboard(rows: list[tuple[str, float]]) -> list[dict]:
    return [
        {"wallet": wallet, "score": score, "rank": idx + 1}
        for idx, (wallet, score) in enumerate(rows)
    ]


def wallet_rank(store: RedisStore, board: str, wallet: str) -> tuple[int | None, float | None]:
    rank = store.zrevrank(board, wallet)
    return (None if rank is None else rank + 1), store.zscore(board, wallet)


# ---- stats shapes ----
def global_stats(raw: dict, unique_wallets: int) -> dict:
    views = _int(raw.get("total_views"))
    mints = _int(raw.get("total_mints"))
    attempts = _int(raw.get("total_attempts"))
    return {
        "totalViews": views,
        "totalMints": mints,
        "totalAttempts": attempts,
        "totalVolume": f"{_float(raw.get('total_volume')):.6f}",
        "totalGas": f"{_float(raw.get('total_gas')):.6f}",
        "successRate": pct(mints, attempts),
        "conversionRate": pct(mints, views),
        "totalConnects": _int(raw.get("total_connects")),
        "totalFailures": _int(raw.get("total_failures")),
        "totalEvents": _int(raw.get("total_events")),
        "uniqueWallets": unique_wallets,
    }


def collection_stats(raw: dict, unique_wallets: int) -> dict:
    views = _int(raw.get("views"))
    mints = _int(raw.get("mints"))
    attempts = _int(raw.get("attempts"))
    failures = _int(raw.get("failures"))
    return {
        "totalViews": views,
        "totalMints": mints,
        "totalAttempts": attempts,
        "totalVolume": f"{_float(raw.get('volume')):.6f}",
        "totalGas": "0.000000",
        "successRate": pct(mints, attempts),
        "conversionRate": pct(mints, views),
        "totalConnects": 0,
        "totalFailures": failures,
        "totalEvents": attempts + mints + failures + views,
        "uniqueWallets": unique_wallets,
    }


def top_collections(store: RedisStore) -> list[dict]:
    out = []
    for key in store.scan_prefix("collection:"):
        if not key.endswith(":stats"):
            continue
        slug = key[len("collection:"):-len(":stats")]
        raw = store.hgetall(key)
        views, mints, attempts = _int(raw.get("views")), _int(raw.get("mints")), _int(raw.get("attempts"))
        volume = _float(raw.get("volume"))
        if not (views or mints or attempts or volume):
            continue
        out.append({
            "slug": slug,
            "views": views,
            "mints": mints,
            "attempts": attempts,
            "volume": volume,
            "successRate": pct(mints, attempts),
        })
    out.sort(key=lambda c: c["views"], reverse=True)
    return out


def social_proof(activity: list, board: list[dict], collections: list[dict], now_ms: int) -> list[dict]:
    messages = []
    if board and board[0]["score"] >= 5:
        top = board[0]
        messages.append({
            "type": "whale",
            "text": f"{shorten_addr(top['wallet'])} is leading with {top['score']:g} mints",
            "timestamp": now_ms,
        })
    for col in collections:
        for m in MILESTONES:
            if col.get("mints", 0) >= m:
                messages.append({"type": "milestone", "text": f"{col['slug']} crossed {m}+ mints", "timestamp": now_ms})
                break
    latest = activity[0] if activity else None
    if isinstance(latest, dict) and latest.get("wallet"):
        messages.append({
            "type": "recent",
            "text": f"{shorten_addr(latest['wallet'])} minted from {latest.get('collection') or 'a collection'}",
            "timestamp": latest.get("timestamp") or now_ms,
        })
    active = {a.get("wallet") for a in activity if isinstance(a, dict) and a.get("wallet")}
    if len(active) > 1:
        messages.append({"type": "social", "text": f"{len(active)} wallets active now", "timestamp": now_ms})
    return messages


# ---- composite views ----
def leaderboard_summary(
    store: RedisStore,
    now: datetime,
    kind: str = "mints",
    period: str = "all_time",
    limit: int = 10,
    collection: str | None = None,
) -> dict:
    kind = kind if kind in keys.LEADERBOARD_TYPES else "mints"
    limit = max(1, min(int(limit), 100))
    board_key = keys.leaderboard(kind, resolve_period(period, now), collection)

    if collection:
        raw_stats = store.hgetall(keys.collection_stats(collection))
        funnel_raw = store.hgetall(keys.collection_funnel(collection))
        activity = store.lrange(keys.collection_activity(collection), 0, 29)
        unique = store.scard(keys.collection_wallets(collection))
        stats = collection_stats(raw_stats, unique)
    else:
        raw_stats = store.hgetall(keys.GLOBAL_STATS)
        funnel_raw = store.hgetall(keys.FUNNEL)
        activity = store.lrange(keys.GLOBAL_ACTIVITY, 0, 29)
        unique = store.scard(keys.CONNECTED_WALLETS)
        stats = global_stats(raw_stats, unique)

    board = format_leaderboard(store.top(board_key, limit))
    steps = build_funnel(funnel_raw)
    collections = top_collections(store)
    return {
        "scope": "collection" if collection else "global",
        "collection": collection,
        "stats": stats,
        "funnel": steps,
        "overallConversion": overall_conversion(steps),
        "leaderboard": board,
        "collections": collections,
        "recentActivity": activity,
        "socialProof": social_proof(activity, board, collections, int(now.timestamp() * 1000)),
    }


def favorite_collection(journey: list) -> tuple[str | None, int]:
    counts: dict[str, int] = {}
    for item in journey:
        if isinstance(item, dict) and item.get("type") == "mint_success" and item.get("collection"):
            counts[item["collection"]] = counts.get(item["collection"], 0) + 1
    if not counts:
        return None, 0
    best = max(counts.items(), key=lambda kv: kv[1])
    return best


def wallet_summary(store: RedisStore, wallet: str, now: datetime) -> dict:
    profile = store.hgetall(keys.profile(wallet))
    journey = store.lrange(keys.journey(wallet), 0, keys.JOURNEY_CAP - 1)
    global_raw = store.hgetall(keys.GLOBAL_STATS)

    mints_board = keys.leaderboard("mints")
    mint_rank, mint_score = wallet_rank(store, mints_board, wallet)
    volume_rank, volume_score = wallet_rank(store, keys.leaderboard("volume"), wallet)
    rep_rank, rep_score = wallet_rank(store, keys.leaderboard("reputation"), wallet)
    points_rank, points_score = wallet_rank(store, keys.leaderboard("points"), wallet)
    total_minters = store.zcard(mints_board)

    total_mints = _int(profile.get("total_mints"))
    total_attempts = _int(profile.get("total_attempts"))
    total_volume = _float(profile.get("total_volume"))
    total_gas = _float(profile.get("total_gas"))
    total_points = _int(profile.get("total_points"))
    streak = _int(profile.get("streak"))
    longest = _int(profile.get("longest_streak")) or streak
    first_seen = _int(profile.get("first_seen")) or None
    last_active = _int(profile.get("last_active")) or None

    global_mints = _int(global_raw.get("total_mints")) or 1
    global_volume = _float(global_raw.get("total_volume")) or 1
    mint_contribution = pct(total_mints, global_mints, 2)
    volume_contribution = pct(total_volume, global_volume, 2)
    avg_gas = f"{total_gas / total_mints:.6f}" if total_mints else "0.000000"

    percentile = None
    if mint_rank and total_minters:
        percentile = f"Top {mint_rank / total_minters * 100:.1f}%"

    fav, fav_count = favorite_collection(journey)
    points = int(points_score) if points_score is not None else total_points

    return {
        "wallet": wallet,
        "profile": {
            "totalMints": total_mints,
            "totalAttempts": total_attempts,
            "totalFailures": _int(profile.get("total_failures")),
            "totalVolume": total_volume,
            "totalGas": total_gas,
            "avgGas": avg_gas,
            "firstSeen": _iso_ms(first_seen),
            "lastActive": _iso_ms(last_active),
            "successRate": pct(total_mints, total_attempts) if total_attempts else "100.0",
            "streak": streak,
            "longestStreak": longest,
            "favoriteCollection": fav,
            "favoriteCollectionMints": fav_count,
            "mintContribution": mint_contribution,
            "volumeContribution": volume_contribution,
        },
        "rankings": {
            "mints": {
                "rank": mint_rank or "Unranked",
                "score": int(mint_score or 0),
                "percentile": percentile or "N/A",
                "totalMinters": total_minters,
            },
            "volume": {"rank": volume_rank or "Unranked", "score": volume_score or 0.0},
            "reputation": {
                "rank": rep_rank or "Unranked",
                "score": f"{rep_score if rep_score is not None else _float(profile.get('reputation_score')):.2f}",
            },
            "points": {"rank": points_rank or "Unranked", "score": points},
        },
        "insights": {
            "badge": streak_badge(streak),
            "points": points,
            "mintContribution": f"{mint_contribution}%",
            "volumeContribution": f"{volume_contribution}%",
            "avgGasPerMint": f"{avg_gas} ETH",
            "favoriteCollection": fav,
            "favoriteCollectionMints": fav_count,
            "memberDays": member_days(first_seen, now) if first_seen else 0,
            "activityLevel": activity_level(total_mints, streak),
        },
        "journey": journey,
    }


def _iso_ms(ms: int | None) -> str | None:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def collection_summary(store: RedisStore, slug: str, limit: int = 50) -> dict:
    return {
        "collection": slug,
        "stats": store.hgetall(keys.collection_stats(slug)),
        "uniqueWallets": store.scard(keys.collection_wallets(slug)),
        "recentActivity": store.lrange(keys.collection_activity(slug), 0, limit - 1),
    }


def overview(store: RedisStore) -> dict:
    board = keys.leaderboard("mints")
    return {
        "stats": store.hgetall(keys.GLOBAL_STATS),
        "funnel": store.hgetall(keys.FUNNEL),
        "leaderboard": format_leaderboard(store.top(board, 20)),
        "recentActivity": store.lrange(keys.GLOBAL_ACTIVITY, 0, 49),
        "totalTrackedWallets": store.zcard(board),
    }


def wallet_detail(store: RedisStore, wallet: str) -> dict:
    rank, score = wallet_rank(store, keys.leaderboard("mints"), wallet)
    return {
        "wallet": wallet,
        "profile": store.hgetall(keys.profile(wallet)),
        "journey": store.lrange(keys.journey(wallet), 0, keys.JOURNEY_CAP - 1),
        "pointsLog": store.lrange(keys.points_log(wallet), 0, 49),
        "rank": rank or "Unranked",
        "score": score or 0,
    }


def cohort(store: RedisStore, day: str) -> dict:
    wallets = store.smembers(keys.cohort(day))
    return {"date": day, "wallets": wallets, "count": len(wallets)}


def daily(store: RedisStore, day: str) -> dict:
    return {"date": day, "stats": store.hgetall(keys.daily_stats(day))}


def retention(store: RedisStore, day: str) -> dict:
    """Share of a cohort active again on day 1, 7 and 30."""
    start = date.fromisoformat(day)
    cohort_key = keys.cohort(day)
    size = store.scard(cohort_key)
    out = {}
    for label, offset in (("day1", 1), ("day7", 7), ("day30", 30)):
        count = 0
        if size:
            later = (start + timedelta(days=offset)).isoformat()
            count = len(store.sinter(cohort_key, keys.active_day(later)))
        out[label] = {"count": count, "rate": pct(count, size)}
    return {"date": day, "cohortSize": size, "retention": out}

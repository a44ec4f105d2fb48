"""Event ingestion: one dispatcher, one batch per tracked event.

Every handler stages writes into the request's Batch; nothing is visible
to readers until the batch commits. Verification and the profile pre-read
happen before the first write is staged.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import keys
from chain import STATUS_REJECTED, ChainVerifier
from config import Settings
from errors import AlreadyProcessed, InvalidTransaction, ReputationComputationError
from events import Event, EventType, iso_week, new_event_id, utc_date, utc_now, validate_event
from idempotency import IdempotencyGuard
from rate_limit import RateLimiter, rate_limit_identity
from scoring import (
    COLLECTION_VIEW_POINTS,
    FIRST_CONNECT_POINTS,
    award_points,
    mint_points,
    record_points,
    update_reputation,
)
from store import Batch, RedisStore
from wallet_tracker import WalletTracker


logger = logging.getLogger(__name__)


@dataclass
class TrackResult:
    event_id: str
    event: Event
    credited: bool = False
    duplicate: bool = False
    points: int = 0
    commands: int = 0

    def to_dict(self) -> dict:
        out = {"success": True, "eventId": self.event_id}
        if self.duplicate:
            out["duplicate"] = True
        return out


@dataclass
class _Context:
    event: Event
    batch: Batch
    now: datetime
    today: str
    week: str
    profile: dict = field(default_factory=dict)
    result: TrackResult | None = None


class EventProcessor:
    def __init__(
        self,
        store: RedisStore,
        settings: Settings,
        verifier: ChainVerifier | None = None,
        rate_limiter: RateLimiter | None = None,
        idempotency: IdempotencyGuard | None = None,
        tracker: WalletTracker | None = None,
        sweeper=None,
        clock: Callable[[], datetime] = utc_now,
        rng: Callable[[], float] = random.random,
    ):
        self.store = store
        self.settings = settings
        self.verifier = verifier or ChainVerifier(None)
        self.rate_limiter = rate_limiter or RateLimiter(store, settings)
        self.idempotency = idempotency or IdempotencyGuard()
        self.tracker = tracker or WalletTracker()
        self.sweeper = sweeper
        self.clock = clock
        self.rng = rng
        self._handlers: dict[EventType, Callable[[_Context], None]] = {
            EventType.PAGE_VIEW: self._page_view,
            EventType.WALLET_CONNECT: self._wallet_connect,
            EventType.COLLECTION_VIEW: self._collection_view,
            EventType.MINT_CLICK: self._common_only,
            EventType.MINT_ATTEMPT: self._mint_attempt,
            EventType.TX_SENT: self._common_only,
            EventType.MINT_SUCCESS: self._mint_success,
            EventType.MINT_FAILURE: self._mint_failure,
            EventType.GALLERY_VIEW: self._gallery_view,
            EventType.CLICK: self._common_only,
        }
        missing = set(EventType) - set(self._handlers)
        if missing:
            raise TypeError(f"No handler for event types: {sorted(t.value for t in missing)}")

    # ---- entry points ----
    def track(self, payload, client_ip: str = "") -> TrackResult:
        """Validate, rate-limit and aggregate one raw event payload."""
        now = self.clock()
        event = validate_event(payload, now)
        identity = rate_limit_identity(event.wallet, event.has_wallet, client_ip)
        self.rate_limiter.check(identity, event.type.value)
        return self.process(event, now)

    def process(self, event: Event, now: datetime | None = None) -> TrackResult:
        now = now or self.clock()
        result = TrackResult(event_id=new_event_id(event.timestamp), event=event)

        if self._is_creditable_mint(event) and event.tx_hash:
            status, reason = self.verifier.verify(event.tx_hash, event.wallet)
            if status == STATUS_REJECTED:
                logger.warning("Rejected mint tx %s for %s: %s", event.tx_hash, event.wallet, reason)
                raise InvalidTransaction()

        profile = self.store.hgetall(keys.profile(event.wallet)) if event.has_wallet else {}
        batch = self.store.batch()
        ctx = _Context(
            event=event,
            batch=batch,
            now=now,
            today=utc_date(now),
            week=iso_week(now),
            profile=profile,
            result=result,
        )

        try:
            self._stage_common(ctx)
            self._handlers[event.type](ctx)
            self.tracker.track(batch, event, profile, now)
            batch.expire(keys.weekly_board("mints", ctx.week), keys.WEEKLY_BOARD_TTL)
            batch.expire(keys.weekly_board("points", ctx.week), keys.WEEKLY_BOARD_TTL)
            batch.commit()
        finally:
            if not batch.committed:
                batch.release()

        result.commands = batch.size
        logger.debug("Batch (%s) committed with %d commands", event.type.value, batch.size)

        if result.credited:
            try:
                update_reputation(self.store, event.wallet)
            except ReputationComputationError as e:
                logger.warning("Reputation calc error (non-fatal) for %s: %s", event.wallet, e)

        self._maybe_sweep()
        return result

    # ---- staging ----
    def _stage_common(self, ctx: _Context) -> None:
        event, batch = ctx.event, ctx.batch
        batch.hincrby(keys.GLOBAL_STATS, "total_events", 1)
        daily = keys.daily_stats(ctx.today)
        batch.hincrby(daily, event.type.value, 1)
        batch.expire(daily, self.settings.daily_stats_retention_days * keys.DAY)
        if event.is_funnel_step:
            batch.hincrby(keys.FUNNEL, event.type.value, 1)
            if event.collection:
                batch.hincrby(keys.collection_funnel(event.collection), event.type.value, 1)

    def _common_only(self, ctx: _Context) -> None:
        return None

    def _page_view(self, ctx: _Context) -> None:
        ctx.batch.hincrby(keys.GLOBAL_STATS, "total_views", 1)
        if ctx.event.page:
            ctx.batch.hincrby(keys.page_stats(ctx.event.page), "views", 1)

    def _gallery_view(self, ctx: _Context) -> None:
        ctx.batch.hincrby(keys.GLOBAL_STATS, "total_views", 1)
        ctx.batch.hincrby(keys.page_stats(keys.GALLERY_PAGE), "views", 1)

    def _collection_view(self, ctx: _Context) -> None:
        event, batch = ctx.event, ctx.batch
        batch.hincrby(keys.GLOBAL_STATS, "total_views", 1)
        if event.collection:
            batch.hincrby(keys.collection_stats(event.collection), "views", 1)

        if event.has_wallet and batch.claim(keys.daily_view(event.wallet, ctx.today), keys.DAILY_VIEW_TTL):
            self._award(ctx, COLLECTION_VIEW_POINTS, {"type": "daily_view", "collection": event.collection})

    def _wallet_connect(self, ctx: _Context) -> None:
        event, batch = ctx.event, ctx.batch
        if not event.has_wallet:
            return
        if not batch.claim_member(keys.CONNECTED_WALLETS, event.wallet):
            return
        batch.hincrby(keys.GLOBAL_STATS, "total_connects", 1)
        if batch.claim(keys.first_connect(event.wallet)):
            self._award(ctx, FIRST_CONNECT_POINTS, {"type": "first_connect"})

    def _mint_attempt(self, ctx: _Context) -> None:
        self._count_outcome(ctx, "total_attempts", "attempts")

    def _mint_failure(self, ctx: _Context) -> None:
        self._count_outcome(ctx, "total_failures", "failures")

    def _count_outcome(self, ctx: _Context, total_field: str, field_name: str) -> None:
        event, batch = ctx.event, ctx.batch
        batch.hincrby(keys.GLOBAL_STATS, total_field, 1)
        if event.collection:
            batch.hincrby(keys.collection_stats(event.collection), field_name, 1)
        if event.has_wallet:
            batch.hincrby(keys.profile(event.wallet), total_field, 1)

    def _mint_success(self, ctx: _Context) -> None:
        event, batch = ctx.event, ctx.batch
        if not self._is_creditable_mint(event):
            return
        if event.tx_hash:
            try:
                self.idempotency.claim(batch, event.tx_hash)
            except AlreadyProcessed:
                logger.info("Mint tx %s already processed; skipping credit", event.tx_hash)
                ctx.result.duplicate = True
                return

        wallet, collection = event.wallet, event.collection
        price, gas = event.price, event.gas
        profile_key = keys.profile(wallet)
        collection_key = keys.collection_stats(collection)
        daily = keys.daily_stats(ctx.today)

        batch.hincrby(keys.GLOBAL_STATS, "total_mints", 1)
        batch.hincrby(collection_key, "mints", 1)
        batch.hincrby(profile_key, "total_mints", 1)
        batch.hincrby(daily, "mints", 1)
        if price > 0:
            batch.hincrbyfloat(keys.GLOBAL_STATS, "total_volume", price)
            batch.hincrbyfloat(collection_key, "volume", price)
            batch.hincrbyfloat(profile_key, "total_volume", price)
            batch.hincrbyfloat(daily, "volume", price)
        if gas > 0:
            batch.hincrbyfloat(keys.GLOBAL_STATS, "total_gas", gas)
            batch.hincrbyfloat(profile_key, "total_gas", gas)

        batch.sadd(keys.collection_wallets(collection), wallet)

        batch.zincrby(keys.leaderboard("mints"), 1, wallet)
        batch.zincrby(keys.leaderboard("mints", collection=collection), 1, wallet)
        if price > 0:
            batch.zincrby(keys.leaderboard("volume"), price, wallet)
            batch.zincrby(keys.leaderboard("volume", collection=collection), price, wallet)
        if gas > 0:
            batch.zincrby(keys.leaderboard("gas"), gas, wallet)
            batch.zincrby(keys.leaderboard("gas", collection=collection), gas, wallet)
        batch.zincrby(keys.weekly_board("mints", ctx.week), 1, wallet)

        activity = {
            "wallet": wallet,
            "collection": collection,
            "txHash": event.tx_hash,
            "price": price,
            "timestamp": event.timestamp,
        }
        batch.lpush_capped(keys.GLOBAL_ACTIVITY, activity, keys.GLOBAL_ACTIVITY_CAP)
        batch.lpush_capped(keys.collection_activity(collection), activity, keys.COLLECTION_ACTIVITY_CAP)
        batch.lpush_capped(
            keys.MINT_LOG,
            {"wallet": wallet, "collection": collection, "price": price, "txHash": event.tx_hash, "timestamp": event.timestamp},
            keys.MINT_LOG_CAP,
        )

        # Streak as it stood before this event's wallet tracking.
        try:
            streak = int(ctx.profile.get("streak") or 0)
        except (TypeError, ValueError):
            streak = 0
        points = mint_points(price, streak)
        self._award(
            ctx,
            points,
            {"collection": collection, "price": price, "streak": streak, "type": "mint_bonus"},
            action="mint_success",
        )
        ctx.result.credited = True

    # ---- helpers ----
    def _award(self, ctx: _Context, points: int, reason: dict, action: str | None = None) -> None:
        event = ctx.event
        award_points(ctx.batch, event.wallet, points, ctx.week)
        entry = {
            "action": action or event.type.value,
            "points": points,
            "reason": reason,
            "timestamp": event.timestamp,
        }
        if event.tx_hash:
            entry["txHash"] = event.tx_hash
        record_points(ctx.batch, event.wallet, entry)
        ctx.result.points += points

    @staticmethod
    def _is_creditable_mint(event: Event) -> bool:
        return event.type is EventType.MINT_SUCCESS and event.has_wallet and bool(event.collection)

    def _maybe_sweep(self) -> None:
        if self.sweeper is None or self.settings.cleanup_probability <= 0:
            return
        if self.rng() < self.settings.cleanup_probability:
            self.sweeper.run_in_background()

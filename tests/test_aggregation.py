"""Integration tests for EventProcessor against an in-memory Redis."""
import threading

import pytest
import redis

import aggregation
import keys
from aggregation import EventProcessor
from errors import InvalidTransaction, RateLimitExceeded, ReputationComputationError, StoreFailure
from store import Batch
from conftest import OTHER_WALLET, TX_HASH, WALLET, mint_receipt


def _failing_batch(store):
    batch = Batch(store)

    def execute(*args, **kwargs):
        raise redis.ConnectionError("connection lost")

    batch._pipe.execute = execute
    return batch


def _mint(processor, wallet=WALLET, tx=TX_HASH, collection="zorgz", price=0.1, gas=0.002):
    return processor.track(
        {"type": "mint_success", "wallet": wallet, "collection": collection, "txHash": tx, "price": price, "gas": gas}
    )


class TestCommonCounters:
    def test_every_event_counts_once(self, processor, redis_client):
        processor.track({"type": "click"})
        processor.track({"type": "tx_sent", "wallet": WALLET, "collection": "zorgz"})
        assert redis_client.hget(keys.GLOBAL_STATS, "total_events") == "2"
        daily = redis_client.hgetall(keys.daily_stats("2025-01-02"))
        assert daily == {"click": "1", "tx_sent": "1"}
        assert redis_client.ttl(keys.daily_stats("2025-01-02")) > 0

    def test_funnel_steps_global_and_per_collection(self, processor, redis_client):
        processor.track({"type": "mint_click", "collection": "zorgz"})
        processor.track({"type": "click", "collection": "zorgz"})
        assert redis_client.hgetall(keys.FUNNEL) == {"mint_click": "1"}
        assert redis_client.hgetall(keys.collection_funnel("zorgz")) == {"mint_click": "1"}

    def test_result_shape(self, processor):
        result = processor.track({"type": "page_view"})
        body = result.to_dict()
        assert body["success"] is True
        assert body["eventId"].startswith(str(result.event.timestamp))
        assert "duplicate" not in body
        assert result.commands > 0


class TestViews:
    def test_page_view(self, processor, redis_client):
        processor.track({"type": "page_view", "page": "home"})
        assert redis_client.hget(keys.GLOBAL_STATS, "total_views") == "1"
        assert redis_client.hget(keys.page_stats("home"), "views") == "1"

    def test_gallery_view(self, processor, redis_client):
        processor.track({"type": "gallery_view"})
        assert redis_client.hget(keys.page_stats(keys.GALLERY_PAGE), "views") == "1"
        assert redis_client.hget(keys.GLOBAL_STATS, "total_views") == "1"

    def test_collection_view_points_once_per_day(self, processor, redis_client, clock):
        first = processor.track({"type": "collection_view", "wallet": WALLET, "collection": "zorgz"})
        second = processor.track({"type": "collection_view", "wallet": WALLET, "collection": "zorgz"})
        assert (first.points, second.points) == (1, 0)
        assert redis_client.hget(keys.collection_stats("zorgz"), "views") == "2"
        assert redis_client.hget(keys.profile(WALLET), "total_points") == "1"

        clock.advance(days=1)
        third = processor.track({"type": "collection_view", "wallet": WALLET, "collection": "zorgz"})
        assert third.points == 1
        assert redis_client.zscore(keys.leaderboard("points"), WALLET) == 2

    def test_anonymous_collection_view_earns_nothing(self, processor, redis_client):
        result = processor.track({"type": "collection_view", "collection": "zorgz"})
        assert result.points == 0
        assert redis_client.zcard(keys.leaderboard("points")) == 0


class TestWalletConnect:
    def test_first_connect_awards_points_once(self, processor, redis_client):
        first = processor.track({"type": "wallet_connect", "wallet": WALLET})
        second = processor.track({"type": "wallet_connect", "wallet": WALLET})
        assert (first.points, second.points) == (2, 0)
        assert redis_client.hget(keys.GLOBAL_STATS, "total_connects") == "1"
        assert redis_client.sismember(keys.CONNECTED_WALLETS, WALLET)
        log = processor.store.lrange(keys.points_log(WALLET))
        assert [entry["reason"]["type"] for entry in log] == ["first_connect"]

    def test_anonymous_connect_only_counts_event(self, processor, redis_client):
        processor.track({"type": "wallet_connect"})
        assert redis_client.hget(keys.GLOBAL_STATS, "total_connects") is None
        assert redis_client.scard(keys.CONNECTED_WALLETS) == 0


class TestOutcomes:
    def test_attempt_and_failure(self, processor, redis_client):
        processor.track({"type": "mint_attempt", "wallet": WALLET, "collection": "zorgz"})
        processor.track({"type": "mint_failure", "wallet": WALLET, "collection": "zorgz"})
        assert redis_client.hget(keys.GLOBAL_STATS, "total_attempts") == "1"
        assert redis_client.hget(keys.GLOBAL_STATS, "total_failures") == "1"
        assert redis_client.hgetall(keys.collection_stats("zorgz")) == {"attempts": "1", "failures": "1"}
        profile = redis_client.hgetall(keys.profile(WALLET))
        assert profile["total_attempts"] == "1"
        assert profile["total_failures"] == "1"


class TestMintSuccess:
    def test_credits_everything(self, processor, redis_client, chain_client):
        chain_client.outcome = mint_receipt(WALLET)
        result = _mint(processor)

        assert result.credited
        assert chain_client.calls == [TX_HASH]
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"
        assert float(redis_client.hget(keys.GLOBAL_STATS, "total_volume")) == pytest.approx(0.1)
        assert float(redis_client.hget(keys.GLOBAL_STATS, "total_gas")) == pytest.approx(0.002)
        stats = redis_client.hgetall(keys.collection_stats("zorgz"))
        assert stats["mints"] == "1"
        assert float(stats["volume"]) == pytest.approx(0.1)
        assert redis_client.sismember(keys.collection_wallets("zorgz"), WALLET)
        assert redis_client.hget(keys.daily_stats("2025-01-02"), "mints") == "1"

        assert redis_client.zscore(keys.leaderboard("mints"), WALLET) == 1
        assert redis_client.zscore(keys.leaderboard("mints", collection="zorgz"), WALLET) == 1
        assert redis_client.zscore(keys.leaderboard("volume"), WALLET) == pytest.approx(0.1)
        assert redis_client.zscore(keys.leaderboard("gas"), WALLET) == pytest.approx(0.002)
        assert redis_client.zscore(keys.leaderboard("volume", collection="zorgz"), WALLET) == pytest.approx(0.1)
        assert redis_client.zscore(keys.leaderboard("gas", collection="zorgz"), WALLET) == pytest.approx(0.002)
        assert redis_client.zscore(keys.weekly_board("mints", "2025-W01"), WALLET) == 1
        assert redis_client.ttl(keys.weekly_board("mints", "2025-W01")) > 0

        assert redis_client.ttl(keys.processed_tx(TX_HASH)) > 0
        assert processor.store.lrange(keys.GLOBAL_ACTIVITY)[0]["txHash"] == TX_HASH
        assert processor.store.lrange(keys.collection_activity("zorgz"))[0]["wallet"] == WALLET
        assert redis_client.llen(keys.MINT_LOG) == 1

        # 10 + 0.1 * 50, no streak yet
        assert result.points == 15
        assert redis_client.zscore(keys.leaderboard("points"), WALLET) == 15
        assert redis_client.zscore(keys.weekly_board("points", "2025-W01"), WALLET) == 15
        log = processor.store.lrange(keys.points_log(WALLET))
        assert log[0]["action"] == "mint_success"
        assert log[0]["txHash"] == TX_HASH

        assert redis_client.zscore(keys.leaderboard("reputation"), WALLET) > 0

    def test_duplicate_tx_is_not_credited_twice(self, processor, redis_client):
        _mint(processor)
        again = _mint(processor)
        assert again.duplicate
        assert not again.credited
        assert again.to_dict()["duplicate"] is True
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"
        assert redis_client.zscore(keys.leaderboard("points"), WALLET) == 15
        assert redis_client.hget(keys.GLOBAL_STATS, "total_events") == "2"

    def test_concurrent_duplicates_credit_once(self, processor, redis_client):
        workers = 8
        barrier = threading.Barrier(workers)
        results = []
        lock = threading.Lock()

        def send():
            barrier.wait()
            result = _mint(processor)
            with lock:
                results.append(result)

        threads = [threading.Thread(target=send) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert len(results) == workers
        assert sum(r.credited for r in results) == 1
        assert sum(r.duplicate for r in results) == workers - 1
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"
        assert redis_client.hget(keys.GLOBAL_STATS, "total_events") == str(workers)

    def test_rejected_tx_writes_nothing(self, processor, redis_client, chain_client):
        chain_client.outcome = mint_receipt(WALLET, status=0)
        with pytest.raises(InvalidTransaction):
            _mint(processor)
        written = [k for k in redis_client.keys("*") if not k.startswith("ratelimit:")]
        assert written == []

    def test_tx_for_other_wallet_is_rejected(self, processor, chain_client):
        chain_client.outcome = mint_receipt(OTHER_WALLET)
        with pytest.raises(InvalidTransaction):
            _mint(processor)

    def test_fails_open_when_rpc_errors(self, processor, redis_client, chain_client):
        chain_client.error = TimeoutError("rpc down")
        assert _mint(processor).credited
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"

    def test_mint_without_collection_is_not_credited(self, processor, redis_client, chain_client):
        result = _mint(processor, collection=None)
        assert not result.credited
        assert chain_client.calls == []
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") is None
        assert redis_client.hget(keys.GLOBAL_STATS, "total_events") == "1"

    def test_points_use_streak_before_the_event(self, processor, redis_client):
        redis_client.hset(
            keys.profile(WALLET),
            mapping={"streak": 5, "longest_streak": 5, "last_active_date": "2025-01-01", "first_seen": 1},
        )
        result = _mint(processor, price=0)
        assert result.points == 25
        assert redis_client.hget(keys.profile(WALLET), "streak") == "6"

    def test_store_failure_releases_claims(self, processor, store, redis_client, monkeypatch):
        monkeypatch.setattr(store, "batch", lambda: _failing_batch(store))
        with pytest.raises(StoreFailure):
            _mint(processor)
        assert not redis_client.exists(keys.processed_tx(TX_HASH))
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") is None

        monkeypatch.undo()
        assert _mint(processor).credited
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"

    def test_store_failure_releases_connect_claims(self, processor, store, redis_client, monkeypatch):
        monkeypatch.setattr(store, "batch", lambda: _failing_batch(store))
        with pytest.raises(StoreFailure):
            processor.track({"type": "wallet_connect", "wallet": WALLET})
        assert redis_client.scard(keys.CONNECTED_WALLETS) == 0
        assert not redis_client.exists(keys.first_connect(WALLET))

    def test_reputation_failure_is_not_fatal(self, processor, redis_client, monkeypatch):
        def broken(store, wallet):
            raise ReputationComputationError("bad profile")

        monkeypatch.setattr(aggregation, "update_reputation", broken)
        result = _mint(processor)
        assert result.credited
        assert redis_client.hget(keys.GLOBAL_STATS, "total_mints") == "1"
        assert redis_client.zcard(keys.leaderboard("reputation")) == 0


def test_rate_limit_rejects_before_any_write(processor, redis_client):
    for _ in range(20):
        processor.track({"type": "mint_click", "wallet": WALLET})
    with pytest.raises(RateLimitExceeded):
        processor.track({"type": "mint_click", "wallet": WALLET})
    assert redis_client.hget(keys.GLOBAL_STATS, "total_events") == "20"


class _RecordingSweeper:
    def __init__(self):
        self.runs = 0

    def run_in_background(self):
        self.runs += 1


def test_sweeper_runs_when_sampled(store, settings, clock):
    settings.cleanup_probability = 0.5
    sweeper = _RecordingSweeper()
    rolls = iter([0.1, 0.9])
    processor = EventProcessor(store, settings, sweeper=sweeper, clock=clock, rng=lambda: next(rolls))
    processor.track({"type": "click"})
    processor.track({"type": "click"})
    assert sweeper.runs == 1


def test_sweeper_disabled_at_zero_probability(store, settings, clock):
    sweeper = _RecordingSweeper()
    processor = EventProcessor(store, settings, sweeper=sweeper, clock=clock, rng=lambda: 0.0)
    processor.track({"type": "click"})
    assert sweeper.runs == 0

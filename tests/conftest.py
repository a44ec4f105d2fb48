from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from aggregation import EventProcessor
from app import create_app
from chain import ChainVerifier, TransactionOutcome, TRANSFER_TOPIC, pad_topic
from config import Settings
from store import RedisStore


WALLET = "0x" + "ab" * 20
OTHER_WALLET = "0x" + "cd" * 20
TX_HASH = "0x" + "11" * 32


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeChainClient:
    """Stands in for the JSON-RPC endpoint; returns a canned receipt."""

    rpc_url = "http://rpc.test"

    def __init__(self):
        self.outcome = None
        self.error = None
        self.calls = []

    def get_transaction_outcome(self, tx_hash):
        self.calls.append(tx_hash)
        if self.error:
            raise self.error
        return self.outcome


def mint_receipt(wallet=WALLET, status=1, topic=TRANSFER_TOPIC, recipient_index=2):
    topics = [topic] + ["0x" + "0" * 64] * 3
    topics[recipient_index] = pad_topic(wallet)
    return TransactionOutcome(status=status, sender=wallet, logs=[{"topics": topics}])


@pytest.fixture
def redis_client():
    server = fakeredis.FakeServer()
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisStore(redis_client)


@pytest.fixture
def settings():
    return Settings(cleanup_probability=0.0, admin_api_key="admin-secret")


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def chain_client():
    return FakeChainClient()


@pytest.fixture
def processor(store, settings, chain_client, clock):
    return EventProcessor(store, settings, verifier=ChainVerifier(chain_client), clock=clock)


@pytest.fixture
def app(store, settings, chain_client, clock):
    app = create_app(settings=settings, store=store, chain_client=chain_client, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()

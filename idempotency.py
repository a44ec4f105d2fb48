from __future__ import annotations

import keys
from errors import AlreadyProcessed
from store import Batch


class IdempotencyGuard:
    """At-most-once crediting per transaction hash.

    The marker is a single SET NX, so among concurrent duplicates exactly
    one caller wins. It is taken through the request batch so a failed
    commit releases it again.
    """

    def __init__(self, ttl: int = keys.PROCESSED_TX_TTL):
        self.ttl = ttl

    def claim(self, batch: Batch, tx_hash: str) -> None:
        if not batch.claim(keys.processed_tx(tx_hash), self.ttl):
            raise AlreadyProcessed()

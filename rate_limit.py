from __future__ import annotations

import keys
from config import Settings
from errors import RateLimitExceeded
from store import RedisStore


class RateLimiter:
    """Fixed-window counter per (identity, action).

    The window starts at the first increment: the counter gets its expiry
    only when INCR returns 1, so later hits never extend it.
    """

    def __init__(self, store: RedisStore, settings: Settings):
        self.store = store
        self.settings = settings

    def check(self, identity: str, action: str) -> int:
        key = keys.rate_limit(identity, action)
        count = self.store.incr(key)
        if count == 1:
            self.store.expire(key, self.settings.rate_limit_window_seconds)
        if count > self.settings.limit_for(action):
            raise RateLimitExceeded()
        return count


def rate_limit_identity(wallet: str, has_wallet: bool, client_ip: str) -> str:
    return wallet if has_wallet else (client_ip or "0.0.0.0")

"""Runtime settings, read once from the environment in the app factory."""

from __future__ import annotations

import os
from dataclasses import dataclass, field


# Max events per (identity, action) inside one 60s window.
DEFAULT_RATE_LIMITS: dict[str, int] = {
    "mint_click": 20,
    "collection_view": 60,
    "wallet_connect": 10,
    "page_view": 100,
    "mint_success": 100,
}
DEFAULT_RATE_LIMIT = 100


def _is_production() -> bool:
    return bool(os.getenv("RENDER")) or os.getenv("FLASK_ENV") == "production"


def _rate_limits_from_env() -> dict[str, int]:
    limits = dict(DEFAULT_RATE_LIMITS)
    for action in list(limits):
        raw = os.getenv(f"RATE_LIMIT_{action.upper()}")
        if raw:
            limits[action] = int(raw)
    return limits


@dataclass
class Settings:
    redis_url: str = "redis://localhost:6379/0"
    chain_rpc_url: str = ""
    chain_rpc_timeout: float = 5.0
    rate_limits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    default_rate_limit: int = DEFAULT_RATE_LIMIT
    rate_limit_window_seconds: int = 60
    rate_limit_storage_url: str = "memory://"
    track_ip_limits: str = "600 per minute"
    cleanup_probability: float = 0.01
    daily_stats_retention_days: int = 90
    admin_api_key: str = ""
    cors_origins: str = "*"
    production: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            chain_rpc_url=(os.getenv("CHAIN_RPC_URL") or os.getenv("BASE_RPC_URL") or "").strip(),
            chain_rpc_timeout=float(os.getenv("CHAIN_RPC_TIMEOUT", "5")),
            rate_limits=_rate_limits_from_env(),
            default_rate_limit=int(os.getenv("RATE_LIMIT_DEFAULT", DEFAULT_RATE_LIMIT)),
            rate_limit_storage_url=os.getenv("RATE_LIMIT_STORAGE_URL", "memory://"),
            track_ip_limits=os.getenv("TRACK_IP_LIMITS", "600 per minute"),
            cleanup_probability=float(os.getenv("CLEANUP_PROBABILITY", "0.01")),
            daily_stats_retention_days=int(os.getenv("DAILY_STATS_RETENTION_DAYS", "90")),
            admin_api_key=(os.getenv("ADMIN_ANALYTICS_KEY") or os.getenv("ADMIN_API_KEY") or "").strip(),
            cors_origins=os.getenv("CORS_ORIGINS", "*"),
            production=_is_production(),
        )

    def limit_for(self, action: str) -> int:
        return int(self.rate_limits.get(action, self.default_rate_limit))

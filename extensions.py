"""Per-app service container and request helpers.

Clients are built once in `create_app` and hung off `app.extensions`;
blueprints look them up through `services()`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from flask import current_app, request

from aggregation import EventProcessor
from config import Settings
from store import RedisStore


EXTENSION_KEY = "mint_analytics"


@dataclass
class Services:
    settings: Settings
    store: RedisStore
    processor: EventProcessor
    clock: Callable[[], datetime]


def services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def get_client_ip() -> str:
    """Return the best-effort client IP.

    After ProxyFix, request.access_route[0] should be the real client IP.
    Falls back to request.remote_addr for local development.
    """
    if request.access_route:
        return request.access_route[0]
    return request.remote_addr or "0.0.0.0"

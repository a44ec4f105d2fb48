"""Event model and validation for the track endpoint."""

from __future__ import annotations

import math
import secrets
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum

from errors import InvalidEventType, ValidationError


ANONYMOUS = "anonymous"


class EventType(str, Enum):
    PAGE_VIEW = "page_view"
    WALLET_CONNECT = "wallet_connect"
    COLLECTION_VIEW = "collection_view"
    MINT_CLICK = "mint_click"
    MINT_ATTEMPT = "mint_attempt"
    TX_SENT = "tx_sent"
    MINT_SUCCESS = "mint_success"
    MINT_FAILURE = "mint_failure"
    GALLERY_VIEW = "gallery_view"
    CLICK = "click"


VALID_EVENTS: list[str] = [t.value for t in EventType]

# Ordered; conversion is read between neighbours.
FUNNEL_STEPS: list[EventType] = [
    EventType.PAGE_VIEW,
    EventType.WALLET_CONNECT,
    EventType.COLLECTION_VIEW,
    EventType.MINT_CLICK,
    EventType.TX_SENT,
    EventType.MINT_SUCCESS,
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_date(now: datetime) -> str:
    return now.date().isoformat()


def previous_date(day: str) -> str:
    return (date.fromisoformat(day) - timedelta(days=1)).isoformat()


def iso_week(now: datetime) -> str:
    year, week, _ = now.date().isocalendar()
    return f"{year}-W{week:02d}"


def normalize_wallet(wallet) -> str:
    return (wallet or "").strip().lower() if isinstance(wallet, str) else ""


def _to_amount(value) -> float:
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


def _text_or_none(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


@dataclass
class Event:
    type: EventType
    wallet: str = ANONYMOUS
    collection: str | None = None
    tx_hash: str | None = None
    price: float = 0.0
    gas: float = 0.0
    referrer: str = "direct"
    campaign: str | None = None
    device: str = "unknown"
    page: str | None = None
    metadata: dict = field(default_factory=dict)
    timestamp: int = 0

    @property
    def has_wallet(self) -> bool:
        return bool(self.wallet) and self.wallet != ANONYMOUS

    @property
    def is_funnel_step(self) -> bool:
        return self.type in FUNNEL_STEPS


def new_event_id(timestamp: int) -> str:
    return f"{timestamp}-{secrets.token_hex(3)}"


def validate_event(payload, now: datetime | None = None) -> Event:
    """Build an Event from a raw request body.

    Only `type` is required. Everything else falls back to a default so
    a sparse client payload still counts.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    raw_type = payload.get("type")
    try:
        event_type = EventType(raw_type)
    except ValueError:
        raise InvalidEventType(f"Invalid event type. Valid: {', '.join(VALID_EVENTS)}") from None

    now = now or utc_now()
    metadata = payload.get("metadata")
    tx_hash = payload.get("txHash")

    return Event(
        type=event_type,
        wallet=normalize_wallet(payload.get("wallet")) or ANONYMOUS,
        collection=_text_or_none(payload.get("collection")),
        tx_hash=tx_hash.strip().lower() if isinstance(tx_hash, str) and tx_hash.strip() else None,
        price=_to_amount(payload.get("price")),
        gas=_to_amount(payload.get("gas")),
        referrer=_text_or_none(payload.get("referrer")) or "direct",
        campaign=_text_or_none(payload.get("campaign")),
        device=_text_or_none(payload.get("device")) or "unknown",
        page=_text_or_none(payload.get("page")),
        metadata=metadata if isinstance(metadata, dict) else {},
        timestamp=int(now.timestamp() * 1000),
    )

"""Mint transaction verification over plain JSON-RPC.

Verification is best-effort and fails open: a receipt we cannot fetch is
treated as valid. Only a receipt that positively contradicts the claim
rejects the mint.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from urllib import request as urlrequest


logger = logging.getLogger(__name__)

STATUS_CONFIRMED = "confirmed"
STATUS_UNVERIFIED = "unverified"
STATUS_REJECTED = "rejected"

# keccak256 event signatures
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TRANSFER_SINGLE_TOPIC = "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62"
TRANSFER_BATCH_TOPIC = "0x4a39dc06d4c0dbc64b70af90fd698a233a518aa5d07e595d983b8c0526c8f7fb"

# Topic index holding the recipient for each signature.
RECIPIENT_TOPIC_INDEX = {
    TRANSFER_TOPIC: 2,
    TRANSFER_SINGLE_TOPIC: 3,
    TRANSFER_BATCH_TOPIC: 3,
}


def _rpc_post(url: str, method: str, params=None, timeout=5):
    params = params or []
    payload = json.dumps({"jsonrpc": "2.0", "id": 1, "method": method, "params": params}).encode("utf-8")
    req = urlrequest.Request(url, data=payload, headers={"Content-Type": "application/json"})
    with urlrequest.urlopen(req, timeout=timeout) as resp:
        data = json.loads(resp.read().decode("utf-8"))
    if "error" in data:
        raise RuntimeError(data["error"])
    return data.get("result")


def _hex_to_int(x):
    if x is None:
        return 0
    if isinstance(x, int):
        return x
    return int(x, 16)


def _normalize_addr(a: str) -> str:
    return (a or "").strip().lower()


def pad_topic(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte log topic."""
    return "0x" + _normalize_addr(address)[2:].rjust(64, "0")


@dataclass
class TransactionOutcome:
    status: int
    sender: str
    logs: list[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    def recipients(self) -> set[str]:
        """Recipient topics of every recognised NFT transfer log."""
        out = set()
        for entry in self.logs:
            topics = [str(t).lower() for t in (entry.get("topics") or [])]
            if not topics:
                continue
            idx = RECIPIENT_TOPIC_INDEX.get(topics[0])
            if idx is not None and len(topics) > idx:
                out.add(topics[idx])
        return out


class ChainClient:
    def __init__(self, rpc_url: str, timeout: float = 5.0):
        self.rpc_url = rpc_url
        self.timeout = timeout

    def get_transaction_outcome(self, tx_hash: str) -> TransactionOutcome | None:
        receipt = _rpc_post(self.rpc_url, "eth_getTransactionReceipt", [tx_hash], timeout=self.timeout)
        if not receipt or receipt.get("status") is None:
            return None
        return TransactionOutcome(
            status=_hex_to_int(receipt.get("status")),
            sender=_normalize_addr(receipt.get("from")),
            logs=receipt.get("logs") or [],
        )


class ChainVerifier:
    def __init__(self, client: ChainClient | None):
        self.client = client

    def verify(self, tx_hash: str, claimed_wallet: str) -> tuple[str, str]:
        """Returns (status, reason). status in {'confirmed','unverified','rejected'}."""
        if self.client is None or not getattr(self.client, "rpc_url", True):
            return (STATUS_UNVERIFIED, "RPC not configured")
        wallet = _normalize_addr(claimed_wallet)
        try:
            outcome = self.client.get_transaction_outcome(tx_hash)
        except Exception as e:
            logger.info("Receipt lookup failed for %s: %s", tx_hash, e)
            return (STATUS_UNVERIFIED, f"Verification error: {e}")
        if outcome is None:
            return (STATUS_UNVERIFIED, "Receipt not available yet")
        if not outcome.succeeded:
            return (STATUS_REJECTED, "Transaction failed")
        if outcome.sender != wallet:
            return (STATUS_REJECTED, "Sender mismatch")
        if pad_topic(wallet) not in outcome.recipients():
            return (STATUS_REJECTED, "No transfer to wallet")
        return (STATUS_CONFIRMED, "Verified mint transfer")

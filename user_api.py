"""Wallet and collection read APIs.

Routes:
- GET /api/user?wallet=0x...
- GET /api/collections/<slug>
"""

import re

from flask import Blueprint, current_app, jsonify, request

import queries
from events import normalize_wallet
from extensions import services


user_api = Blueprint("user_api", __name__)

_WALLET_RE = re.compile(r"^0x[a-f0-9]{40}$")


def _is_valid_wallet(wallet: str) -> bool:
    return bool(_WALLET_RE.match(wallet or ""))


@user_api.get("/api/user")
def get_user():
    wallet = normalize_wallet(request.args.get("wallet", ""))
    if not _is_valid_wallet(wallet):
        return jsonify({"success": False, "error": "Invalid wallet address"}), 400

    svc = services()
    try:
        data = queries.wallet_summary(svc.store, wallet, svc.clock())
    except Exception:
        current_app.logger.exception("User stats error")
        return jsonify({"success": False, "error": "Failed to fetch user stats"}), 500
    return jsonify(data)


@user_api.get("/api/collections/<slug>")
def get_collection(slug: str):
    try:
        data = queries.collection_summary(services().store, slug.strip())
    except Exception:
        current_app.logger.exception("Collection stats error")
        return jsonify({"success": False, "error": "Failed to fetch collection stats"}), 500
    return jsonify(data)

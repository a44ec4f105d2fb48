"""Admin analytics API over the tracked aggregates.

GET /api/admin/analytics?action=overview|user|collection|cohort|daily|retention&target=...

Auth is the `X-Admin-Key` header; query-string keys are not accepted.
"""

from __future__ import annotations

import re
import secrets
from datetime import date

from flask import Blueprint, current_app, jsonify, request

import queries
from events import normalize_wallet
from extensions import services


admin_analytics = Blueprint("admin_analytics", __name__)

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _admin_ok(req) -> bool:
    key = req.headers.get("X-Admin-Key", "")
    expected = services().settings.admin_api_key
    return bool(expected) and secrets.compare_digest(key, expected)


def _valid_date(value: str) -> bool:
    if not _DATE_RE.match(value or ""):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


@admin_analytics.get("/api/admin/analytics")
def api_admin_analytics():
    if not _admin_ok(request):
        return jsonify({"success": False, "error": "unauthorized"}), 403

    store = services().store
    action = (request.args.get("action") or "overview").strip()
    target = (request.args.get("target") or "").strip()

    try:
        if action == "overview":
            return jsonify(queries.overview(store))
        if action == "user" and target:
            return jsonify(queries.wallet_detail(store, normalize_wallet(target)))
        if action == "collection" and target:
            return jsonify(queries.collection_summary(store, target))
        if action in ("cohort", "daily", "retention") and target:
            if not _valid_date(target):
                return jsonify({"success": False, "error": "target must be a YYYY-MM-DD date"}), 400
            handler = {"cohort": queries.cohort, "daily": queries.daily, "retention": queries.retention}[action]
            return jsonify(handler(store, target))
    except Exception:
        current_app.logger.exception("Admin analytics error")
        return jsonify({"success": False, "error": "Failed to fetch admin data"}), 500

    return jsonify({
        "success": False,
        "error": "Invalid action. Use: overview, user, collection, cohort, daily, retention",
    }), 400

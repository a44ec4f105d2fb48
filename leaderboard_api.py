"""Public leaderboard + funnel API.

GET /api/leaderboard?type=mints&period=all_time&limit=10&collection=slug
"""

from flask import Blueprint, current_app, jsonify, request

import queries
from extensions import services


leaderboard_api = Blueprint("leaderboard_api", __name__)


@leaderboard_api.get("/api/leaderboard")
def get_leaderboard():
    svc = services()
    try:
        limit = int(request.args.get("limit") or 10)
    except ValueError:
        limit = 10
    collection = (request.args.get("collection") or "").strip() or None

    try:
        data = queries.leaderboard_summary(
            svc.store,
            svc.clock(),
            kind=request.args.get("type", "mints"),
            period=request.args.get("period", "all_time"),
            limit=limit,
            collection=collection,
        )
    except Exception:
        current_app.logger.exception("Leaderboard error")
        return jsonify({"success": False, "error": "Failed to fetch analytics"}), 500

    return jsonify(data)

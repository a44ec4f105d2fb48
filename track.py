"""Event ingestion API.

Routes:
- POST /track
- POST /api/track

The body is a single event: {type, wallet?, collection?, txHash?, price?,
gas?, referrer?, campaign?, device?, page?, metadata?}.
"""

from flask import Blueprint, current_app, jsonify, request

from errors import StoreFailure, TrackingError
from extensions import get_client_ip, services


track_api = Blueprint("track_api", __name__)


@track_api.route("/track", methods=["POST", "OPTIONS"])
@track_api.route("/api/track", methods=["POST", "OPTIONS"])
def track_event():
    if request.method == "OPTIONS":
        return "", 200

    data = request.get_json(silent=True)
    try:
        result = services().processor.track(data, client_ip=get_client_ip())
    except StoreFailure as e:
        current_app.logger.exception("Track batch failed")
        return jsonify(e.to_dict()), e.status_code
    except TrackingError as e:
        if e.status_code >= 500:
            current_app.logger.exception("Track error")
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Track error")
        return jsonify({"success": False, "error": "Failed to track event"}), 500

    return jsonify(result.to_dict())

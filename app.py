from dotenv import load_dotenv
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from werkzeug.middleware.proxy_fix import ProxyFix

from admin_analytics import admin_analytics
from aggregation import EventProcessor
from chain import ChainClient, ChainVerifier
from cleanup import CleanupSweeper
from config import Settings
from events import utc_now
from extensions import EXTENSION_KEY, Services, get_client_ip
from leaderboard_api import leaderboard_api
from rate_limit import RateLimiter
from store import RedisStore
from track import track_api
from user_api import user_api


def create_app(settings=None, store=None, chain_client=None, clock=None, rng=None):
    """Build the Flask app with its clients.

    Everything stateful (Redis, RPC client, clock) is constructed here and
    handed to the processor; tests pass their own.
    """
    load_dotenv()
    settings = settings or Settings.from_env()
    clock = clock or utc_now

    app = Flask(__name__)

    # -------------------------------
    # Client IP resolution
    # -------------------------------
    # Behind a PaaS edge proxy request.remote_addr is the proxy, which would
    # collapse every anonymous client into one rate-limit identity.
    if settings.production:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    CORS(app, origins=settings.cors_origins, supports_credentials=True)

    store = store or RedisStore.from_url(settings.redis_url)
    if chain_client is None and settings.chain_rpc_url:
        chain_client = ChainClient(settings.chain_rpc_url, timeout=settings.chain_rpc_timeout)

    sweeper = CleanupSweeper(store, settings.daily_stats_retention_days, clock=clock)
    processor_kwargs = {}
    if rng is not None:
        processor_kwargs["rng"] = rng
    processor = EventProcessor(
        store,
        settings,
        verifier=ChainVerifier(chain_client),
        rate_limiter=RateLimiter(store, settings),
        sweeper=sweeper,
        clock=clock,
        **processor_kwargs,
    )
    app.extensions[EXTENSION_KEY] = Services(settings=settings, store=store, processor=processor, clock=clock)

    # Coarse per-IP ceiling on ingestion; per-wallet/per-action limits live in RateLimiter.
    # Set RATE_LIMIT_STORAGE_URL to a Redis URL for multi-instance correctness.
    limiter = Limiter(
        get_client_ip,
        app=app,
        storage_uri=settings.rate_limit_storage_url,
    )
    limiter.limit(settings.track_ip_limits)(track_api)

    app.register_blueprint(track_api)
    app.register_blueprint(leaderboard_api)
    app.register_blueprint(user_api)
    app.register_blueprint(admin_analytics)

    @app.errorhandler(405)
    def _method_not_allowed(_e):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def _too_many_requests(_e):
        return jsonify({"success": False, "error": "Rate limit exceeded"}), 429

    @app.after_request
    def add_default_headers(resp):
        if request.path.startswith("/api/leaderboard"):
            resp.headers.setdefault("Cache-Control", "public, max-age=30")
        else:
            # avoid caching per-wallet and ingestion responses
            resp.headers.setdefault("Cache-Control", "no-store")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        return resp

    return app


if __name__ == '__main__':
    import os

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'
    settings = app.extensions[EXTENSION_KEY].settings

    print("=" * 60)
    print("Mint analytics ingestion")
    print("=" * 60)
    print(f"Track endpoint: http://localhost:{port}/track")
    print(f"Leaderboard: http://localhost:{port}/api/leaderboard")
    print(f"Chain RPC: {settings.chain_rpc_url or 'not configured (verification fails open)'}")
    print("=" * 60)
    app.run(host='0.0.0.0', port=port, debug=debug)

"""HTTP + socket surface and process bootstrap.

Routes:
    GET /healthz        plain "ok" for load balancers
    GET /api/health     uptime + pair count + feed state
    GET /api/pairs      subscription info
    GET /api/snapshot   current projection (same payload the socket pushes)
    GET /api/alerts     most recent alert transitions
    GET /metrics        Prometheus text exposition
"""
import logging
import time
import uuid
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO

from .config import Settings
from .feed import KrakenFeed, resolve_pairs
from .logging_config import REQUEST_ID_CTX, log_config, setup_logging
from .metrics import render_monitor_metrics
from .monitor import Monitor, PeriodicTask

logger = logging.getLogger(__name__)


def create_app(monitor: Monitor, feed: Optional[KrakenFeed] = None):
    """Build the Flask app and its SocketIO wrapper around a Monitor."""
    settings = monitor.settings
    app = Flask(__name__)
    CORS(app, resources={r"/*": {"origins": "*"}})
    socketio = SocketIO(app, cors_allowed_origins="*", async_mode="threading")
    startup_time = time.time()
    app.extensions["volpulse.monitor"] = monitor

    @app.before_request
    def _bind_request_id():
        REQUEST_ID_CTX.set(request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])

    @app.route("/healthz")
    def healthz():
        return Response("ok", mimetype="text/plain")

    @app.route("/api/health")
    def api_health():
        return jsonify({
            "status": "ok",
            "uptime_seconds": round(time.time() - startup_time, 2),
            "pairs_tracked": len(monitor.store),
            "feed_connected": bool(feed and feed.connected),
        })

    @app.route("/api/pairs")
    def api_pairs():
        return jsonify({
            "mode": "auto" if settings.auto_discover else "env",
            "quote": settings.quote,
            "total_discovered": monitor.discovered_total,
            "subscribed": len(monitor.pairs),
            "pairs": monitor.pairs,
        })

    @app.route("/api/snapshot")
    def api_snapshot():
        return jsonify(monitor.snapshot())

    @app.route("/api/alerts")
    def api_alerts():
        try:
            limit = max(1, min(200, int(request.args.get("limit", 50))))
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        return jsonify({"alerts": monitor.recent_alert_dicts(limit)})

    @app.route("/metrics")
    def metrics_prom():
        return Response(render_monitor_metrics(monitor.stats_snapshot()), mimetype="text/plain; version=0.0.4")

    @socketio.on("connect")
    def _on_connect():
        socketio.emit("hello", {"ok": True, "ts": int(time.time() * 1000)}, to=request.sid)

    return app, socketio


def start_background(monitor: Monitor, socketio: SocketIO, feed: Optional[KrakenFeed]) -> list:
    settings = monitor.settings
    tasks = [
        PeriodicTask("digest", settings.digest_interval_sec, monitor.run_digest),
        PeriodicTask("snapshot-push", settings.snapshot_push_sec,
                     lambda: socketio.emit("snapshot", monitor.snapshot())),
    ]
    for t in tasks:
        t.start()
    if feed is not None:
        feed.start()
    return tasks


def main(argv=None):
    load_dotenv()
    setup_logging()
    settings = Settings.from_env()
    log_config(settings)

    monitor = Monitor(settings)
    pairs, total = resolve_pairs(settings)
    monitor.set_pairs(pairs, discovered_total=total)

    feed = KrakenFeed.from_settings(settings, pairs, monitor.ingest)
    app, socketio = create_app(monitor, feed)
    start_background(monitor, socketio, feed)

    logger.info("Server listening on :%d", settings.port)
    socketio.run(app, host=settings.host, port=settings.port, allow_unsafe_werkzeug=True)


if __name__ == "__main__":
    main()

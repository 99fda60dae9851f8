"""
HTTP boundary — Flask application for media posts.

The app owns one ingestion pool sized by the pipeline config. Routes get
the pool, the store and the topic check from ``app.config``.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from flask import Flask, jsonify, request

from ..config.loader import PipelineConfig, load_config
from ..media.orchestrator import IngestionOrchestrator
from ..media.pool import IngestionPool
from ..observability.metrics import MetricsRegistry, metrics as default_metrics
from .routes_core import core_bp
from .routes_posts import posts_bp
from .routes_uploads import uploads_bp

logger = logging.getLogger(__name__)

TopicCheck = Callable[[int], bool]


def _any_topic(topic_id: int) -> bool:
    return topic_id > 0


def create_app(
    config: Optional[PipelineConfig] = None,
    topic_exists: Optional[TopicCheck] = None,
    registry: Optional[MetricsRegistry] = None,
) -> Flask:
    """Create the Flask application."""
    config = config or load_config()
    registry = registry or default_metrics
    orchestrator = IngestionOrchestrator(config, registry=registry)
    orchestrator.store.ensure_structure()

    app = Flask(__name__)
    app.config["PIPELINE_CONFIG"] = config
    app.config["ORCHESTRATOR"] = orchestrator
    app.config["INGESTION_POOL"] = IngestionPool(orchestrator, config.workers)
    app.config["TOPIC_EXISTS"] = topic_exists or _any_topic
    app.config["METRICS"] = registry

    # Raw request cap; size control happens after upload
    app.config["MAX_CONTENT_LENGTH"] = config.max_upload_bytes

    # ── Register Blueprints ───────────────────────────────────────
    app.register_blueprint(core_bp)                                          # /api/health, /api/metrics
    app.register_blueprint(posts_bp, url_prefix="/api/posts")                # /api/posts/*
    app.register_blueprint(uploads_bp, url_prefix=orchestrator.store.public_prefix)  # stored files

    # ── Error Handlers ────────────────────────────────────────────

    @app.errorhandler(413)
    def request_entity_too_large(e):
        """Return JSON for 413 so API clients get a parseable response."""
        max_mb = app.config.get("MAX_CONTENT_LENGTH", 0) / (1024 * 1024)
        return jsonify({
            "success": False,
            "code": "request_too_large",
            "error": f"File too large (max {max_mb:.0f} MB)",
        }), 413

    @app.errorhandler(500)
    def internal_server_error(e):
        """Catch-all: JSON for any unhandled 500, details stay in the log."""
        original = getattr(e, "original_exception", None) or e
        logger.error(
            f"Unhandled 500 on {request.method} {request.path}: {original}",
            exc_info=original if isinstance(original, BaseException) else None,
        )
        return jsonify({
            "success": False,
            "code": "internal_error",
            "error": "Internal server error",
        }), 500

    # ── Request Logging ───────────────────────────────────────────

    @app.before_request
    def log_request_start():
        request.environ["postmedia.start_time"] = time.time()

    @app.after_request
    def log_request_end(response):
        """Log request with duration for API endpoints."""
        started = request.environ.get("postmedia.start_time")
        duration_ms = int((time.time() - started) * 1000) if started else 0

        if request.path.startswith("/api/"):
            log_fn = logger.debug if request.path == "/api/health" else logger.info
            log_fn(
                f"{request.method} {request.path} → {response.status_code} ({duration_ms}ms)"
            )
        return response

    logger.info(
        f"Media server initialized (upload_root={config.upload_root}, workers={config.workers})"
    )
    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 5060,
    debug: bool = False,
    config: Optional[PipelineConfig] = None,
) -> None:
    """
    Run the media server.

    Args:
        host: Bind address (default: localhost only)
        port: Port to run on
        debug: Enable Flask debug mode
        config: Pipeline config (default: from the environment)
    """
    import atexit

    app = create_app(config)
    pool: IngestionPool = app.config["INGESTION_POOL"]
    atexit.register(pool.shutdown, wait=False)

    url = f"http://{host}:{port}"
    logger.info(f"Serving media API at {url}")
    app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)

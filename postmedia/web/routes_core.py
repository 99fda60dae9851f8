"""
Service endpoints.

Blueprint: core_bp
Routes:
    /api/health
    /api/metrics   (Prometheus text, ?format=json for JSON)
"""

from __future__ import annotations

import os
import shutil

from flask import Blueprint, Response, current_app, jsonify, request

core_bp = Blueprint("core", __name__)


def _writable(path) -> bool:
    # Before the first ingestion the root may not exist yet
    while not path.exists() and path != path.parent:
        path = path.parent
    return os.access(path, os.W_OK)


@core_bp.route("/api/health")
def api_health():
    """Report encoder availability and whether uploads can be stored."""
    config = current_app.config["PIPELINE_CONFIG"]
    checks = {
        "ffmpeg": shutil.which(config.ffmpeg_bin) is not None,
        "ffprobe": shutil.which(config.ffprobe_bin) is not None,
        "upload_root_writable": _writable(config.upload_root.resolve()),
    }
    healthy = all(checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "workers": config.workers,
    }), 200 if healthy else 503


@core_bp.route("/api/metrics")
def api_metrics():
    registry = current_app.config["METRICS"]
    if request.args.get("format") == "json":
        return jsonify(registry.export_json())
    return Response(registry.export_prometheus(), mimetype="text/plain; version=0.0.4")

"""
Stored media files.

Blueprint: uploads_bp
Prefix: the configured public prefix (default /uploads)
Routes:
    /uploads/images/<name>
    /uploads/videos/<name>
    /uploads/thumbnails/<name>
"""

from __future__ import annotations

from flask import Blueprint, abort, current_app, send_from_directory

uploads_bp = Blueprint("uploads", __name__)

PUBLIC_DIRS = ("images", "videos", "thumbnails")


@uploads_bp.route("/<folder>/<path:name>")
def serve_upload(folder: str, name: str):
    """Serve a finished asset or thumbnail. The workspace area is never exposed."""
    if folder not in PUBLIC_DIRS:
        abort(404)
    store = current_app.config["ORCHESTRATOR"].store
    return send_from_directory(store.root.resolve() / folder, name)

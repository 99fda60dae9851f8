"""
Media posts API.

Blueprint: posts_bp
Prefix: /api/posts
Routes:
    /api/posts/media   (POST — create a post with one image or video)
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Optional

from flask import Blueprint, current_app, jsonify, request

from ..media.models import RawUpload
from ..media.pool import IngestionPool

logger = logging.getLogger(__name__)

posts_bp = Blueprint("posts", __name__)


def _pool() -> IngestionPool:
    return current_app.config["INGESTION_POOL"]


def _user_id() -> Optional[int]:
    raw = request.headers.get("X-User-Id", "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def _topic_id() -> Optional[int]:
    raw = (request.form.get("topicId") or "").strip()
    try:
        return int(raw)
    except ValueError:
        return None


@posts_bp.route("/media", methods=["POST"])
def api_create_media_post():
    """
    Create a post carrying one uploaded image or video.

    Accepts multipart/form-data:
        file: The media file (required)
        description: Optional post text
        topicId: Topic the post belongs to (required)

    The upload is normalized before anything is stored: images and
    videos are brought under the size budget, videos are cut to the
    maximum duration, and a thumbnail is generated.
    """
    # ── Validate request ──

    user_id = _user_id()
    if user_id is None:
        return jsonify({"success": False, "error": "Authentication required"}), 401

    if "file" not in request.files:
        return jsonify({"success": False, "error": "No file provided"}), 400

    file = request.files["file"]
    if not file.filename:
        return jsonify({"success": False, "error": "Empty filename"}), 400

    topic_id = _topic_id()
    if topic_id is None:
        return jsonify({"success": False, "error": "Invalid topic selected"}), 400
    if not current_app.config["TOPIC_EXISTS"](topic_id):
        return jsonify({"success": False, "error": "Topic not found"}), 404

    description = request.form.get("description", "")

    mime_type = (
        file.content_type
        or mimetypes.guess_type(file.filename)[0]
        or "application/octet-stream"
    )

    # ── Normalize ──

    upload = RawUpload.from_stream(
        file.stream,
        mime_type,
        filename=file.filename,
        # Size of this part only; clients rarely send one
        declared_size=file.content_length or None,
    )
    config = current_app.config["PIPELINE_CONFIG"]
    outcome = _pool().ingest(upload, timeout=config.ingest_timeout)

    if not outcome.ok:
        error = outcome.error
        return jsonify({"success": False, **error.to_dict()}), error.http_status

    asset = outcome.asset
    logger.info(
        f"Media post created: user={user_id}, topic={topic_id}, "
        f"{asset.media_type.value} {asset.storage_path}"
    )
    return jsonify({
        "success": True,
        "userId": user_id,
        "topicId": topic_id,
        "description": description,
        "media": asset.to_dict(),
    }), 201

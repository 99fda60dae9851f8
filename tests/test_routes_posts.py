"""
Tests for the HTTP boundary: media post creation, health, metrics and
stored file serving.
"""

from __future__ import annotations

import io
import os
from pathlib import Path

import pytest

pytest.importorskip("flask")

from postmedia.policy.models import MediaPolicy  # noqa: E402


KNOWN_TOPICS = {1, 7}


@pytest.fixture
def app(pipeline_config, fake_ffmpeg, registry):
    """Flask test app with a temp upload root and the encoder faked."""
    from postmedia.web.server import create_app

    app = create_app(pipeline_config, topic_exists=lambda t: t in KNOWN_TOPICS, registry=registry)
    app.config["TESTING"] = True
    app.config["ORCHESTRATOR"].ffmpeg = fake_ffmpeg
    yield app
    app.config["INGESTION_POOL"].shutdown()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _png(width: int = 640, height: int = 480) -> bytes:
    from PIL import Image

    buf = io.BytesIO()
    Image.new("RGB", (width, height), (240, 200, 10)).save(buf, format="PNG")
    return buf.getvalue()


def _post(client, data: bytes, filename: str, content_type: str, *, user="42", topic="1", **fields):
    form = {"file": (io.BytesIO(data), filename, content_type), **fields}
    if topic is not None:
        form["topicId"] = topic
    headers = {"X-User-Id": user} if user is not None else {}
    return client.post(
        "/api/posts/media",
        data=form,
        headers=headers,
        content_type="multipart/form-data",
    )


# ═══════════════════════════════════════════════════════════════════
# POST /api/posts/media
# ═══════════════════════════════════════════════════════════════════


class TestCreateMediaPost:

    def test_image_post(self, client, upload_root):
        resp = _post(client, _png(), "photo.png", "image/png", description="Sunset")

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["success"] is True
        assert data["userId"] == 42
        assert data["topicId"] == 1
        assert data["description"] == "Sunset"
        media = data["media"]
        assert media["mediaType"] == "image"
        assert media["storagePath"].startswith("/uploads/images/")
        assert media["thumbnailPath"].startswith("/uploads/thumbnails/thumbnail-")
        assert media["durationSeconds"] is None
        assert (upload_root / media["storagePath"].removeprefix("/uploads/")).exists()

    def test_video_post(self, client, fake_ffmpeg):
        fake_ffmpeg.default_duration = 8.0
        resp = _post(client, b"\x00" * 4000, "clip.mp4", "video/mp4")

        assert resp.status_code == 201
        media = resp.get_json()["media"]
        assert media["mediaType"] == "video"
        assert media["durationSeconds"] == 8.0
        assert media["storagePath"].startswith("/uploads/videos/")

    def test_description_optional(self, client):
        resp = _post(client, _png(), "photo.png", "image/png")
        assert resp.status_code == 201
        assert resp.get_json()["description"] == ""

    def test_requires_user(self, client):
        resp = _post(client, _png(), "photo.png", "image/png", user=None)
        assert resp.status_code == 401

    def test_missing_file(self, client):
        resp = client.post(
            "/api/posts/media",
            data={"topicId": "1"},
            headers={"X-User-Id": "42"},
            content_type="multipart/form-data",
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "No file provided"

    @pytest.mark.parametrize("topic", [None, "", "abc"])
    def test_invalid_topic(self, client, topic):
        resp = _post(client, _png(), "photo.png", "image/png", topic=topic)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid topic selected"

    def test_unknown_topic(self, client, upload_root):
        resp = _post(client, _png(), "photo.png", "image/png", topic="99")
        assert resp.status_code == 404
        assert list((upload_root / "images").iterdir()) == []

    def test_unsupported_type(self, client):
        resp = _post(client, b"%PDF-1.7", "doc.pdf", "application/pdf")

        assert resp.status_code == 415
        data = resp.get_json()
        assert data["success"] is False
        assert data["code"] == "unsupported_media_type"
        assert "allowed" in data["error"]

    def test_undecodable_video(self, client, fake_ffmpeg):
        fake_ffmpeg.probe_fails = True
        resp = _post(client, b"just text", "notes.txt", "video/mp4")
        assert resp.status_code == 422
        assert resp.get_json()["code"] == "probe_error"

    def test_budget_exceeded(self, client, fake_ffmpeg):
        fake_ffmpeg.default_output_size = 3 * 1024 * 1024
        resp = _post(client, b"\x00" * (3 * 1024 * 1024), "big.mp4", "video/mp4")

        assert resp.status_code == 422
        data = resp.get_json()
        assert data["code"] == "compression_budget_exceeded"
        assert "2MB" in data["error"]

    def test_storage_error_is_generic(self, app, client, monkeypatch):
        from postmedia.media.errors import StorageError

        def broken(*args, **kwargs):
            raise StorageError("/srv/uploads/images: Permission denied")

        monkeypatch.setattr(app.config["ORCHESTRATOR"].store, "promote", broken)
        resp = _post(client, _png(), "photo.png", "image/png")

        assert resp.status_code == 500
        data = resp.get_json()
        assert data["code"] == "storage_error"
        assert "Permission denied" not in data["error"]

    def test_declared_size_is_not_body_length(self, app, client, monkeypatch):
        orchestrator = app.config["ORCHESTRATOR"]
        seen = []
        real_ingest = orchestrator.ingest

        def capture(upload, cancel=None):
            seen.append(upload.declared_size)
            return real_ingest(upload, cancel)

        monkeypatch.setattr(orchestrator, "ingest", capture)
        resp = _post(client, _png(), "photo.png", "image/png", description="x" * 5000)

        assert resp.status_code == 201
        # The test client sends no per-part Content-Length
        assert seen == [None]


class TestRequestLimits:

    def test_raw_body_over_cap(self, pipeline_config, fake_ffmpeg, registry):
        from postmedia.web.server import create_app

        pipeline_config.max_upload_bytes = 1000
        app = create_app(pipeline_config, registry=registry)
        app.config["ORCHESTRATOR"].ffmpeg = fake_ffmpeg

        resp = _post(app.test_client(), b"\x00" * 5000, "clip.mp4", "video/mp4")

        assert resp.status_code == 413
        assert resp.get_json()["success"] is False
        app.config["INGESTION_POOL"].shutdown()

    def test_policy_budget_from_config(self, pipeline_config, fake_ffmpeg, registry):
        from postmedia.web.server import create_app

        pipeline_config.policy = MediaPolicy(max_bytes=100)
        app = create_app(pipeline_config, registry=registry)
        app.config["ORCHESTRATOR"].ffmpeg = fake_ffmpeg

        noise = os.urandom(200 * 200 * 3)
        from PIL import Image

        buf = io.BytesIO()
        Image.frombytes("RGB", (200, 200), noise).save(buf, format="PNG")
        resp = _post(app.test_client(), buf.getvalue(), "photo.png", "image/png")

        assert resp.status_code == 422
        assert resp.get_json()["code"] == "compression_budget_exceeded"
        app.config["INGESTION_POOL"].shutdown()


# ═══════════════════════════════════════════════════════════════════
# Service endpoints
# ═══════════════════════════════════════════════════════════════════


class TestServiceEndpoints:

    def test_health_reports_checks(self, client):
        resp = client.get("/api/health")
        data = resp.get_json()
        assert set(data["checks"]) == {"ffmpeg", "ffprobe", "upload_root_writable"}
        assert data["checks"]["upload_root_writable"] is True
        assert resp.status_code in (200, 503)

    def test_health_degraded_without_encoder(self, app, client):
        app.config["PIPELINE_CONFIG"].ffmpeg_bin = "definitely-not-ffmpeg"
        resp = client.get("/api/health")
        assert resp.status_code == 503
        assert resp.get_json()["status"] == "degraded"

    def test_metrics_prometheus(self, client):
        _post(client, _png(), "photo.png", "image/png")
        resp = client.get("/api/metrics")
        assert resp.status_code == 200
        assert resp.mimetype == "text/plain"
        body = resp.get_data(as_text=True)
        assert "postmedia_ingest_total" in body
        assert 'outcome="ok"' in body

    def test_metrics_json(self, client):
        resp = client.get("/api/metrics?format=json")
        assert "counters" in resp.get_json()


class TestUploadsServing:

    def test_serves_stored_image_and_thumbnail(self, client):
        media = _post(client, _png(), "photo.png", "image/png").get_json()["media"]

        image = client.get(media["storagePath"])
        assert image.status_code == 200
        assert image.data[:4] == b"\x89PNG"

        thumb = client.get(media["thumbnailPath"])
        assert thumb.status_code == 200
        assert thumb.data[:3] == b"\xff\xd8\xff"

    def test_workspace_not_served(self, client, upload_root: Path):
        secret = upload_root / ".incoming" / "abc" / "source.png"
        secret.parent.mkdir(parents=True)
        secret.write_bytes(b"private")
        assert client.get("/uploads/.incoming/abc/source.png").status_code == 404

    def test_missing_file(self, client):
        assert client.get("/uploads/images/file-0-000000000.png").status_code == 404

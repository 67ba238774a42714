import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from apps.avatar_rt.backend.api.v1.endpoints import uploads
from apps.avatar_rt.backend.config import (
    API_V1_PREFIX,
    REALTIME_WS_PATH,
    UPLOAD_LIKENESS_PATH,
    UPLOAD_VOICE_PATH,
)
from apps.avatar_rt.backend.main import create_app


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as test_client:
        yield test_client


def _png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), (90, 90, 90)).save(buffer, "PNG")
    return buffer.getvalue()


def test_upload_likeness_starts_job(client):
    response = client.post(
        "/upload-likeness",
        data={"userId": "u1", "options": '{"style": "casual"}'},
        files={"image": ("face.png", _png(), "image/png")},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["message"] == "Likeness generation started"
    assert body["jobId"].startswith("likeness_u1_")
    assert body["estimatedTime"] == "2-3 minutes"


def test_upload_likeness_requires_image(client):
    response = client.post("/upload-likeness", data={"userId": "u1"})

    assert response.status_code == 400
    assert response.json() == {"error": "userId and image file required"}


def test_upload_likeness_requires_user(client):
    response = client.post(
        "/upload-likeness", files={"image": ("face.png", _png(), "image/png")}
    )
    assert response.status_code == 400


def test_upload_likeness_rejects_bad_options(client):
    response = client.post(
        "/upload-likeness",
        data={"userId": "u1", "options": "[1, 2"},
        files={"image": ("face.png", _png(), "image/png")},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "options must be valid JSON"}


def test_upload_voice_starts_job(client):
    response = client.post(
        "/upload-voice",
        data={"userId": "u1"},
        files={"audio": ("sample.wav", b"\x10\x00" * 500, "audio/wav")},
    )

    assert response.status_code == 202
    body = response.json()
    assert body["message"] == "Voice cloning started"
    assert body["jobId"].startswith("voice-clone_u1_")
    assert body["estimatedTime"] == "1-2 minutes"


def test_upload_voice_requires_audio(client):
    response = client.post("/upload-voice", data={"userId": "u1"})

    assert response.status_code == 400
    assert response.json() == {"error": "userId and audio file required"}


def test_unknown_route_returns_json_404(client):
    response = client.get("/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {"error": "Endpoint not found"}


def test_health_reports_engine_state(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["active_sessions"] == 0
    assert body["connections"]["connections"] == 0
    assert body["details"]["engine"] == "healthy"
    assert body["metrics"]["totalRequests"] == 0


def test_oversized_upload_is_rejected_before_job_starts(client, monkeypatch):
    monkeypatch.setattr(uploads, "_READ_CHUNK_BYTES", 64)
    monkeypatch.setattr(uploads, "MAX_AUDIO_UPLOAD_BYTES", 256)

    response = client.post(
        "/upload-voice",
        data={"userId": "u1"},
        files={"audio": ("sample.wav", b"\x10\x00" * 500, "audio/wav")},
    )

    assert response.status_code == 413
    assert response.json() == {"error": "audio file too large"}
    assert client.get("/api/v1/health").json()["details"]["jobs"]["total"] == 0


def test_routes_are_mounted_at_configured_paths(client):
    paths = {route.path for route in client.app.routes}

    assert f"{API_V1_PREFIX}{REALTIME_WS_PATH}" in paths
    assert f"{API_V1_PREFIX}/health" in paths
    assert {UPLOAD_LIKENESS_PATH, UPLOAD_VOICE_PATH} <= paths

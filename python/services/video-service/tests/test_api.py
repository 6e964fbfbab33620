"""End-to-end tests of the HTTP API with in-memory storage."""

import time
from urllib.parse import unquote

import pytest
from fastapi.testclient import TestClient

from app.core.manager.quota_tracker import quota_tracker
from app.core.manager.session_manager import session_manager
from app.core.manager.video_store import video_store
from app.main import app

AUTH = {
    "Authorization": "Bearer test-frontend-key",
    "X-User-Id": "user-1",
    "X-User-Name": "Garnet",
    "X-User-Avatar": "https://cdn.example/g.png",
}


@pytest.fixture
def client(fake_s3):
    with TestClient(app) as test_client:
        yield test_client


def upload(client, name="clip.mp4", body=b"v" * 1024, content_type="video/mp4", headers=AUTH):
    return client.post("/upload", files={"video": (name, body, content_type)}, headers=headers)


def wait_for_session(upload_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        session = session_manager.get_session(upload_id)
        if session is not None and session.is_terminal:
            return session
        time.sleep(0.02)
    raise AssertionError(f"Upload {upload_id} did not finish")


def upload_and_wait(client, **kwargs):
    response = upload(client, **kwargs)
    assert response.status_code == 200, response.text
    return wait_for_session(response.json()["uploadId"])


def test_upload_returns_immediately_with_progress_url(client):
    response = upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Upload started"
    assert body["progressUrl"] == f"/api/upload/progress/{body['uploadId']}"

    session = wait_for_session(body["uploadId"])
    assert session.video_id is not None


def test_upload_requires_token(client):
    response = upload(client, headers={"X-User-Id": "user-1"})
    assert response.status_code == 401


def test_upload_rejects_unknown_token(client):
    response = upload(client, headers={**AUTH, "Authorization": "Bearer wrong"})
    assert response.status_code == 403


def test_upload_requires_user_identity(client):
    response = upload(client, headers={"Authorization": "Bearer test-internal-key"})
    assert response.status_code == 401


def test_upload_without_file_is_rejected(client):
    response = client.post("/upload", data={"other": "x"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "detail": "No video file provided",
        "error_code": "VALIDATION_ERROR",
    }


def test_upload_rejects_unsupported_type(client):
    response = upload(client, name="notes.txt", content_type="text/plain")

    assert response.status_code == 415
    assert response.json()["error_code"] == "UNSUPPORTED_MEDIA_TYPE"


def test_upload_over_quota_is_rejected(client):
    quota_tracker.register_user("user-1", quota=100)
    response = upload(client, body=b"v" * 101)

    assert response.status_code == 413
    assert response.json()["error_code"] == "QUOTA_EXCEEDED"
    assert session_manager.get_all_sessions() == []


def test_uploaded_video_is_served(client, fake_s3):
    session = upload_and_wait(client, name="Boss Fight.mp4", body=b"v" * 2048)
    video_id = session.video_id

    response = client.get(f"/v/{video_id}")
    assert response.status_code == 200
    video = response.json()
    assert video["originalName"] == "Boss Fight.mp4"
    assert video["size"] == 2048
    assert video["uploader"]["username"] == "Garnet"
    assert video["shareLink"] == f"http://testserver/v/{video_id}"
    assert video["downloadCount"] == 0

    response = client.get(f"/download/{video_id}", follow_redirects=False)
    assert response.status_code == 302
    location = unquote(response.headers["location"])
    assert f"/videos/{video_id}.mp4" in location
    assert 'attachment; filename="Boss Fight.mp4"' in location
    assert client.get(f"/v/{video_id}").json()["downloadCount"] == 1

    response = client.get(f"/stream/{video_id}", follow_redirects=False)
    assert response.status_code == 302
    assert "attachment" not in unquote(response.headers["location"])

    response = client.head(f"/stream/{video_id}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "video/mp4"
    assert response.headers["content-length"] == "2048"
    assert response.headers["accept-ranges"] == "bytes"


def test_mkv_stream_is_advertised_as_mp4(client):
    session = upload_and_wait(client, name="capture.mkv", content_type="video/x-matroska")

    response = client.head(f"/stream/{session.video_id}")

    assert response.headers["content-type"] == "video/mp4"
    assert client.get(f"/v/{session.video_id}").json()["isLegacyContainer"] is True


def test_unknown_video_is_404(client):
    for path in ("/v/missing", "/download/missing", "/stream/missing"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 404
        assert response.json()["success"] is False

    assert client.post("/api/analytics/view/missing").status_code == 404


def test_unknown_upload_progress_is_404(client):
    response = client.get("/api/upload/progress/does-not-exist")
    assert response.status_code == 404


def test_clips_listing_and_analytics(client):
    first = upload_and_wait(client, name="first.mp4")
    second = upload_and_wait(client, name="second.webm", content_type="video/webm")

    response = client.get("/api/clips", headers=AUTH)
    assert response.status_code == 200
    clips = response.json()
    assert clips["total"] == 2
    assert [clip["id"] for clip in clips["clips"]] == [second.video_id, first.video_id]
    assert clips["clips"][0]["username"] == "Garnet"

    assert client.post(f"/api/analytics/view/{first.video_id}").json()["views"] == 1
    assert client.post(f"/api/analytics/view/{first.video_id}").json()["views"] == 2
    assert client.post(f"/api/analytics/share/{first.video_id}").json()["shares"] == 1


def test_clips_listing_requires_auth(client):
    assert client.get("/api/clips").status_code == 401


def test_quota_reports_caller_usage(client):
    upload_and_wait(client, body=b"v" * 1000)

    response = client.get("/api/quota", headers=AUTH)
    assert response.status_code == 200
    quota = response.json()
    assert quota["quota"] == 5 * 1024 ** 3
    assert quota["totalUploadSize"] == 1000
    assert quota["remainingQuota"] == 5 * 1024 ** 3 - 1000
    assert quota["uploadCount"] == 1
    assert quota["usagePercentage"] == 0
    assert "lastUpdated" in quota

    other = client.get("/api/quota", headers={**AUTH, "X-User-Id": "user-2"}).json()
    assert other["totalUploadSize"] == 0


def test_upload_history_lists_caller_uploads(client):
    first = upload_and_wait(client, name="first.mp4", body=b"v" * 400)
    second = upload_and_wait(client, name="second.mp4", body=b"v" * 600)

    response = client.get("/api/quota/uploads", headers=AUTH)
    assert response.status_code == 200
    history = response.json()
    assert [u["id"] for u in history["uploads"]] == [first.video_id, second.video_id]
    assert history["uploads"][0]["originalName"] == "first.mp4"
    assert history["uploads"][0]["shareLink"] == f"http://testserver/v/{first.video_id}"
    assert history["totalUploads"] == 2
    assert history["totalSize"] == 1000
    assert history["remainingQuota"] == 5 * 1024 ** 3 - 1000

    other = client.get("/api/quota/uploads", headers={**AUTH, "X-User-Id": "user-2"}).json()
    assert other == {"uploads": [], "totalUploads": 0, "totalSize": 0, "remainingQuota": 5 * 1024 ** 3}


def test_upload_history_requires_auth(client):
    assert client.get("/api/quota/uploads").status_code == 401


def test_catalog_survives_restart(fake_s3):
    with TestClient(app) as client:
        session = upload_and_wait(client, name="keep.mp4", body=b"v" * 300)

    video_store.clear()
    quota_tracker.clear()

    with TestClient(app) as client:
        video = client.get(f"/v/{session.video_id}").json()
        assert video["originalName"] == "keep.mp4"
        assert client.get("/api/quota", headers=AUTH).json()["totalUploadSize"] == 300


def test_health(client, fake_s3):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["s3Connection"] == "ok"

    fake_s3.buckets.clear()
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["s3Connection"] == "failed"

"""Tests for the upload orchestrator pipeline."""

import asyncio

import pytest
from botocore.exceptions import ClientError

from shared_schemas.video_service import ProgressEventType, UploadState
from app.core.errors import NotificationFailed, QuotaExceededError, ValidationError
from app.core.manager.progress_channel import ProgressChannel
from app.core.manager.quota_tracker import QuotaTracker
from app.core.manager.session_manager import UploadSessionManager
from app.core.manager.video_store import InMemoryVideoStore
from app.core.upload.engine import ChunkedUploadEngine
from app.core.upload.orchestrator import UploadOrchestrator
from app.models.user import User
from app.s3.client import s3_client
from app.utils.staging import StagedFile
from conftest import BUCKET, client_error, drain


class RecordingNotifier:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    async def __call__(self, record, share_link):
        self.calls.append((record.id, share_link))
        if self.error is not None:
            raise self.error
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def orchestrator(fake_s3, notifier):
    engine = ChunkedUploadEngine(
        storage=s3_client,
        bucket=BUCKET,
        chunk_size=50,
        threshold=50,
        max_concurrency=4,
        max_attempts=2,
        backoff_seconds=0,
        backoff_max_seconds=0,
    )
    return UploadOrchestrator(
        engine=engine,
        store=InMemoryVideoStore(),
        quota=QuotaTracker(default_quota=10_000),
        channel=ProgressChannel(),
        sessions=UploadSessionManager(retention_seconds=300, monitor_interval=30),
        notifier=notifier,
        shutdown_grace_seconds=5,
    )


def stage(tmp_path, name="clip.mp4", size=120, content_type="video/mp4") -> StagedFile:
    path = tmp_path / "upload_test.tmp"
    path.write_bytes(b"v" * size)
    return StagedFile(path=path, original_name=name, size=size, content_type=content_type)


async def run_to_end(orchestrator, staged, user, subscribers=1):
    session = await orchestrator.start_upload(staged, user)
    subscriptions = [orchestrator.channel.subscribe(session.upload_id) for _ in range(subscribers)]
    await asyncio.gather(*orchestrator.active_tasks)
    return session, subscriptions


async def test_successful_upload_persists_records_and_completes(orchestrator, notifier, uploader, tmp_path):
    staged = stage(tmp_path, size=120)

    session, (subscription,) = await run_to_end(orchestrator, staged, uploader)

    events = drain(subscription)
    types = [event.event_type for event in events]
    assert types[0] == ProgressEventType.CONNECTED
    assert types[-2:] == [ProgressEventType.COMPLETE, ProgressEventType.CLOSE]

    progress = [event.data for event in events if event.event_type == ProgressEventType.PROGRESS]
    uploaded = [data["bytesUploaded"] for data in progress]
    assert uploaded == sorted(uploaded)
    assert uploaded[0] == 0
    assert progress[-1]["progress"] == 100
    assert uploaded[-1] == 120

    complete = events[-2].to_payload()
    video_id = complete["id"]
    assert complete["shareLink"] == f"http://testserver/v/{video_id}"
    assert complete["downloadUrl"] == f"http://testserver/download/{video_id}"
    assert complete["size"] == 120
    assert complete["contentType"] == "video/mp4"
    assert complete["warning"] is None
    assert complete["user"] == {"username": "Garnet", "quotaUsed": 120, "quotaRemaining": 9_880}

    record = orchestrator.store.get(video_id)
    assert record.original_name == "clip.mp4"
    assert record.uploaded_by == "user-1"
    assert record.notification_sent

    quota = orchestrator.quota.get_record("user-1")
    assert quota.used == 120
    assert [upload.id for upload in quota.uploads] == [video_id]

    assert notifier.calls == [(video_id, f"http://testserver/v/{video_id}")]
    assert session.state == UploadState.COMPLETED
    assert session.video_id == video_id
    assert not staged.path.exists()


async def test_legacy_container_gets_warning(orchestrator, uploader, tmp_path):
    staged = stage(tmp_path, name="capture.mkv", size=30, content_type="video/x-matroska")

    _, (subscription,) = await run_to_end(orchestrator, staged, uploader)

    complete = drain(subscription)[-2].to_payload()
    assert complete["fileFormat"] == ".mkv"
    assert "MKV files may not play in all browsers" in complete["warning"]


async def test_failed_upload_mutates_nothing_and_reports_error(orchestrator, fake_s3, notifier, uploader, tmp_path):
    fake_s3.part_failures[2].append(client_error("AccessDenied", 403, "UploadPart"))
    staged = stage(tmp_path, size=200)

    session, subscriptions = await run_to_end(orchestrator, staged, uploader, subscribers=3)

    for subscription in subscriptions:
        events = drain(subscription)
        assert events[-2].event_type == ProgressEventType.ERROR
        assert events[-1].event_type == ProgressEventType.CLOSE
        assert events[-2].to_payload() == {
            "type": "error",
            "uploadId": session.upload_id,
            "error": "File upload failed. Please try again.",
        }

    assert len(orchestrator.store) == 0
    quota = orchestrator.quota.get_record("user-1")
    assert quota.used == 0
    assert quota.uploads == []
    assert notifier.calls == []

    assert len(fake_s3.calls_to("delete_object")) == 1
    assert session.state == UploadState.FAILED
    assert not orchestrator.channel.has_subscribers(session.upload_id)
    assert not staged.path.exists()


async def test_verbose_errors_include_details(orchestrator, fake_s3, uploader, tmp_path):
    orchestrator.verbose_errors = True
    fake_s3.failures["put_object"].append(client_error("AccessDenied", 403, "PutObject"))

    _, (subscription,) = await run_to_end(orchestrator, stage(tmp_path, size=10), uploader)

    error = drain(subscription)[-2].to_payload()
    assert "AccessDenied" in error["details"]


async def test_quota_exceeded_is_rejected_before_transfer(orchestrator, fake_s3, uploader, tmp_path):
    orchestrator.quota = QuotaTracker(default_quota=5_000_000_000)
    orchestrator.quota.register_user("user-1").used = 4_999_000_000
    staged = stage(tmp_path, size=10)
    staged.size = 2_000_000

    with pytest.raises(QuotaExceededError):
        await orchestrator.start_upload(staged, uploader)

    assert await orchestrator.quota.remaining("user-1") == 1_000_000
    assert orchestrator.sessions.get_all_sessions() == []
    assert orchestrator.active_tasks == set()
    assert fake_s3.calls == []
    assert not staged.path.exists()


async def test_failed_quota_lookup_removes_staged_file(orchestrator, fake_s3, uploader, tmp_path):
    orchestrator.quota = QuotaTracker(default_quota=10_000, strict=True, storage=s3_client, bucket=BUCKET)
    fake_s3.failures["list_objects_v2"].append(client_error("InternalError", 500, "ListObjectsV2"))
    staged = stage(tmp_path, size=10)

    with pytest.raises(ClientError):
        await orchestrator.start_upload(staged, uploader)

    assert not staged.path.exists()
    assert orchestrator.sessions.get_all_sessions() == []
    assert orchestrator.active_tasks == set()


async def test_oversized_object_metadata_is_rejected_before_transfer(orchestrator, fake_s3, tmp_path):
    user = User(id="user-1", username="Garnet", avatar="https://cdn.example/" + "a" * 1500)
    staged = stage(tmp_path, name="\u8996" * 100 + ".mp4", size=10)

    with pytest.raises(ValidationError) as exc_info:
        await orchestrator.start_upload(staged, user)

    assert exc_info.value.status_code == 400
    assert fake_s3.calls == []
    assert not staged.path.exists()
    assert orchestrator.sessions.get_all_sessions() == []


async def test_notification_sent_once_per_video(orchestrator, notifier, uploader, tmp_path):
    _, (subscription,) = await run_to_end(orchestrator, stage(tmp_path, size=10), uploader)
    video_id = drain(subscription)[-2].data["id"]
    record = orchestrator.store.get(video_id)

    assert await orchestrator.notify_once(record) is False
    assert await orchestrator.notify_once(record) is False
    assert len(notifier.calls) == 1


@pytest.mark.parametrize("error", [NotificationFailed("webhook down"), RuntimeError("client closed")])
async def test_notification_failure_does_not_fail_upload(orchestrator, uploader, tmp_path, error):
    orchestrator.notifier = RecordingNotifier(error=error)

    session, (subscription,) = await run_to_end(orchestrator, stage(tmp_path, size=10), uploader)

    assert drain(subscription)[-2].event_type == ProgressEventType.COMPLETE
    assert session.state == UploadState.COMPLETED
    assert len(orchestrator.store) == 1
    assert len(orchestrator.notifier.calls) == 1


async def test_parallel_uploads_from_one_user_are_all_counted(orchestrator, uploader, tmp_path):
    staged_files = []
    for i in range(5):
        path = tmp_path / f"upload_{i}.tmp"
        path.write_bytes(b"v" * 60)
        staged_files.append(StagedFile(path=path, original_name=f"clip{i}.mp4", size=60, content_type="video/mp4"))

    for staged in staged_files:
        await orchestrator.start_upload(staged, uploader)
    await asyncio.gather(*orchestrator.active_tasks)

    assert len(orchestrator.store) == 5
    assert orchestrator.quota.get_record("user-1").used == 300


async def test_shutdown_waits_for_in_flight_uploads(orchestrator, uploader, tmp_path):
    session = await orchestrator.start_upload(stage(tmp_path, size=120), uploader)

    await orchestrator.shutdown()

    assert session.state == UploadState.COMPLETED
    assert orchestrator.active_tasks == set()

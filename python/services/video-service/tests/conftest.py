"""
Shared fixtures for the video service tests.

Required settings are set before any app module is imported; storage is an
in-memory fake of the boto3 S3 client.
"""

import os
import threading
from collections import defaultdict
from datetime import datetime, timezone
from urllib.parse import quote

os.environ.setdefault("MINIO_ENDPOINT", "localhost:9000")
os.environ.setdefault("MINIO_ACCESS_KEY", "test-access-key")
os.environ.setdefault("MINIO_SECRET_KEY", "test-secret-key")
os.environ.setdefault("INTERNAL_SECRET_KEY", "test-internal-key")
os.environ.setdefault("FRONTEND_API_KEY", "test-frontend-key")
os.environ.setdefault("PUBLIC_SERVICE_URL", "http://testserver")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
from botocore.exceptions import ClientError

from app.core.manager.progress_channel import progress_channel
from app.core.manager.quota_tracker import quota_tracker
from app.core.manager.session_manager import session_manager
from app.core.manager.video_store import video_store
from app.models.user import User
from app.s3.client import s3_client

BUCKET = "videos"


def client_error(code: str, status: int, operation: str = "Operation") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation
    )


class FakeBotoClient:
    """
    In-memory stand-in for a boto3 S3 client.

    Failures are injected per operation (`failures["put_object"]`) or per
    block (`part_failures[2]`) as lists of exceptions consumed one per call.
    """

    def __init__(self):
        self.buckets = set()
        self.objects = {}
        self.multipart = {}
        self.calls = []
        self.failures = defaultdict(list)
        self.part_failures = defaultdict(list)
        self._lock = threading.Lock()
        self._next_upload = 0

    def _record(self, operation, **kwargs):
        with self._lock:
            self.calls.append((operation, kwargs))
            if self.failures[operation]:
                raise self.failures[operation].pop(0)

    def calls_to(self, operation):
        return [kwargs for op, kwargs in self.calls if op == operation]

    def put_object_raw(self, bucket, key, body, metadata=None, content_type="video/mp4"):
        self.buckets.add(bucket)
        self.objects[(bucket, key)] = {
            "Body": body,
            "ContentType": content_type,
            "Metadata": dict(metadata or {}),
            "LastModified": datetime.now(timezone.utc),
        }

    # Buckets

    def head_bucket(self, Bucket):
        self._record("head_bucket", Bucket=Bucket)
        if Bucket not in self.buckets:
            raise client_error("404", 404, "HeadBucket")
        return {}

    def create_bucket(self, Bucket):
        self._record("create_bucket", Bucket=Bucket)
        self.buckets.add(Bucket)
        return {}

    def put_bucket_policy(self, Bucket, Policy):
        self._record("put_bucket_policy", Bucket=Bucket)
        return {}

    # Objects

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None):
        self._record("put_object", Bucket=Bucket, Key=Key, Size=len(Body))
        self.objects[(Bucket, Key)] = {
            "Body": bytes(Body),
            "ContentType": ContentType,
            "Metadata": dict(Metadata or {}),
            "LastModified": datetime.now(timezone.utc),
        }
        return {"ETag": f'"etag-{Key}"'}

    def delete_object(self, Bucket, Key):
        self._record("delete_object", Bucket=Bucket, Key=Key)
        self.objects.pop((Bucket, Key), None)
        return {}

    def head_object(self, Bucket, Key):
        self._record("head_object", Bucket=Bucket, Key=Key)
        obj = self.objects.get((Bucket, Key))
        if obj is None:
            raise client_error("404", 404, "HeadObject")
        return {
            "ContentLength": len(obj["Body"]),
            "ContentType": obj["ContentType"],
            "LastModified": obj["LastModified"],
            "Metadata": dict(obj["Metadata"]),
        }

    def list_objects_v2(self, Bucket, Prefix="", ContinuationToken=None):
        self._record("list_objects_v2", Bucket=Bucket)
        if Bucket not in self.buckets:
            raise client_error("NoSuchBucket", 404, "ListObjectsV2")
        keys = sorted(key for bucket, key in self.objects if bucket == Bucket and key.startswith(Prefix))
        return {
            "Contents": [{"Key": key, "Size": len(self.objects[(Bucket, key)]["Body"])} for key in keys],
            "IsTruncated": False,
        }

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        url = f"http://fake-s3/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"
        if "ResponseContentDisposition" in Params:
            url += f"&response-content-disposition={quote(Params['ResponseContentDisposition'], safe='')}"
        return url

    # Multipart

    def create_multipart_upload(self, Bucket, Key, ContentType=None, Metadata=None):
        self._record("create_multipart_upload", Bucket=Bucket, Key=Key)
        with self._lock:
            self._next_upload += 1
            upload_id = f"mpu-{self._next_upload}"
        self.multipart[upload_id] = {
            "Bucket": Bucket,
            "Key": Key,
            "ContentType": ContentType,
            "Metadata": dict(Metadata or {}),
            "Parts": {},
        }
        return {"UploadId": upload_id}

    def upload_part(self, Bucket, Key, UploadId, PartNumber, Body):
        self._record("upload_part", Key=Key, PartNumber=PartNumber, Size=len(Body))
        with self._lock:
            if self.part_failures[PartNumber]:
                raise self.part_failures[PartNumber].pop(0)
        upload = self.multipart.get(UploadId)
        if upload is None:
            raise client_error("NoSuchUpload", 404, "UploadPart")
        upload["Parts"][PartNumber] = bytes(Body)
        return {"ETag": f'"etag-{PartNumber}"'}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        parts = MultipartUpload["Parts"]
        self._record("complete_multipart_upload", Key=Key, PartNumbers=[p["PartNumber"] for p in parts])
        upload = self.multipart.pop(UploadId, None)
        if upload is None:
            raise client_error("NoSuchUpload", 404, "CompleteMultipartUpload")
        body = b"".join(upload["Parts"][p["PartNumber"]] for p in parts)
        self.objects[(Bucket, Key)] = {
            "Body": body,
            "ContentType": upload["ContentType"],
            "Metadata": upload["Metadata"],
            "LastModified": datetime.now(timezone.utc),
        }
        return {}

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self._record("abort_multipart_upload", Key=Key, UploadId=UploadId)
        self.multipart.pop(UploadId, None)
        return {}


@pytest.fixture
def fake_s3(monkeypatch):
    """Fake boto3 client with the video bucket already created."""
    fake = FakeBotoClient()
    fake.buckets.add(BUCKET)
    monkeypatch.setattr(s3_client, "client", fake)
    return fake


@pytest.fixture
def uploader():
    return User(id="user-1", username="Garnet", avatar="https://cdn.example/avatar.png")


@pytest.fixture(autouse=True)
def reset_state():
    """Clear process-wide state between tests."""
    yield
    video_store.clear()
    quota_tracker.clear()
    progress_channel.clear()
    session_manager.clear()


def drain(subscription):
    """All events queued on a subscription so far."""
    events = []
    while not subscription.queue.empty():
        events.append(subscription.queue.get_nowait())
    return events

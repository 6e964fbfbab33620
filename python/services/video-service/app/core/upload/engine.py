"""
Chunked Upload Engine - moves a file's bytes into object storage.

Strategy by size:
- Below STREAMING_THRESHOLD: one whole-object PUT (buffered in memory)
- At or above: fixed-size blocks uploaded with bounded parallelism, then one
  commit that assembles the object

Each storage call is retried on transient errors with exponential backoff.
On failure the engine aborts the block upload and deletes the object key
before raising UploadFailed, and does the same when cancelled.
"""

import asyncio
import io
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import settings
from app.core.errors import UploadFailed
from app.models.user import User
from app.models.video import StorageLocator, build_object_metadata
from app.s3.client import S3Client, s3_client
from app.s3.config import (
    BACKOFF_MAX_SECONDS,
    BACKOFF_SECONDS,
    CHUNK_SIZE,
    MAX_ATTEMPTS,
    MAX_CONCURRENCY,
    PERMANENT_ERROR_CODES,
    STREAMING_THRESHOLD,
)
from app.utils.content_type import get_file_extension, is_legacy_container, resolve_content_type

logger = logging.getLogger(__name__)

ProgressSink = Callable[[int, int], None]

TRANSIENT_TRANSPORT_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionError,
    TimeoutError,
)


class ByteSource(Protocol):
    """Anything with an async read(size) (aiofiles handles, UploadFile)."""

    async def read(self, size: int = -1) -> bytes:
        ...


class BufferSource:
    """Adapts an in-memory buffer to the async read interface."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


@dataclass
class UploadResult:
    """Durable outcome of a successful transfer."""

    video_id: str
    locator: StorageLocator
    original_name: str
    size: int
    content_type: str
    file_format: str
    is_legacy_container: bool
    upload_date: datetime
    blocks_uploaded: int
    metadata: Dict[str, str]


def is_transient_error(exc: BaseException) -> bool:
    """
    Decide whether a storage error is worth retrying.

    Auth failures, missing buckets and other 4xx answers are permanent;
    5xx, throttling, timeouts and dropped connections are transient.
    """
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in PERMANENT_ERROR_CODES:
            return False
        if status and 400 <= status < 500 and status not in (408, 429):
            return False
        return True
    return isinstance(exc, TRANSIENT_TRANSPORT_ERRORS)


def count_blocks(total_bytes: int, chunk_size: int, threshold: int) -> int:
    """Number of block uploads for a file (0 means a single-shot upload)."""
    if total_bytes < threshold:
        return 0
    return -(-total_bytes // chunk_size)


class _ProgressTracker:
    """Monotonic byte counter feeding the progress sink."""

    def __init__(self, upload_ref: str, total_bytes: int, sink: Optional[ProgressSink]):
        self.upload_ref = upload_ref
        self.total_bytes = total_bytes
        self.sink = sink
        self.bytes_uploaded = 0

    def report(self):
        percentage = (self.bytes_uploaded / self.total_bytes * 100) if self.total_bytes else 100.0
        logger.debug(
            f"[{self.upload_ref}] Upload progress: {percentage:.1f}% "
            f"({self.bytes_uploaded}/{self.total_bytes} bytes)"
        )
        if self.sink is None:
            return
        try:
            self.sink(self.bytes_uploaded, self.total_bytes)
        except Exception as e:
            logger.warning(f"[{self.upload_ref}] Progress sink failed: {e}")

    def advance(self, nbytes: int):
        self.bytes_uploaded = min(self.total_bytes, self.bytes_uploaded + nbytes)
        self.report()


async def _read_exactly(source: ByteSource, size: int) -> bytes:
    """Read exactly `size` bytes, failing if the source ends early."""
    buffer = bytearray()
    while len(buffer) < size:
        chunk = await source.read(size - len(buffer))
        if not chunk:
            raise EOFError(f"Source ended after {len(buffer)} of {size} bytes")
        buffer.extend(chunk)
    return bytes(buffer)


class ChunkedUploadEngine:
    """
    Transfers files into one bucket and reports progress.
    """

    def __init__(
        self,
        storage: S3Client,
        bucket: str,
        chunk_size: int = CHUNK_SIZE,
        threshold: int = STREAMING_THRESHOLD,
        max_concurrency: int = MAX_CONCURRENCY,
        max_attempts: int = MAX_ATTEMPTS,
        backoff_seconds: float = BACKOFF_SECONDS,
        backoff_max_seconds: float = BACKOFF_MAX_SECONDS
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.storage = storage
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.threshold = threshold
        self.max_concurrency = max(1, max_concurrency)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.backoff_max_seconds = backoff_max_seconds

    async def upload(
        self,
        source: ByteSource,
        total_bytes: int,
        original_name: str,
        uploader: User,
        on_progress: Optional[ProgressSink] = None
    ) -> UploadResult:
        """
        Upload a file and return its durable locator.

        Args:
            source: Async byte source positioned at the start of the file
            total_bytes: Declared file size
            original_name: Client filename (its extension names the object)
            uploader: Owner written into the object metadata
            on_progress: Called with (bytes_uploaded, total_bytes), non-decreasing

        Returns:
            UploadResult with generated video id and locator

        Raises:
            UploadFailed: After retries are exhausted or on a permanent error
        """
        if total_bytes < 0:
            raise ValueError("total_bytes must be non-negative")

        video_id = uuid.uuid4().hex
        file_format = get_file_extension(original_name)
        key = f"{video_id}{file_format}"
        content_type = resolve_content_type(file_format)
        legacy = is_legacy_container(file_format)
        upload_date = datetime.now(timezone.utc)

        metadata = build_object_metadata(
            video_id=video_id,
            original_name=original_name,
            uploader=uploader,
            size=total_bytes,
            content_type=content_type,
            upload_date=upload_date,
            file_format=file_format,
            is_legacy_container=legacy
        )

        tracker = _ProgressTracker(video_id, total_bytes, on_progress)
        multipart_id: Optional[str] = None

        try:
            if total_bytes < self.threshold:
                logger.info(f"[{video_id}] Single-shot upload of {original_name} ({total_bytes} bytes)")
                blocks = await self._upload_single(source, key, total_bytes, content_type, metadata, tracker)
            else:
                block_count = count_blocks(total_bytes, self.chunk_size, self.threshold)
                logger.info(
                    f"[{video_id}] Chunked upload of {original_name} ({total_bytes} bytes) "
                    f"in {block_count} blocks of {self.chunk_size} bytes"
                )
                multipart_id = await self._with_retries(
                    self.storage.create_multipart_upload,
                    self.bucket, key, content_type, metadata
                )
                blocks = await self._upload_blocks(source, key, multipart_id, total_bytes, tracker)

        except asyncio.CancelledError:
            logger.warning(f"[{video_id}] Upload of {original_name} cancelled, removing partial state")
            await self._cleanup(video_id, key, multipart_id)
            raise
        except Exception as e:
            logger.error(f"[{video_id}] Failed to upload {original_name}: {e}")
            await self._cleanup(video_id, key, multipart_id)
            raise UploadFailed(f"Upload failed: {e}") from e

        logger.info(f"[{video_id}] Stored {original_name} as {self.bucket}/{key}")

        return UploadResult(
            video_id=video_id,
            locator=StorageLocator(
                bucket=self.bucket,
                key=key,
                url=self.storage.get_object_url(self.bucket, key)
            ),
            original_name=original_name,
            size=total_bytes,
            content_type=content_type,
            file_format=file_format,
            is_legacy_container=legacy,
            upload_date=upload_date,
            blocks_uploaded=blocks,
            metadata=metadata
        )

    async def _upload_single(
        self,
        source: ByteSource,
        key: str,
        total_bytes: int,
        content_type: str,
        metadata: Dict[str, str],
        tracker: _ProgressTracker
    ) -> int:
        """One whole-object PUT. Returns 0 blocks."""
        data = await _read_exactly(source, total_bytes)
        tracker.report()

        await self._with_retries(
            self.storage.put_object,
            self.bucket, key, data, content_type, metadata
        )
        tracker.advance(len(data))
        return 0

    async def _upload_blocks(
        self,
        source: ByteSource,
        key: str,
        multipart_id: str,
        total_bytes: int,
        tracker: _ProgressTracker
    ) -> int:
        """
        Read blocks sequentially and upload up to max_concurrency at once,
        then commit. Returns the number of blocks uploaded.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        parts: List[Dict[str, Any]] = []
        tasks: List[asyncio.Task] = []

        async def send_block(part_number: int, data: bytes):
            try:
                etag = await self._with_retries(
                    self.storage.upload_part,
                    self.bucket, key, multipart_id, part_number, data
                )
                parts.append({"PartNumber": part_number, "ETag": etag})
                tracker.advance(len(data))
                logger.debug(f"[{tracker.upload_ref}] Block {part_number} stored ({len(data)} bytes)")
            finally:
                semaphore.release()

        remaining = total_bytes
        part_number = 0

        try:
            while remaining > 0:
                await semaphore.acquire()

                # Stop feeding blocks once any block has failed
                if any(task.done() and task.exception() is not None for task in tasks):
                    semaphore.release()
                    break

                try:
                    data = await _read_exactly(source, min(self.chunk_size, remaining))
                except BaseException:
                    semaphore.release()
                    raise

                part_number += 1
                remaining -= len(data)
                tasks.append(asyncio.create_task(send_block(part_number, data)))
        finally:
            results = await asyncio.gather(*tasks, return_exceptions=True)

        errors = [result for result in results if isinstance(result, BaseException)]
        if errors:
            raise errors[0]

        await self._with_retries(
            self.storage.complete_multipart_upload,
            self.bucket, key, multipart_id, parts
        )
        return len(parts)

    async def _with_retries(self, func: Callable, *args):
        """Run a blocking storage call in the executor, retrying transient errors."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_max_seconds),
            retry=retry_if_exception(is_transient_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await self.storage.run(func, *args)
        return result

    async def _cleanup(self, video_id: str, key: str, multipart_id: Optional[str]):
        """Remove partial state. Failures are logged, never raised."""
        if multipart_id:
            try:
                await self.storage.run(
                    self.storage.abort_multipart_upload, self.bucket, key, multipart_id
                )
            except Exception as e:
                logger.warning(f"[{video_id}] Failed to abort multipart upload {multipart_id}: {e}")

        try:
            await self.storage.run(self.storage.delete_object, self.bucket, key)
            logger.info(f"[{video_id}] Cleaned up partial upload {self.bucket}/{key}")
        except Exception as e:
            logger.warning(f"[{video_id}] Failed to clean up partial upload {self.bucket}/{key}: {e}")


# Global upload engine instance
upload_engine = ChunkedUploadEngine(storage=s3_client, bucket=settings.VIDEO_BUCKET)

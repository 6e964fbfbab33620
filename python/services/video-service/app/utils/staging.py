"""
Upload validation and request-body staging.

The incoming file is copied to a temporary file so the background transfer
can outlive the request that delivered it.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote

import aiofiles
from fastapi import UploadFile

from app.core.config import settings
from app.core.errors import ValidationError
from app.models.video import MAX_ENCODED_NAME_BYTES
from app.s3.config import MAX_FILE_SIZE, READ_CHUNK_SIZE
from app.utils.content_type import detect_content_type

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255
UNSAFE_FILENAME_PATTERN = re.compile(r'[/\\<>:"|?*\x00-\x1f\x7f]')


@dataclass
class StagedFile:
    """A validated upload copied to local disk."""

    path: Path
    original_name: str
    size: int
    content_type: str

    def open(self):
        """Async read handle positioned at the start of the file."""
        return aiofiles.open(self.path, "rb")


def validate_filename(filename: Optional[str]) -> str:
    """
    Check a client-supplied filename.

    Raises:
        ValidationError: Empty, too long (raw or percent-encoded), or
            containing path separators, control or reserved characters
    """
    if not filename or not filename.strip():
        raise ValidationError("No video file provided")
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"Filename too long (maximum {MAX_FILENAME_LENGTH} characters)")
    if UNSAFE_FILENAME_PATTERN.search(filename) or filename in (".", ".."):
        raise ValidationError("Filename contains invalid characters")
    if len(quote(filename, safe="")) > MAX_ENCODED_NAME_BYTES:
        raise ValidationError("Filename too long once encoded for storage; use a shorter name")
    return filename


def validate_content_type(
    filename: str,
    provided_type: Optional[str] = None,
    allowed_types: Optional[Iterable[str]] = None
) -> str:
    """
    Resolve and check the file's content type.

    Raises:
        ValidationError (415): Type not in the allowed list
    """
    allowed = set(allowed_types if allowed_types is not None else settings.ALLOWED_VIDEO_TYPES)
    content_type = detect_content_type(filename, provided_type)
    if content_type not in allowed:
        raise ValidationError(
            f"Invalid video file format: {content_type}",
            status_code=415,
            error_code="UNSUPPORTED_MEDIA_TYPE"
        )
    return content_type


def _too_large(max_size: int) -> ValidationError:
    return ValidationError(
        f"File too large. Maximum size is {max_size / (1024 ** 3):g}GB.",
        status_code=413,
        error_code="FILE_TOO_LARGE"
    )


async def stage_upload(
    file: UploadFile,
    staging_dir: Optional[str] = None,
    max_size: int = MAX_FILE_SIZE
) -> StagedFile:
    """
    Validate an uploaded file and copy it to a temporary file.

    Args:
        file: Multipart file from the request
        staging_dir: Directory for the temp file (defaults to settings / system temp)
        max_size: Upper bound on the file size in bytes

    Returns:
        StagedFile describing the copy

    Raises:
        ValidationError: Bad name, unsupported type or oversized file
    """
    original_name = validate_filename(file.filename)
    content_type = validate_content_type(original_name, file.content_type)

    # Reject early when the multipart part declares its size
    if file.size is not None and file.size > max_size:
        raise _too_large(max_size)

    directory = staging_dir or settings.STAGING_DIR or tempfile.gettempdir()
    fd, tmp_name = tempfile.mkstemp(dir=directory, prefix="upload_", suffix=".tmp")
    os.close(fd)
    path = Path(tmp_name)

    total = 0
    try:
        async with aiofiles.open(path, "wb") as out:
            while True:
                chunk = await file.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_size:
                    raise _too_large(max_size)
                await out.write(chunk)
    except BaseException:
        await cleanup_staged_file(path)
        raise

    logger.info(f"Staged {original_name} at {path} ({total} bytes)")

    return StagedFile(
        path=path,
        original_name=original_name,
        size=total,
        content_type=content_type
    )


async def cleanup_staged_file(path: Path):
    """Remove a staged file. Safe to call if it is already gone."""
    try:
        path.unlink(missing_ok=True)
        logger.debug(f"Staged file removed: {path}")
    except OSError as e:
        logger.warning(f"Failed to remove staged file {path}: {e}")

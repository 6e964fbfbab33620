"""
Content-Type detection utilities.
Resolve video MIME types from file extensions.
"""

import os
from typing import Optional


DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Video MIME type mappings
VIDEO_MIME_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".ogv": "video/ogg",
    ".3gp": "video/3gpp",
    ".flv": "video/x-flv",
    ".wmv": "video/x-ms-wmv",
    ".mpeg": "video/mpeg",
    ".mpg": "video/mpeg",
}

# Containers many browsers cannot play inline
LEGACY_CONTAINERS = {".mkv"}
LEGACY_CONTAINER_WARNING = (
    "MKV files may not play in all browsers. "
    "Consider converting to MP4 for better compatibility."
)


def get_file_extension(filename: str) -> str:
    """
    Return the lower-cased extension of a filename, including the dot.

    Examples:
        >>> get_file_extension("clip.MP4")
        '.mp4'

        >>> get_file_extension("no_extension")
        ''
    """
    return os.path.splitext(filename)[1].lower()


def resolve_content_type(extension: str) -> str:
    """
    Map a file extension to its MIME type.

    Args:
        extension: Extension with or without the leading dot (case-insensitive)

    Returns:
        MIME type string, 'application/octet-stream' for unknown extensions

    Examples:
        >>> resolve_content_type(".mov")
        'video/quicktime'

        >>> resolve_content_type("MKV")
        'video/x-matroska'

        >>> resolve_content_type(".xyz")
        'application/octet-stream'
    """
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return VIDEO_MIME_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def detect_content_type(filename: str, provided_type: Optional[str] = None) -> str:
    """
    Detect Content-Type for an uploaded file.

    Respects a specific client-provided type; otherwise resolves from the
    filename extension.
    """
    if provided_type and provided_type != DEFAULT_CONTENT_TYPE:
        return provided_type
    return resolve_content_type(get_file_extension(filename))


def is_legacy_container(extension: str) -> bool:
    """True for container formats that may not play in all browsers (MKV)."""
    ext = extension.lower()
    if ext and not ext.startswith("."):
        ext = f".{ext}"
    return ext in LEGACY_CONTAINERS

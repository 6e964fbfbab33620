"""
S3 Upload Configuration.
Constants for block (multipart) upload, retry and staging settings.
"""

from app.core.config import settings

# Block Upload Settings
# Files at or above the threshold are split into fixed-size blocks
STREAMING_THRESHOLD = settings.STREAMING_THRESHOLD_BYTES   # 50MB
CHUNK_SIZE = settings.CHUNK_SIZE_BYTES                     # 50MB per block
MAX_CONCURRENCY = settings.MAX_CONCURRENT_BLOCKS           # Blocks in flight per upload

# Retry Settings (exponential backoff, transient errors only)
MAX_ATTEMPTS = settings.UPLOAD_MAX_ATTEMPTS
BACKOFF_SECONDS = settings.RETRY_BACKOFF_SECONDS
BACKOFF_MAX_SECONDS = settings.RETRY_BACKOFF_MAX_SECONDS

# Error codes that are never retried (auth, missing bucket, bad request)
PERMANENT_ERROR_CODES = {
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "NoSuchBucket",
    "NoSuchUpload",
    "InvalidBucketName",
    "EntityTooSmall",
    "InvalidPart",
    "InvalidPartOrder",
    "InvalidArgument",
    "403",
    "404",
}

# Staging Settings
READ_CHUNK_SIZE = 1024 * 1024             # 1MB read buffer when staging request bodies

# Upload Limits
MAX_FILE_SIZE = settings.MAX_FILE_SIZE_BYTES

"""
S3 service for storing buffalo proof media.

Provides a lazy-initialized boto3 client. The call state machine only ever
sees the returned URL; payload bytes are never inspected.
"""

import logging
import os
import time
import uuid
from typing import Optional
from urllib.parse import urlparse

from buffalo.database.models import ProofKind

logger = logging.getLogger(__name__)

# Lazy-initialized S3 client
_s3_client = None

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/heic": "heic",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
}


def _get_config():
    """Read S3 configuration from environment at call time (not import time)."""
    return {
        "access_key_id": os.getenv("AWS_ACCESS_KEY_ID"),
        "secret_access_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "bucket": os.getenv("AWS_S3_BUCKET"),
        "region": os.getenv("AWS_S3_REGION", "us-west-2"),
    }


def _get_s3_client():
    """Get or create the boto3 S3 client. Lazy-imports boto3 to avoid import-time dependency."""
    global _s3_client
    if _s3_client is None:
        cfg = _get_config()
        if not all([cfg["access_key_id"], cfg["secret_access_key"], cfg["bucket"]]):
            raise ValueError(
                "AWS S3 environment variables not configured. "
                "Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, and AWS_S3_BUCKET."
            )
        import boto3

        _s3_client = boto3.client(
            "s3",
            aws_access_key_id=cfg["access_key_id"],
            aws_secret_access_key=cfg["secret_access_key"],
            region_name=cfg["region"],
        )
    return _s3_client


def proof_kind_for(content_type: str) -> str:
    """Classify an upload as photo or video proof from its MIME type."""
    if content_type and content_type.lower().startswith("video/"):
        return ProofKind.VIDEO.value
    return ProofKind.PHOTO.value


def is_supported_content_type(content_type: str) -> bool:
    return bool(content_type) and content_type.lower() in _EXTENSIONS


def upload_proof(call_id: int, payload: bytes, content_type: str) -> str:
    """
    Upload proof media for a buffalo call.

    Stores at key: buffalo-proofs/{call_id}/{timestamp}-{uuid}.{ext}

    Args:
        call_id: Call the proof belongs to
        payload: Raw media bytes
        content_type: MIME type of the payload

    Returns:
        Public URL of the uploaded media
    """
    client = _get_s3_client()
    cfg = _get_config()
    bucket = cfg["bucket"]
    region = cfg["region"]
    extension = _EXTENSIONS.get((content_type or "").lower(), "bin")
    key = f"buffalo-proofs/{call_id}/{int(time.time())}-{uuid.uuid4().hex[:8]}.{extension}"

    client.put_object(
        Bucket=bucket,
        Key=key,
        Body=payload,
        ContentType=content_type or "application/octet-stream",
    )

    url = f"https://{bucket}.s3.{region}.amazonaws.com/{key}"
    logger.info(f"Uploaded proof for call {call_id}: {key}")
    return url


def delete_proof(url: str) -> bool:
    """
    Delete proof media from S3 by its URL. Best-effort: logs errors but does not raise.

    Args:
        url: The full S3 URL of the media

    Returns:
        True if deleted successfully, False otherwise
    """
    try:
        client = _get_s3_client()
        cfg = _get_config()
        bucket = cfg["bucket"]
        key = _extract_key_from_url(url, bucket)
        if not key:
            logger.warning(f"Could not extract S3 key from URL: {url}")
            return False

        client.delete_object(Bucket=bucket, Key=key)
        logger.info(f"Deleted proof from S3: {key}")
        return True
    except Exception as e:
        logger.error(f"Failed to delete proof from S3: {e}")
        return False


def _extract_key_from_url(url: str, expected_bucket: Optional[str] = None) -> Optional[str]:
    """
    Extract the S3 object key from a full S3 URL.

    Handles URLs like:
      https://bucket.s3.region.amazonaws.com/buffalo-proofs/12/1700000000-ab12cd34.jpg

    Args:
        url: Full S3 URL
        expected_bucket: Expected S3 bucket name for hostname validation

    Returns:
        Object key string or None if parsing fails or hostname doesn't match
    """
    try:
        parsed = urlparse(url)

        if expected_bucket and parsed.hostname:
            if expected_bucket not in parsed.hostname:
                logger.warning(
                    f"URL hostname '{parsed.hostname}' does not match "
                    f"expected bucket '{expected_bucket}'"
                )
                return None

        key = parsed.path.lstrip("/")
        return key if key else None
    except Exception:
        return None

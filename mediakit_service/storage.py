"""
Optional persistence of results to Cloudflare R2 / S3-compatible storage.

Used by the HTTP layer when a caller asks for a URL instead of an inline
base64 payload.
"""

from __future__ import annotations

import logging
import uuid
from urllib.parse import urljoin

import boto3
from botocore.client import Config as BotoConfig

from .config import Settings
from .errors import Unconfigured

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "application/pdf": "pdf",
}


def get_s3_client(settings: Settings):
    if not settings.storage_configured():
        raise Unconfigured("R2 configuration is incomplete; check env vars.", provider="storage")
    session = boto3.session.Session()
    return session.client(
        service_name="s3",
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        endpoint_url=settings.r2_endpoint,
        config=BotoConfig(signature_version="s3v4"),
    )


def build_public_url(settings: Settings, key: str, client=None) -> str:
    if settings.r2_public_base_url:
        return urljoin(settings.r2_public_base_url.rstrip("/") + "/", key)
    # No public bucket domain: hand out a presigned URL instead.
    client = client or get_s3_client(settings)
    return client.generate_presigned_url(
        "get_object",
        Params={"Bucket": settings.r2_bucket_name, "Key": key},
        ExpiresIn=3600,
    )


def upload_result(settings: Settings, data: bytes, content_type: str, prefix: str = "results", client=None) -> str:
    """Upload `data` under a random key and return a URL for it."""
    client = client or get_s3_client(settings)
    extension = _EXTENSIONS.get(content_type.split(";")[0].strip(), "bin")
    key = f"{prefix}/{uuid.uuid4()}.{extension}"
    client.put_object(
        Bucket=settings.r2_bucket_name,
        Key=key,
        Body=data,
        ContentType=content_type,
    )
    logger.info("Uploaded %d bytes to %s", len(data), key)
    return build_public_url(settings, key, client=client)

"""
Object storage for uploaded loan documents (boto3). Storage is optional: with S3_BUCKET unset,
writes are skipped and reads return None.
"""
from __future__ import annotations

import logging
import os
from io import BytesIO
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

_LOG = logging.getLogger("uvicorn.error")

S3_BUCKET = os.environ.get("S3_BUCKET", "")
AWS_REGION = os.environ.get("AWS_REGION", "us-east-1")


def storage_enabled() -> bool:
    return bool(S3_BUCKET)


def document_key(bank_id: str, deal_id: str, document_id: str) -> str:
    """Keys are tenant-prefixed so a bucket policy can scope access per bank."""
    return f"banks/{bank_id}/deals/{deal_id}/documents/{document_id}"


def _s3():
    return boto3.client("s3", region_name=AWS_REGION)


def upload_bytes(key: str, body: bytes, content_type: Optional[str] = None) -> bool:
    if not storage_enabled():
        return False
    extra = {"ContentType": content_type} if content_type else {}
    try:
        _s3().put_object(Bucket=S3_BUCKET, Key=key, Body=body, **extra)
    except (BotoCoreError, ClientError) as e:
        _LOG.warning("S3_UPLOAD_FAILED bucket=%s key=%s err=%s", S3_BUCKET, key, str(e)[:200])
        return False
    _LOG.info("S3_UPLOAD key=%s bytes=%s", key, len(body))
    return True


def download_bytes(key: str) -> Optional[bytes]:
    if not storage_enabled():
        return None
    out = BytesIO()
    try:
        _s3().download_fileobj(S3_BUCKET, key, out)
    except (BotoCoreError, ClientError) as e:
        _LOG.warning("S3_DOWNLOAD_FAILED bucket=%s key=%s err=%s", S3_BUCKET, key, str(e)[:200])
        return None
    return out.getvalue()

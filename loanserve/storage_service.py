# storage_service.py
# Durable object storage for statements, receipts and bank statement files.

import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from .config import settings
from .exceptions import StorageError

log = logging.getLogger(__name__)


class ObjectStorage:
    """Interface: put_bytes(key, data, content_type) -> uri"""

    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        raise NotImplementedError

    async def get_bytes(self, uri: str) -> bytes:
        raise NotImplementedError


class S3ObjectStorage(ObjectStorage):
    """AWS S3 backed storage"""

    def __init__(self, bucket: Optional[str] = None, client=None):
        """Initialize S3 client"""
        self.bucket = bucket or settings.AWS_S3_BUCKET
        self.s3_client = client or boto3.client(
            's3',
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY
        )

    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption='AES256'
            )
        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_message = e.response['Error']['Message']
            log.error(f"S3 error writing s3://{self.bucket}/{key}: {error_code} - {error_message}")
            raise StorageError(f"{error_code}: {error_message}")

        uri = f"s3://{self.bucket}/{key}"
        log.info(f"Stored {len(data)} bytes at {uri}")
        return uri

    async def get_bytes(self, uri: str) -> bytes:
        prefix = f"s3://{self.bucket}/"
        if not uri.startswith(prefix):
            raise StorageError(f"URI not in bucket {self.bucket}: {uri}")
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=uri[len(prefix):])
            return response['Body'].read()
        except ClientError as e:
            raise StorageError(f"{e.response['Error']['Code']}: {e.response['Error']['Message']}")


class LocalObjectStorage(ObjectStorage):
    """Filesystem storage for development and tests"""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.LOCAL_STORAGE_DIR).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key.lstrip("/")).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}")
        return path

    async def put_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            log.error(f"Error writing {path}: {e}")
            raise StorageError(str(e))
        return path.as_uri()

    async def get_bytes(self, uri: str) -> bytes:
        root_uri = self.root.as_uri() + "/"
        if not uri.startswith(root_uri):
            raise StorageError(f"URI not under storage root: {uri}")
        return self._path_for(uri[len(root_uri):]).read_bytes()


def statement_key(tenant_id: str, loan_id: int, as_of: str) -> str:
    return f"{settings.S3_PREFIX}/{tenant_id}/loans/{loan_id}/{settings.STMT_S3_PREFIX}/STMT_{loan_id}_{as_of}.json"


def receipt_key(tenant_id: str, loan_id: Optional[int], payment_id: int) -> str:
    return f"{settings.S3_PREFIX}/{tenant_id}/loans/{loan_id}/{settings.RECEIPT_S3_PREFIX}/RCPT_{payment_id}.json"


def bank_statement_key(tenant_id: str, stmt_date: str, file_name: str) -> str:
    safe_name = Path(file_name or "statement").name
    return f"{settings.RECON_S3_PREFIX}/{tenant_id}/{stmt_date}-{safe_name}"


_storage: Optional[ObjectStorage] = None


def get_object_storage() -> ObjectStorage:
    """Storage backend selected by STORAGE_BACKEND, created on first use."""
    global _storage
    if _storage is None:
        if settings.STORAGE_BACKEND == "s3":
            _storage = S3ObjectStorage()
        else:
            _storage = LocalObjectStorage()
    return _storage

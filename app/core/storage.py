"""
Blob storage for uploaded CV documents, supporting local filesystem and AWS S3.

Blobs are addressed by `{candidate_id}/{file_name}`. A put to an existing key
overwrites it, so re-putting the same bytes after a failed intake is harmless.
"""

import logging
import os
import posixpath
from functools import lru_cache
from typing import Optional
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from app.core.config import settings

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    'pdf': 'application/pdf',
    'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'doc': 'application/msword',
    'txt': 'text/plain',
    'md': 'text/markdown',
}


class StorageError(Exception):
    """Raised when the storage backend cannot be reached or written."""


def safe_file_name(file_name: str) -> str:
    """Strip directory components so a client file name cannot escape its key prefix."""
    name = posixpath.basename(file_name.replace("\\", "/")).strip()
    if name in ("", ".", ".."):
        raise ValueError(f"Invalid file name: {file_name!r}")
    return name


def blob_key(candidate_id: str, file_name: str) -> str:
    return f"{candidate_id}/{safe_file_name(file_name)}"


def content_type_for(file_name: str) -> str:
    """Determine content type based on file extension"""
    extension = file_name.lower().rsplit('.', 1)[-1] if '.' in file_name else ''
    return CONTENT_TYPES.get(extension, 'application/octet-stream')


class StorageBackend:
    """Abstract base class for storage backends"""

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        """Store bytes under key and return the key"""
        raise NotImplementedError

    def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if the key does not exist"""
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        """Delete a blob; returns False if it did not exist"""
        raise NotImplementedError

    def ping(self) -> None:
        """Raise StorageError if the backend is unreachable"""
        raise NotImplementedError


class LocalStorage(StorageBackend):
    """Local filesystem storage backend"""

    def __init__(self, base_dir: str = "uploads"):
        self.base_dir = os.path.abspath(base_dir)
        os.makedirs(self.base_dir, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, *key.split("/")))
        if os.path.commonpath([path, self.base_dir]) != self.base_dir:
            raise ValueError(f"Key escapes storage root: {key!r}")
        return path

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        tmp_path = f"{path}.part"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp_path, "wb") as buffer:
                buffer.write(data)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        return key

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {key}: {e}") from e

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def ping(self) -> None:
        if not os.access(self.base_dir, os.W_OK):
            raise StorageError(f"Storage directory is not writable: {self.base_dir}")


class S3Storage(StorageBackend):
    """AWS S3 storage backend"""

    def __init__(self, bucket_name: str, client=None):
        self.bucket_name = bucket_name

        if client is not None:
            self.s3_client = client
        elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION
            )
        else:
            # Use IAM roles or instance profile
            self.s3_client = boto3.client('s3', region_name=settings.AWS_REGION)

    @staticmethod
    def _is_missing(error: ClientError) -> bool:
        code = error.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound")

    def put(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type or content_type_for(key),
                ServerSideEncryption='AES256',  # Enable encryption at rest
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to upload {key} to S3: {e}") from e
        return key

    def get(self, key: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise StorageError(f"Failed to download {key} from S3: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to download {key} from S3: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {key} from S3: {e}") from e

    def ping(self) -> None:
        try:
            self.s3_client.list_objects_v2(Bucket=self.bucket_name, MaxKeys=1)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"S3 bucket {self.bucket_name} not reachable: {e}") from e


@lru_cache(maxsize=1)
def get_storage() -> StorageBackend:
    """Storage backend selected by USE_S3. Also used as a FastAPI dependency."""
    if settings.USE_S3:
        if not settings.S3_BUCKET_NAME:
            raise ValueError("S3_BUCKET_NAME must be set when USE_S3=True")
        logger.info(f"Using S3 storage bucket {settings.S3_BUCKET_NAME}")
        return S3Storage(settings.S3_BUCKET_NAME)
    logger.info(f"Using local storage at {settings.LOCAL_STORAGE_DIR}")
    return LocalStorage(settings.LOCAL_STORAGE_DIR)

"""
Tests for the blob storage backends.
"""

import io

import pytest
from botocore.exceptions import ClientError

from app.core.storage import (
    LocalStorage,
    S3Storage,
    StorageError,
    blob_key,
    content_type_for,
    safe_file_name,
)


class TestKeys:
    """Test blob addressing helpers"""

    def test_blob_key(self):
        assert blob_key("c-1", "cv.pdf") == "c-1/cv.pdf"

    def test_directory_components_are_stripped(self):
        assert safe_file_name("../../etc/passwd") == "passwd"
        assert safe_file_name("C:\\Users\\ada\\cv.docx") == "cv.docx"

    @pytest.mark.parametrize("name", ["", "   ", ".", "..", "uploads/"])
    def test_invalid_file_names(self, name):
        with pytest.raises(ValueError):
            safe_file_name(name)

    def test_content_types(self):
        assert content_type_for("cv.PDF") == "application/pdf"
        assert content_type_for("cv.docx").endswith("wordprocessingml.document")
        assert content_type_for("cv") == "application/octet-stream"


class TestLocalStorage:
    """Test the filesystem backend"""

    def test_put_and_get(self, storage):
        storage.put("c-1/cv.txt", b"hello")

        assert storage.get("c-1/cv.txt") == b"hello"

    def test_put_overwrites(self, storage):
        storage.put("c-1/cv.txt", b"first")
        storage.put("c-1/cv.txt", b"second")

        assert storage.get("c-1/cv.txt") == b"second"

    def test_missing_key_returns_none(self, storage):
        assert storage.get("c-1/missing.pdf") is None

    def test_delete(self, storage):
        storage.put("c-1/cv.txt", b"hello")

        assert storage.delete("c-1/cv.txt") is True
        assert storage.delete("c-1/cv.txt") is False
        assert storage.get("c-1/cv.txt") is None

    def test_key_cannot_escape_root(self, storage):
        with pytest.raises(ValueError):
            storage.put("../outside.txt", b"nope")

    def test_ping(self, storage):
        storage.ping()

    def test_write_failure_raises_storage_error(self, tmp_path):
        backend = LocalStorage(str(tmp_path / "root"))
        # A regular file where the key's directory should go
        (tmp_path / "root" / "c-1").write_bytes(b"")

        with pytest.raises(StorageError):
            backend.put("c-1/cv.txt", b"data")


class FakeS3Client:
    """Minimal in-memory stand-in for the boto3 S3 client."""

    def __init__(self, fail_with=None):
        self.objects = {}
        self.fail_with = fail_with

    def _maybe_fail(self, operation):
        if self.fail_with:
            raise ClientError({"Error": {"Code": self.fail_with, "Message": "boom"}}, operation)

    def put_object(self, Bucket, Key, Body, ContentType, ServerSideEncryption):
        self._maybe_fail("PutObject")
        self.objects[Key] = (Body, ContentType)

    def get_object(self, Bucket, Key):
        self._maybe_fail("GetObject")
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key][0])}

    def delete_object(self, Bucket, Key):
        self._maybe_fail("DeleteObject")
        self.objects.pop(Key, None)

    def list_objects_v2(self, Bucket, MaxKeys):
        self._maybe_fail("ListObjectsV2")
        return {"KeyCount": len(self.objects)}


class TestS3Storage:
    """Test the S3 backend against a fake client"""

    def test_put_and_get(self):
        client = FakeS3Client()
        backend = S3Storage("cvs", client=client)

        backend.put("c-1/cv.pdf", b"%PDF")

        assert backend.get("c-1/cv.pdf") == b"%PDF"
        assert client.objects["c-1/cv.pdf"][1] == "application/pdf"

    def test_missing_key_returns_none(self):
        backend = S3Storage("cvs", client=FakeS3Client())

        assert backend.get("c-1/missing.pdf") is None

    def test_access_denied_raises_storage_error(self):
        backend = S3Storage("cvs", client=FakeS3Client(fail_with="AccessDenied"))

        with pytest.raises(StorageError):
            backend.get("c-1/cv.pdf")
        with pytest.raises(StorageError):
            backend.put("c-1/cv.pdf", b"%PDF")
        with pytest.raises(StorageError):
            backend.ping()

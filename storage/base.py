"""
Base storage abstraction for delta-compactor.

Provides a unified interface for local and cloud storage backends.
All paths are relative to the storage root (local base_dir or S3 bucket).

Besides plain reads and writes, every backend offers an atomic
create-if-absent write. The transaction log relies on it to accept at
most one commit per version.
"""
import logging
import os
import shutil
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, List, Dict, Any

logger = logging.getLogger(__name__)


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    All implementations must support:
    - Path operations relative to a root (base_dir or bucket)
    - Read/write bytes, including an atomic create-if-absent write
    - List, exists, delete operations
    """

    def __init__(self, base_path: str):
        """
        Initialize storage backend.

        Args:
            base_path: Root path for all operations (local dir or S3 bucket)
        """
        self.base_path = base_path

    @abstractmethod
    def write_bytes(self, data: bytes, path: str) -> str:
        """
        Write bytes to storage, replacing any existing object.

        Args:
            data: Bytes to write
            path: Relative path from base_path

        Returns:
            Full path where data was written
        """
        pass

    @abstractmethod
    def write_bytes_if_absent(self, data: bytes, path: str) -> bool:
        """
        Atomically create an object only if nothing exists at path.

        Args:
            data: Bytes to write
            path: Relative path from base_path

        Returns:
            True if the object was created, False if path already existed
        """
        pass

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """
        Read bytes from storage.

        Args:
            path: Relative path from base_path

        Returns:
            File contents as bytes
        """
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """
        Check if path exists.

        Args:
            path: Relative path from base_path

        Returns:
            True if path exists
        """
        pass

    @abstractmethod
    def delete(self, path: str, recursive: bool = False) -> bool:
        """
        Delete a file (or a directory tree when recursive is True).

        Args:
            path: Relative path from base_path
            recursive: Also delete directory contents

        Returns:
            True if something was deleted, False if nothing existed at path

        Raises:
            OSError or backend client errors when the delete itself fails
        """
        pass

    @abstractmethod
    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[Dict[str, Any]]:
        """
        List files in a directory.

        Args:
            path: Relative directory path from base_path
            pattern: Optional glob pattern (e.g., "*.json")
            recursive: Whether to list recursively

        Returns:
            List of file info dicts with keys: path, size, modified
        """
        pass

    @abstractmethod
    def get_full_path(self, path: str) -> str:
        """
        Get full path for a relative path.

        Args:
            path: Relative path from base_path

        Returns:
            Full path (local path or s3:// URI)
        """
        pass

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return backend type identifier ('local' or 's3')."""
        pass

    def join_path(self, *parts: str) -> str:
        """
        Join path components using forward slashes.

        Works consistently across local and S3 backends.

        Args:
            *parts: Path components

        Returns:
            Joined path with forward slashes
        """
        clean_parts = [p.strip("/") for p in parts if p]
        return "/".join(clean_parts)

    def mkdir(self, path: str, parents: bool = True, exist_ok: bool = True) -> None:
        """
        Create directory (local only, no-op for S3).

        Args:
            path: Relative directory path from base_path
            parents: Create parent directories if needed
            exist_ok: Don't raise error if directory exists
        """
        pass


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, base_path: str):
        """
        Initialize local storage.

        Args:
            base_path: Base directory for all operations (e.g., "/data/lake")
        """
        super().__init__(base_path)
        self.base_dir = Path(base_path).resolve()
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def backend_type(self) -> str:
        return "local"

    def _resolve_path(self, path: str) -> Path:
        """Convert relative path to absolute local path."""
        return self.base_dir / path

    def write_bytes(self, data: bytes, path: str) -> str:
        full_path = self._resolve_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)
        return str(full_path)

    def write_bytes_if_absent(self, data: bytes, path: str) -> bool:
        full_path = self._resolve_path(path)
        full_path.parent.mkdir(parents=True, exist_ok=True)

        # Write a private temp file, then hard-link it into place.
        # link() fails if the target exists, so readers never see a partial file.
        tmp_path = full_path.parent / f".{full_path.name}.{uuid.uuid4().hex}.tmp"
        tmp_path.write_bytes(data)
        try:
            os.link(tmp_path, full_path)
            return True
        except FileExistsError:
            return False
        finally:
            # The outcome is decided by link(); a leftover temp file only costs space
            try:
                tmp_path.unlink()
            except OSError as e:
                logger.warning(f"[LocalStorage] Could not remove temp file {tmp_path}: {e}")

    def read_bytes(self, path: str) -> bytes:
        full_path = self._resolve_path(path)
        return full_path.read_bytes()

    def exists(self, path: str) -> bool:
        return self._resolve_path(path).exists()

    def delete(self, path: str, recursive: bool = False) -> bool:
        full_path = self._resolve_path(path)
        if not full_path.exists():
            return False
        if full_path.is_dir():
            if recursive:
                shutil.rmtree(full_path)
            else:
                full_path.rmdir()
        else:
            full_path.unlink()
        return True

    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[Dict[str, Any]]:
        full_path = self._resolve_path(path)

        if not full_path.exists():
            return []

        if recursive:
            files = full_path.rglob(pattern or "*")
        else:
            files = full_path.glob(pattern or "*")

        result = []
        for f in files:
            if f.is_file():
                stat = f.stat()
                result.append({
                    "path": f.relative_to(self.base_dir).as_posix(),
                    "size": stat.st_size,
                    "modified": stat.st_mtime,
                })

        return result

    def get_full_path(self, path: str) -> str:
        return str(self._resolve_path(path))

    def mkdir(self, path: str, parents: bool = True, exist_ok: bool = True) -> None:
        full_path = self._resolve_path(path)
        full_path.mkdir(parents=parents, exist_ok=exist_ok)


class S3Storage(StorageBackend):
    """AWS S3 storage backend."""

    # Error codes S3 returns when an IfNoneMatch precondition fails
    _PRECONDITION_CODES = {"PreconditionFailed", "ConditionalRequestConflict"}

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        max_retries: int = 3,
    ):
        """
        Initialize S3 storage.

        Args:
            bucket: S3 bucket name (this is the base_path)
            region: AWS region (auto-detected if None)
            aws_access_key_id: AWS access key (uses environment/IAM if None)
            aws_secret_access_key: AWS secret key
            aws_session_token: Session token for temporary credentials
            endpoint_url: Custom endpoint for S3-compatible services
            max_retries: Attempts for transient put/get failures
        """
        super().__init__(bucket)
        self.bucket = bucket
        self.region = region
        self.max_retries = max_retries

        import boto3

        session_kwargs = {}
        if aws_access_key_id:
            session_kwargs["aws_access_key_id"] = aws_access_key_id
        if aws_secret_access_key:
            session_kwargs["aws_secret_access_key"] = aws_secret_access_key
        if aws_session_token:
            session_kwargs["aws_session_token"] = aws_session_token
        if region:
            session_kwargs["region_name"] = region

        self.s3_client = boto3.client("s3", **session_kwargs, endpoint_url=endpoint_url)

    @property
    def backend_type(self) -> str:
        return "s3"

    def _get_s3_key(self, path: str) -> str:
        """Convert relative path to S3 key."""
        return path.lstrip("/")

    def _with_retries(self, description: str, fn):
        """Run fn, retrying with exponential backoff on failure."""
        for attempt in range(self.max_retries):
            try:
                return fn()
            except Exception as e:
                if attempt == self.max_retries - 1:
                    logger.error(f"Failed to {description} after {self.max_retries} attempts: {e}")
                    raise
                logger.warning(f"{description} attempt {attempt + 1} failed, retrying...")
                time.sleep(2 ** attempt)

    def write_bytes(self, data: bytes, path: str) -> str:
        key = self._get_s3_key(path)
        self._with_retries(
            f"upload {key}",
            lambda: self.s3_client.put_object(Bucket=self.bucket, Key=key, Body=data),
        )
        return f"s3://{self.bucket}/{key}"

    def write_bytes_if_absent(self, data: bytes, path: str) -> bool:
        from botocore.exceptions import ClientError

        key = self._get_s3_key(path)
        try:
            self.s3_client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                IfNoneMatch="*",
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in self._PRECONDITION_CODES:
                return False
            raise
        return True

    def read_bytes(self, path: str) -> bytes:
        key = self._get_s3_key(path)
        response = self._with_retries(
            f"read {key}",
            lambda: self.s3_client.get_object(Bucket=self.bucket, Key=key),
        )
        return response["Body"].read()

    def exists(self, path: str) -> bool:
        try:
            key = self._get_s3_key(path)
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except self.s3_client.exceptions.ClientError:
            return False

    def delete(self, path: str, recursive: bool = False) -> bool:
        if recursive:
            keys = [f["path"] for f in self.list_files(path, recursive=True)]
            for key in keys:
                self.s3_client.delete_object(Bucket=self.bucket, Key=key)
            return bool(keys)

        if not self.exists(path):
            return False
        key = self._get_s3_key(path)
        self.s3_client.delete_object(Bucket=self.bucket, Key=key)
        return True

    def list_files(
        self,
        path: str = "",
        pattern: Optional[str] = None,
        recursive: bool = False
    ) -> List[Dict[str, Any]]:
        import fnmatch

        prefix = self._get_s3_key(path)
        if prefix and not prefix.endswith("/"):
            prefix += "/"

        paginate_kwargs = {"Bucket": self.bucket, "Prefix": prefix}
        if not recursive:
            paginate_kwargs["Delimiter"] = "/"

        result = []
        paginator = self.s3_client.get_paginator("list_objects_v2")
        for page in paginator.paginate(**paginate_kwargs):
            for obj in page.get("Contents", []):
                key = obj["Key"]

                # Pattern matches against the filename only
                if pattern and not fnmatch.fnmatch(key.split("/")[-1], pattern):
                    continue

                result.append({
                    "path": key,
                    "size": obj["Size"],
                    "modified": obj["LastModified"].timestamp(),
                })

        return result

    def get_full_path(self, path: str) -> str:
        key = self._get_s3_key(path)
        return f"s3://{self.bucket}/{key}"

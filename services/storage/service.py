"""S3-compatible object storage for generated invoice documents.

Wraps the MinIO Python SDK, which talks to MinIO as well as Cloudflare R2
(endpoint ``<account>.r2.cloudflarestorage.com``, region ``auto``).

Provides:
- Lazy client construction that fails fast when credentials are missing
- Bucket auto-creation on first upload
- Retry with exponential backoff for transient S3 and network errors
- Typed errors so callers can tell "missing object" from "storage down"

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
import mimetypes
from typing import BinaryIO

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)
from urllib3.exceptions import HTTPError as TransportError

from services.shared.config import Settings

logger = logging.getLogger(__name__)

_MISSING_OBJECT_CODES = frozenset({"NoSuchKey", "NoSuchObject", "NotFound"})

# Raised by the MinIO SDK when the endpoint cannot be reached at all
_TRANSPORT_ERRORS = (TransportError, OSError)
_BACKEND_ERRORS = (S3Error, *_TRANSPORT_ERRORS)


class StorageError(Exception):
    """Raised when the document store rejects or fails an operation."""

    status_code = 500


class StorageNotConfiguredError(StorageError):
    """Raised when storage is disabled or its credentials are not set."""

    status_code = 503


class StorageUnavailableError(StorageError):
    """Raised when the storage endpoint cannot be reached."""

    status_code = 503


class DocumentNotFoundError(StorageError):
    """Raised when a requested object does not exist in the bucket."""

    status_code = 404

    def __init__(self, key: str) -> None:
        super().__init__(f"Document not found in storage: {key}")
        self.key = key


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    etag: str | None = None
    size: int | None = None


def _is_missing_object(error: S3Error) -> bool:
    return error.code in _MISSING_OBJECT_CODES


def _is_transient(error: BaseException) -> bool:
    """Retry network failures and S3 errors other than a missing object."""
    if isinstance(error, S3Error):
        return not _is_missing_object(error)
    return isinstance(error, _TRANSPORT_ERRORS)


_transient_retry = retry(
    retry=retry_if_exception(_is_transient),
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=1, max=10),
    reraise=True,
)


class StorageService:
    """Key-addressed blob store for invoice PDFs.

    One instance is built at process start and shared by the API and the
    scheduled-send worker.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_exists_cache: set[str] = set()

    @property
    def bucket(self) -> str:
        return self.settings.storage_bucket

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            StorageNotConfiguredError: If storage is disabled or credentials are missing
        """
        if self._client is None:
            if not self.settings.storage_enabled:
                raise StorageNotConfiguredError(
                    "Document storage is not enabled. Set APP_STORAGE_ENABLED=true."
                )
            if not self.settings.storage_access_key:
                raise StorageNotConfiguredError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise StorageNotConfiguredError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
                region=self.settings.storage_region,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage service is enabled and configured.

        Returns:
            True if storage is enabled and credentials are set
        """
        if not self.settings.storage_enabled:
            return False

        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if the bucket can be queried
        """
        if not self.is_available():
            return False

        try:
            client = self._get_client()
            client.bucket_exists(self.bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self, bucket: str) -> None:
        """Ensure bucket exists, create if missing.

        Args:
            bucket: Bucket name to check/create
        """
        if bucket in self._bucket_exists_cache:
            return

        client = self._get_client()
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_exists_cache.add(bucket)

    @staticmethod
    def _detect_content_type(filename: str) -> str:
        """Detect content type from filename.

        Args:
            filename: File name with extension

        Returns:
            MIME type string
        """
        content_type, _ = mimetypes.guess_type(filename)
        return content_type or "application/octet-stream"

    @_transient_retry
    def _put_object(self, key: str, data: bytes, content_type: str) -> str | None:
        client = self._get_client()
        self._ensure_bucket(self.bucket)

        data_stream: BinaryIO = io.BytesIO(data)
        result = client.put_object(
            bucket_name=self.bucket,
            object_name=key,
            data=data_stream,
            length=len(data),
            content_type=content_type,
        )
        return result.etag

    @_transient_retry
    def _get_object(self, key: str) -> bytes:
        client = self._get_client()
        response = client.get_object(bucket_name=self.bucket, object_name=key)
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    @_transient_retry
    def _remove_object(self, key: str) -> None:
        self._get_client().remove_object(bucket_name=self.bucket, object_name=key)

    @_transient_retry
    def _stat_object(self, key: str) -> None:
        self._get_client().stat_object(bucket_name=self.bucket, object_name=key)

    @staticmethod
    def _backend_error(error: Exception, key: str, action: str) -> StorageError:
        """Translate a MinIO SDK or transport failure into a storage error."""
        if isinstance(error, S3Error):
            if _is_missing_object(error):
                return DocumentNotFoundError(key)
            logger.error(f"S3 error {action} {key}: {error}")
            return StorageError(f"S3 error: {error.code} - {error.message}")

        logger.error(f"Storage unreachable while {action} {key}: {error}")
        return StorageUnavailableError(f"Document storage is unavailable: {error}")

    def put(self, key: str, data: bytes, content_type: str | None = None) -> StorageResult:
        """Upload bytes under ``key``, replacing any existing object.

        Args:
            key: Target object name in storage
            data: Bytes to upload
            content_type: MIME type (auto-detected from the key if not provided)

        Returns:
            StorageResult with upload details

        Raises:
            StorageNotConfiguredError: If storage is not configured
            StorageUnavailableError: If the endpoint stays unreachable after retries
            StorageError: If the upload fails after retries
        """
        if content_type is None:
            content_type = self._detect_content_type(key)

        try:
            etag = self._put_object(key, data, content_type)
        except _BACKEND_ERRORS as e:
            raise self._backend_error(e, key, "uploading") from e

        logger.info(f"Uploaded {key} to {self.bucket} ({len(data)} bytes)")

        return StorageResult(
            success=True,
            object_name=key,
            bucket=self.bucket,
            etag=etag,
            size=len(data),
        )

    def get(self, key: str) -> bytes:
        """Download the object stored under ``key``.

        Raises:
            DocumentNotFoundError: If the object does not exist
            StorageNotConfiguredError: If storage is not configured
            StorageUnavailableError: If the endpoint stays unreachable after retries
            StorageError: If the download fails after retries
        """
        try:
            return self._get_object(key)
        except _BACKEND_ERRORS as e:
            raise self._backend_error(e, key, "fetching") from e

    def delete(self, key: str) -> StorageResult:
        """Delete object from storage.

        Args:
            key: Object name to delete

        Returns:
            StorageResult indicating success

        Raises:
            DocumentNotFoundError: If the backend reports the object as missing
            StorageUnavailableError: If the endpoint stays unreachable after retries
            StorageError: For any other S3 failure
        """
        try:
            self._remove_object(key)
        except _BACKEND_ERRORS as e:
            raise self._backend_error(e, key, "deleting") from e

        logger.info(f"Deleted {key} from {self.bucket}")

        return StorageResult(success=True, object_name=key, bucket=self.bucket)

    def exists(self, key: str) -> bool:
        """Check if object exists in storage.

        Args:
            key: Object name to check

        Returns:
            True if object exists
        """
        try:
            self._stat_object(key)
            return True
        except _BACKEND_ERRORS as e:
            if isinstance(e, S3Error) and _is_missing_object(e):
                return False
            raise self._backend_error(e, key, "checking") from e

"""Factory for creating object storage clients based on configuration."""

import logging
import os

from .base import StorageBackend
from .client import ObjectStorageClient

log = logging.getLogger(__name__)

SUPPORTED_TYPES = ("s3", "gcs", "azure", "filesystem")


def _page_size_from_env() -> int | None:
    value = os.getenv("OBJECT_STORAGE_PAGE_SIZE")
    if not value:
        return None
    try:
        page_size = int(value)
    except ValueError as e:
        raise ValueError(f"OBJECT_STORAGE_PAGE_SIZE must be an integer, got {value!r}") from e
    if page_size <= 0:
        raise ValueError(f"OBJECT_STORAGE_PAGE_SIZE must be positive, got {page_size}")
    return page_size


def create_storage_client(storage_type: str | None = None) -> ObjectStorageClient:
    """Create an ObjectStorageClient for the configured backend.

    Backend type and credentials are read from environment variables.
    Vendor SDKs are imported lazily, so only the selected backend's
    dependency needs to be installed.

    Args:
        storage_type: Override backend type. Reads OBJECT_STORAGE_TYPE env var if None. Defaults to "s3".

    Returns:
        Configured ObjectStorageClient instance.

    Raises:
        ValueError: If storage_type is unsupported or the configuration is invalid.
        ImportError: If the optional dependency for the requested backend is not installed.
    """
    return ObjectStorageClient(create_backend(storage_type))


def create_backend(storage_type: str | None = None) -> StorageBackend:
    backend = (storage_type or os.getenv("OBJECT_STORAGE_TYPE", "s3")).lower()
    page_size = _page_size_from_env()
    log.debug("Creating %s storage backend (page_size=%s)", backend, page_size)

    if backend == "s3":
        return _create_s3_backend(page_size)
    if backend == "gcs":
        return _create_gcs_backend(page_size)
    if backend == "azure":
        return _create_azure_backend(page_size)
    if backend == "filesystem":
        return _create_filesystem_backend(page_size)

    raise ValueError(f"Unsupported storage type: {backend!r}. Supported: {', '.join(SUPPORTED_TYPES)}")


def _create_s3_backend(page_size: int | None) -> StorageBackend:
    from .s3_client import S3StorageBackend

    return S3StorageBackend(
        region=os.getenv("S3_REGION", "us-east-1"),
        endpoint_url=os.getenv("S3_ENDPOINT_URL"),
        aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        aws_session_token=os.getenv("AWS_SESSION_TOKEN"),
        page_size=page_size,
    )


def _create_gcs_backend(page_size: int | None) -> StorageBackend:
    from .gcs_client import GcsStorageBackend

    return GcsStorageBackend(
        project=os.getenv("GCS_PROJECT"),
        credentials_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
        page_size=page_size,
    )


def _create_azure_backend(page_size: int | None) -> StorageBackend:
    from .azure_client import AzureBlobStorageBackend

    return AzureBlobStorageBackend(
        connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING"),
        account_name=os.getenv("AZURE_STORAGE_ACCOUNT_NAME"),
        account_key=os.getenv("AZURE_STORAGE_ACCOUNT_KEY"),
        page_size=page_size,
    )


def _create_filesystem_backend(page_size: int | None) -> StorageBackend:
    from .filesystem_client import FilesystemStorageBackend

    root_path = os.getenv("FILESYSTEM_STORAGE_ROOT")
    if not root_path:
        root_path = "./data/object_storage"
        log.info("Using default filesystem storage root: %s", root_path)
    return FilesystemStorageBackend(root_path=root_path, page_size=page_size)

"""Provider-agnostic async object storage for S3, GCS, Azure Blob Storage and the local filesystem."""

from .base import (
    ListItem,
    ListItemObject,
    ListItemPrefix,
    ObjectProperties,
    Page,
    StorageBackend,
    UploadOptions,
)
from .client import ObjectStorageClient
from .content import ObjectStream
from .exceptions import (
    StorageBackendError,
    StorageConflictError,
    StorageError,
    StorageInvalidArgumentError,
    StorageMalformedResponseError,
    StorageNotFoundError,
)
from .factory import create_backend, create_storage_client
from .metadata import ContentSettings, merge_metadata, split_metadata
from .pagination import collect_pages, iterate_pages

__all__ = [
    "ContentSettings",
    "ListItem",
    "ListItemObject",
    "ListItemPrefix",
    "ObjectProperties",
    "ObjectStorageClient",
    "ObjectStream",
    "Page",
    "StorageBackend",
    "StorageBackendError",
    "StorageConflictError",
    "StorageError",
    "StorageInvalidArgumentError",
    "StorageMalformedResponseError",
    "StorageNotFoundError",
    "UploadOptions",
    "collect_pages",
    "create_backend",
    "create_storage_client",
    "iterate_pages",
    "merge_metadata",
    "split_metadata",
]

"""Google Cloud Storage backend."""

import asyncio
import functools
import logging
import re

from google.api_core.exceptions import (
    Conflict,
    Forbidden,
    NotFound,
    RetryError,
    ServerError,
    TooManyRequests,
)
from google.cloud import storage as gcs
from google.oauth2 import service_account

from .base import (
    CREATE_OPERATIONS,
    ListItemObject,
    ListItemPrefix,
    ObjectProperties,
    Page,
    StorageBackend,
    UploadOptions,
)
from .content import DEFAULT_CHUNK_SIZE, ObjectStream, UploadContent, is_stream, run_upload
from .exceptions import (
    StorageBackendError,
    StorageConflictError,
    StorageError,
    StorageMalformedResponseError,
    StorageNotFoundError,
)
from .metadata import ContentSettings, merge_metadata

log = logging.getLogger(__name__)

_NOT_FOUND_PATTERN = re.compile(r"NotFound|No such (object|bucket)")

# ContentSettings attribute -> Blob attribute
_BLOB_ATTRIBUTES = {
    "content_type": "content_type",
    "content_encoding": "content_encoding",
    "content_language": "content_language",
    "cache_control": "cache_control",
    "content_disposition": "content_disposition",
    "content_md5": "md5_hash",
}


def classify_error(error: Exception, operation: str) -> tuple[type[StorageError], bool]:
    """Map a google-api-core exception to a storage error class and a retryable flag."""
    if isinstance(error, NotFound):
        return StorageNotFoundError, False
    if isinstance(error, Conflict):
        # 409 is also returned when deleting a bucket that is not empty
        if operation in CREATE_OPERATIONS:
            return StorageConflictError, False
        return StorageBackendError, False
    if isinstance(error, (TooManyRequests, ServerError, RetryError, ConnectionError, TimeoutError)):
        return StorageBackendError, True
    if _NOT_FOUND_PATTERN.search(str(error)):
        return StorageNotFoundError, False
    return StorageBackendError, False


class GcsStorageBackend(StorageBackend):
    """Google Cloud Storage backend. Containers are buckets.

    Notes:
      - The region hint is used as the bucket location.
      - GCS answers 409 both for "you already own it" and "name taken by
        someone else"; ensure_container resolves that by reading the bucket
        after a conflict, and re-raises the conflict when it is not visible.
      - Deleting a non-empty bucket fails with StorageBackendError.
      - Removing a missing object raises StorageNotFoundError.
    """

    name = "gcs"

    def __init__(
        self,
        project: str | None = None,
        credentials_path: str | None = None,
        page_size: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._credentials = None
        self._page_size = page_size
        self._chunk_size = chunk_size
        kwargs: dict = {}
        if project:
            kwargs["project"] = project
        if credentials_path:
            self._credentials = service_account.Credentials.from_service_account_file(credentials_path)
            kwargs["credentials"] = self._credentials

        self._gcs_client = gcs.Client(**kwargs)

    async def close(self) -> None:
        await asyncio.to_thread(self._gcs_client.close)

    async def create_container(self, name: str, region: str | None, *, if_not_exists: bool) -> None:
        def _create():
            try:
                return self._gcs_client.create_bucket(name, location=region)
            except Conflict:
                if not if_not_exists:
                    raise
                try:
                    bucket = self._gcs_client.get_bucket(name)
                except (NotFound, Forbidden, Conflict):
                    pass
                else:
                    log.debug("[GCS:ensure_container:%s] Bucket already exists", name)
                    return bucket
                raise

        bucket = await asyncio.to_thread(_create)
        if bucket is None or not getattr(bucket, "name", None):
            raise StorageMalformedResponseError("Response does not contain bucket name")

    async def get_container_properties(self, name: str) -> str:
        bucket = await asyncio.to_thread(self._gcs_client.get_bucket, name)
        if bucket is None or not getattr(bucket, "name", None):
            raise StorageMalformedResponseError("Response does not contain bucket name")
        return bucket.name

    async def list_containers_page(self, continuation_token: str | None) -> Page:
        def _list():
            iterator = self._gcs_client.list_buckets(
                page_size=self._page_size,
                page_token=continuation_token,
            )
            entries = []
            for bucket in next(iterator.pages, []):
                if not getattr(bucket, "name", None):
                    raise StorageMalformedResponseError(f"Invalid bucket entry: {bucket!r}")
                entries.append(bucket.name)
            return Page(entries=entries, continuation_token=iterator.next_page_token)

        return await asyncio.to_thread(_list)

    async def delete_container(self, name: str) -> None:
        def _delete():
            self._gcs_client.bucket(name).delete()

        await asyncio.to_thread(_delete)

    async def upload_object(
        self,
        container: str,
        path: str,
        data: UploadContent,
        options: UploadOptions,
    ) -> None:
        def _upload(body):
            blob = self._gcs_client.bucket(container).blob(path, chunk_size=self._stream_chunk_size(body))
            for attr, blob_attr in _BLOB_ATTRIBUTES.items():
                value = getattr(options.content_settings, attr)
                if value is not None:
                    setattr(blob, blob_attr, value)
            if options.metadata:
                blob.metadata = dict(options.metadata)

            content_type = options.content_settings.content_type
            if is_stream(body):
                blob.upload_from_file(body, content_type=content_type)
            else:
                blob.upload_from_string(body, content_type=content_type)
            return blob

        blob = await run_upload(_upload, data)
        if not getattr(blob, "etag", None):
            raise StorageMalformedResponseError("Response was empty or not successful")

    async def open_object(self, container: str, path: str) -> ObjectStream:
        def _open():
            blob = self._gcs_client.bucket(container).get_blob(path)
            if blob is None:
                raise StorageNotFoundError("Object not found")
            return blob, blob.open("rb", chunk_size=self._chunk_size)

        blob, reader = await asyncio.to_thread(_open)
        chunk_size = self._chunk_size
        return ObjectStream(
            iter(lambda: reader.read(chunk_size), b""),
            close=reader.close,
            size=blob.size,
            on_error=functools.partial(
                self.translate_error, operation="get_object", container=container, path=path
            ),
        )

    async def get_object_properties(self, container: str, path: str) -> ObjectProperties:
        def _head():
            return self._gcs_client.bucket(container).get_blob(path)

        blob = await asyncio.to_thread(_head)
        if blob is None:
            raise StorageNotFoundError("Object not found")
        settings = ContentSettings(
            **{attr: getattr(blob, blob_attr, None) for attr, blob_attr in _BLOB_ATTRIBUTES.items()}
        )
        return ObjectProperties(
            path=path,
            size=blob.size or 0,
            last_modified=blob.updated,
            etag=blob.etag,
            metadata=merge_metadata(settings, blob.metadata),
        )

    async def list_objects_page(
        self, container: str, prefix: str, continuation_token: str | None
    ) -> Page:
        def _list():
            iterator = self._gcs_client.list_blobs(
                container,
                prefix=prefix or None,
                delimiter="/",
                page_size=self._page_size,
                page_token=continuation_token,
            )
            page = next(iterator.pages, None)
            if page is None:
                return Page(entries=[], continuation_token=None)

            keyed = []
            for blob in page:
                if not getattr(blob, "name", None):
                    raise StorageMalformedResponseError(f"Invalid object entry: {blob!r}")
                keyed.append(
                    (blob.name, ListItemObject(path=blob.name, last_modified=blob.updated, size=blob.size or 0))
                )
            for common in getattr(page, "prefixes", ()):
                keyed.append((common, ListItemPrefix(prefix=common)))
            keyed.sort(key=lambda pair: pair[0])
            return Page(entries=[entry for _, entry in keyed], continuation_token=iterator.next_page_token)

        return await asyncio.to_thread(_list)

    async def delete_object(self, container: str, path: str) -> None:
        def _delete():
            self._gcs_client.bucket(container).blob(path).delete()

        await asyncio.to_thread(_delete)

    def classify_error(self, error: Exception, operation: str) -> tuple[type[StorageError], bool]:
        return classify_error(error, operation)

    def _stream_chunk_size(self, data) -> int | None:
        # Resumable uploads need a chunk size that is a multiple of 256 KiB
        if is_stream(data):
            return max(256 * 1024, self._chunk_size // (256 * 1024) * (256 * 1024))
        return None

"""Azure Blob Storage backend."""

import asyncio
import base64
import functools
import logging
import re

from azure.core.exceptions import (
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.storage.blob import BlobPrefix, BlobServiceClient
from azure.storage.blob import ContentSettings as BlobContentSettings

from .base import (
    CREATE_OPERATIONS,
    ListItemObject,
    ListItemPrefix,
    ObjectProperties,
    Page,
    StorageBackend,
    UploadOptions,
)
from .content import ObjectStream, UploadContent, run_upload
from .exceptions import (
    StorageBackendError,
    StorageConflictError,
    StorageError,
    StorageMalformedResponseError,
    StorageNotFoundError,
)
from .metadata import ContentSettings, decode_content_md5, merge_metadata

log = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"ContainerNotFound", "BlobNotFound", "ResourceNotFound"})
_CONFLICT_CODES = frozenset({"ContainerAlreadyExists"})
_RETRYABLE_CODES = frozenset(
    {"ServerBusy", "InternalError", "OperationTimedOut", "ContainerBeingDeleted"}
)
# Older service versions and some emulators only put the marker in the message.
_NOT_FOUND_PATTERN = re.compile(r"NotFound")


def _error_code(error: Exception) -> str | None:
    code = getattr(error, "error_code", None)
    if code is None:
        return None
    return str(getattr(code, "value", code))


def classify_error(error: Exception, operation: str) -> tuple[type[StorageError], bool]:
    """Map an Azure SDK exception to a storage error class and a retryable flag."""
    code = _error_code(error)
    status = getattr(error, "status_code", None)

    if isinstance(error, ResourceNotFoundError) or code in _NOT_FOUND_CODES:
        return StorageNotFoundError, False
    if code in _RETRYABLE_CODES:
        return StorageBackendError, True
    if isinstance(error, ResourceExistsError) or code in _CONFLICT_CODES:
        if operation in CREATE_OPERATIONS:
            return StorageConflictError, False
        return StorageBackendError, False
    if isinstance(error, (ServiceRequestError, ServiceResponseError, ConnectionError, TimeoutError)):
        return StorageBackendError, True
    if isinstance(error, HttpResponseError) and status is not None and (status == 429 or status >= 500):
        return StorageBackendError, True
    if _NOT_FOUND_PATTERN.search(str(error)):
        return StorageNotFoundError, False
    return StorageBackendError, False


def _to_blob_content_settings(settings: ContentSettings) -> BlobContentSettings:
    content_md5 = None
    if settings.content_md5 is not None:
        # Azure checks this against the bytes it receives
        content_md5 = bytearray(decode_content_md5(settings.content_md5))
    return BlobContentSettings(
        content_type=settings.content_type,
        content_encoding=settings.content_encoding,
        content_language=settings.content_language,
        content_disposition=settings.content_disposition,
        cache_control=settings.cache_control,
        content_md5=content_md5,
    )


def _from_blob_content_settings(settings: BlobContentSettings | None) -> ContentSettings:
    if settings is None:
        return ContentSettings()
    content_md5 = None
    if settings.content_md5:
        content_md5 = base64.b64encode(bytes(settings.content_md5)).decode("ascii")
    return ContentSettings(
        content_type=settings.content_type,
        content_encoding=settings.content_encoding,
        content_language=settings.content_language,
        cache_control=settings.cache_control,
        content_disposition=settings.content_disposition,
        content_md5=content_md5,
    )


class AzureBlobStorageBackend(StorageBackend):
    """Azure Blob Storage backend.

    Notes:
      - The region hint is ignored; Azure places containers in the account's region.
      - Containers are created private (no public access).
      - ensure_container relies on the create call failing with
        ContainerAlreadyExists, so there is no check-then-create window.
      - Deleting a container deletes every blob in it.
      - Removing a missing blob raises StorageNotFoundError.
    """

    name = "azure"

    def __init__(
        self,
        connection_string: str | None = None,
        account_name: str | None = None,
        account_key: str | None = None,
        page_size: int | None = None,
        service_client: BlobServiceClient | None = None,
    ):
        if service_client is not None:
            self._service_client = service_client
        elif connection_string:
            self._service_client = BlobServiceClient.from_connection_string(connection_string)
        elif account_name and account_key:
            account_url = f"https://{account_name}.blob.core.windows.net"
            self._service_client = BlobServiceClient(account_url=account_url, credential=account_key)
        else:
            raise ValueError("Azure Blob Storage requires either connection_string or account_name + account_key")
        self._page_size = page_size

    async def close(self) -> None:
        await asyncio.to_thread(self._service_client.close)

    async def create_container(self, name: str, region: str | None, *, if_not_exists: bool) -> None:
        def _create():
            try:
                container_client = self._service_client.create_container(name, public_access=None)
            except ResourceExistsError as e:
                if if_not_exists and _error_code(e) in (None, "ContainerAlreadyExists"):
                    log.debug("[AzureBlob:ensure_container:%s] Container already exists", name)
                    return name
                raise
            return getattr(container_client, "container_name", None)

        created = await asyncio.to_thread(_create)
        if not created:
            raise StorageMalformedResponseError("Response does not contain container name")

    async def get_container_properties(self, name: str) -> str:
        def _get():
            return self._service_client.get_container_client(name).get_container_properties()

        properties = await asyncio.to_thread(_get)
        if not properties or not getattr(properties, "name", None):
            raise StorageMalformedResponseError("Response does not contain container name")
        return properties.name

    async def list_containers_page(self, continuation_token: str | None) -> Page:
        def _list():
            pages = self._service_client.list_containers(
                results_per_page=self._page_size
            ).by_page(continuation_token=continuation_token)
            entries = []
            for container in next(pages, []):
                name = getattr(container, "name", None)
                if not name:
                    raise StorageMalformedResponseError(f"Invalid container entry: {container!r}")
                entries.append(name)
            return Page(entries=entries, continuation_token=pages.continuation_token)

        return await asyncio.to_thread(_list)

    async def delete_container(self, name: str) -> None:
        await asyncio.to_thread(self._service_client.delete_container, name)

    async def upload_object(
        self,
        container: str,
        path: str,
        data: UploadContent,
        options: UploadOptions,
    ) -> None:
        content_settings = _to_blob_content_settings(options.content_settings)

        def _upload(body):
            blob_client = self._service_client.get_blob_client(container, path)
            return blob_client.upload_blob(
                body,
                overwrite=True,
                metadata=options.metadata or None,
                content_settings=content_settings,
            )

        response = await run_upload(_upload, data)
        if not response or not response.get("etag"):
            raise StorageMalformedResponseError("Response was empty or not successful")

    async def open_object(self, container: str, path: str) -> ObjectStream:
        def _open():
            return self._service_client.get_blob_client(container, path).download_blob()

        downloader = await asyncio.to_thread(_open)
        return ObjectStream(
            downloader.chunks(),
            size=downloader.size,
            on_error=functools.partial(
                self.translate_error, operation="get_object", container=container, path=path
            ),
        )

    async def get_object_properties(self, container: str, path: str) -> ObjectProperties:
        def _head():
            return self._service_client.get_blob_client(container, path).get_blob_properties()

        properties = await asyncio.to_thread(_head)
        if properties is None or properties.size is None:
            raise StorageMalformedResponseError("Response does not contain blob properties")
        settings = _from_blob_content_settings(properties.content_settings)
        return ObjectProperties(
            path=path,
            size=properties.size,
            last_modified=properties.last_modified,
            etag=(properties.etag or "").strip('"') or None,
            metadata=merge_metadata(settings, properties.metadata),
        )

    async def list_objects_page(
        self, container: str, prefix: str, continuation_token: str | None
    ) -> Page:
        def _list():
            container_client = self._service_client.get_container_client(container)
            pages = container_client.walk_blobs(
                name_starts_with=prefix or None,
                delimiter="/",
                results_per_page=self._page_size,
            ).by_page(continuation_token=continuation_token)
            entries = []
            for item in next(pages, []):
                if isinstance(item, BlobPrefix):
                    entries.append(ListItemPrefix(prefix=item.name))
                elif getattr(item, "name", None):
                    entries.append(
                        ListItemObject(
                            path=item.name,
                            last_modified=item.last_modified,
                            size=item.size or 0,
                        )
                    )
                else:
                    raise StorageMalformedResponseError(f"Invalid listing entry: {item!r}")
            return Page(entries=entries, continuation_token=pages.continuation_token)

        return await asyncio.to_thread(_list)

    async def delete_object(self, container: str, path: str) -> None:
        def _delete():
            self._service_client.get_blob_client(container, path).delete_blob()

        await asyncio.to_thread(_delete)

    def classify_error(self, error: Exception, operation: str) -> tuple[type[StorageError], bool]:
        return classify_error(error, operation)

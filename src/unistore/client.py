"""Provider-agnostic object storage client."""

import functools
import logging
from collections.abc import AsyncIterator, Awaitable, Mapping
from typing import TypeVar

from .base import ListItem, ListItemObject, ListItemPrefix, ObjectProperties, StorageBackend, UploadOptions
from .content import ObjectStream, validate_content
from .exceptions import (
    StorageError,
    StorageInvalidArgumentError,
    StorageMalformedResponseError,
    StorageNotFoundError,
)
from .metadata import decode_content_md5, split_metadata
from .pagination import iterate_pages

log = logging.getLogger(__name__)

T = TypeVar("T")


def _require_name(value, argument: str, operation: str, container: str | None = None) -> None:
    if not isinstance(value, str) or not value:
        raise StorageInvalidArgumentError(
            f"Argument {argument} must be a non-empty string",
            operation=operation,
            container=container,
        )


class ObjectStorageClient:
    """Container and object operations over any StorageBackend.

    Validates arguments before any backend call, splits metadata,
    drives pagination and turns backend failures into StorageError
    subclasses. Holds no state besides the backend.
    """

    def __init__(self, backend: StorageBackend):
        self._backend = backend

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    async def close(self) -> None:
        await self._backend.close()

    async def __aenter__(self) -> "ObjectStorageClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Containers

    async def create_container(self, name: str, region: str | None = None) -> None:
        """Create a container. Raises StorageConflictError if the name is taken.

        ``region`` is a placement hint; backends without regional placement
        ignore it.
        """
        _require_name(name, "name", "create_container")
        await self._call(
            "create_container",
            self._backend.create_container(name, region, if_not_exists=False),
            container=name,
        )
        log.info("[ObjectStorage:create_container:%s] Container created", name)

    async def ensure_container(self, name: str, region: str | None = None) -> None:
        """Create a container unless it already exists."""
        _require_name(name, "name", "ensure_container")
        await self._call(
            "ensure_container",
            self._backend.create_container(name, region, if_not_exists=True),
            container=name,
        )
        log.debug("[ObjectStorage:ensure_container:%s] Container present", name)

    async def container_exists(self, name: str) -> bool:
        _require_name(name, "name", "container_exists")
        try:
            await self._call(
                "container_exists",
                self._backend.get_container_properties(name),
                container=name,
            )
        except StorageNotFoundError:
            return False
        return True

    async def list_containers(self) -> list[str]:
        """Return the names of all containers visible to the credentials."""
        return [name async for name in self.iter_containers()]

    async def iter_containers(self) -> AsyncIterator[str]:
        operation = "list_containers"
        pages = iterate_pages(self._backend.list_containers_page, operation=operation)
        async for entry in self._guard(pages, operation):
            if not isinstance(entry, str) or not entry:
                raise StorageMalformedResponseError(
                    f"Invalid container entry: {entry!r}", operation=operation
                )
            yield entry

    async def delete_container(self, name: str) -> None:
        """Delete a container. Raises StorageNotFoundError if it does not exist."""
        _require_name(name, "name", "delete_container")
        await self._call(
            "delete_container",
            self._backend.delete_container(name),
            container=name,
        )
        log.info("[ObjectStorage:delete_container:%s] Container deleted", name)

    # Objects

    async def put_object(
        self,
        container: str,
        path: str,
        data,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Upload an object.

        ``data`` may be a binary stream, a str or a bytes-like object.
        Well-known headers in ``metadata`` (Content-Type, Cache-Control, ...)
        are sent as transport options, everything else as user metadata.
        """
        operation = "put_object"
        _require_name(container, "container", operation)
        _require_name(path, "path", operation, container)
        content = validate_content(data, operation, container, path)
        if metadata is not None and not isinstance(metadata, Mapping):
            raise StorageInvalidArgumentError(
                "Argument metadata must be a mapping",
                operation=operation,
                container=container,
                path=path,
            )
        content_settings, user_metadata = split_metadata(metadata)
        if content_settings.content_md5 is not None:
            try:
                decode_content_md5(content_settings.content_md5)
            except StorageInvalidArgumentError as e:
                e.operation, e.container, e.path = operation, container, path
                raise

        options = UploadOptions(content_settings=content_settings, metadata=user_metadata)
        await self._call(
            operation,
            self._backend.upload_object(container, path, content, options),
            container=container,
            path=path,
        )
        log.debug("[ObjectStorage:%s:%s/%s] Object uploaded", operation, container, path)

    async def get_object(self, container: str, path: str) -> ObjectStream:
        """Open an object for reading. Raises StorageNotFoundError if missing."""
        operation = "get_object"
        _require_name(container, "container", operation)
        _require_name(path, "path", operation, container)
        return await self._call(
            operation,
            self._backend.open_object(container, path),
            container=container,
            path=path,
        )

    async def head_object(self, container: str, path: str) -> ObjectProperties:
        operation = "head_object"
        _require_name(container, "container", operation)
        _require_name(path, "path", operation, container)
        return await self._call(
            operation,
            self._backend.get_object_properties(container, path),
            container=container,
            path=path,
        )

    async def list_objects(self, container: str, prefix: str = "") -> list[ListItem]:
        """List objects and prefixes directly under ``prefix`` (not recursive)."""
        return [item async for item in self.iter_objects(container, prefix)]

    async def iter_objects(self, container: str, prefix: str = "") -> AsyncIterator[ListItem]:
        operation = "list_objects"
        _require_name(container, "container", operation)
        if prefix is None:
            prefix = ""
        if not isinstance(prefix, str):
            raise StorageInvalidArgumentError(
                "Argument prefix must be a string", operation=operation, container=container
            )
        fetch_page = functools.partial(self._backend.list_objects_page, container, prefix)
        pages = iterate_pages(fetch_page, operation=operation, container=container)
        async for entry in self._guard(pages, operation, container):
            if not isinstance(entry, (ListItemObject, ListItemPrefix)):
                raise StorageMalformedResponseError(
                    f"Invalid listing entry: {entry!r}", operation=operation, container=container
                )
            yield entry

    async def remove_object(self, container: str, path: str) -> None:
        """Delete an object. Behaviour for missing objects depends on the backend."""
        operation = "remove_object"
        _require_name(container, "container", operation)
        _require_name(path, "path", operation, container)
        await self._call(
            operation,
            self._backend.delete_object(container, path),
            container=container,
            path=path,
        )
        log.debug("[ObjectStorage:%s:%s/%s] Object removed", operation, container, path)

    # Internal methods

    async def _call(
        self,
        operation: str,
        awaitable: Awaitable[T],
        container: str | None = None,
        path: str | None = None,
    ) -> T:
        try:
            return await awaitable
        except Exception as e:
            translated = self._backend.translate_error(e, operation, container, path)
            self._log_failure(translated)
            if translated is e:
                raise
            raise translated from e

    async def _guard(
        self,
        entries: AsyncIterator,
        operation: str,
        container: str | None = None,
    ) -> AsyncIterator:
        try:
            async for entry in entries:
                yield entry
        except Exception as e:
            translated = self._backend.translate_error(e, operation, container)
            self._log_failure(translated)
            if translated is e:
                raise
            raise translated from e

    def _log_failure(self, error: StorageError) -> None:
        if isinstance(error, StorageNotFoundError) and error.operation == "container_exists":
            return
        log.warning(
            "[ObjectStorage:%s:%s] %s: %s",
            error.operation,
            "/".join(p for p in (error.container, error.path) if p) or "*",
            type(error).__name__,
            error,
        )

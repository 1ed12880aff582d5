"""
Filesystem-based storage backend.

Stores containers as directories under a root path; object metadata is kept
in JSON sidecar files outside the container directories.
"""

import asyncio
import base64
import functools
import hashlib
import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone

from .base import (
    CREATE_OPERATIONS,
    READ_OPERATIONS,
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
    StorageInvalidArgumentError,
    StorageNotFoundError,
)
from .metadata import CONTENT_MD5, ContentSettings, merge_metadata

log = logging.getLogger(__name__)

_META_DIR = ".unistore-meta"
_TMP_PREFIX = ".unistore-tmp-"


def classify_error(error: Exception, operation: str) -> tuple[type[StorageError], bool]:
    """Map an OSError to a storage error class and a retryable flag."""
    if isinstance(error, FileNotFoundError):
        return StorageNotFoundError, False
    if isinstance(error, (IsADirectoryError, NotADirectoryError)) and operation in READ_OPERATIONS:
        # "a/b" exists as a prefix only
        return StorageNotFoundError, False
    if isinstance(error, FileExistsError) and operation in CREATE_OPERATIONS:
        return StorageConflictError, False
    if isinstance(error, (InterruptedError, BlockingIOError, TimeoutError)):
        return StorageBackendError, True
    return StorageBackendError, False


def _prune_empty_dirs(directory: str, stop: str) -> None:
    """Remove ``directory`` and its empty parents, up to but excluding ``stop``.

    Keeps a prefix from lingering in listings once its last object is gone.
    """
    while directory != stop and directory.startswith(stop):
        try:
            os.rmdir(directory)
        except OSError:
            break
        directory = os.path.dirname(directory)


def _decode_offset(continuation_token: str | None) -> int:
    return int(continuation_token) if continuation_token else 0


class FilesystemStorageBackend(StorageBackend):
    """
    Storage backend using the local filesystem.

    Directory structure:
    {root_path}/
    ├── {container}/
    │   └── folder/a.txt
    └── .unistore-meta/
        └── {container}/{sha256(path)}.json

    Notes:
      - The region hint is ignored.
      - Writes go to temporary files (object and sidecar) that are renamed
        into place, so a failed upload leaves neither file nor any directory
        it created behind.
      - Deleting a container deletes every object in it.
      - Removing a missing object raises StorageNotFoundError.
      - Paths with empty, "." or ".." segments are rejected.
    """

    name = "filesystem"

    def __init__(
        self,
        root_path: str,
        page_size: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if not root_path:
            raise ValueError("root_path cannot be empty")

        self.root_path = os.path.abspath(root_path)
        self._page_size = page_size
        self._chunk_size = chunk_size

        try:
            os.makedirs(self.root_path, exist_ok=True)
            log.info("FilesystemStorageBackend initialized at: %s", self.root_path)
        except OSError as e:
            log.error("Failed to create root directory '%s': %s", self.root_path, e)
            raise ValueError(f"Could not create root_path '{self.root_path}': {e}") from e

    # Path helpers

    def _container_dir(self, container: str) -> str:
        if container.startswith(".") or "/" in container or os.sep in container:
            raise StorageInvalidArgumentError(f"Invalid container name for filesystem storage: {container!r}")
        return os.path.join(self.root_path, container)

    def _split_path(self, path: str) -> list[str]:
        parts = path.split("/")
        if any(part in ("", ".", "..") or os.sep in part for part in parts):
            raise StorageInvalidArgumentError(f"Invalid object path for filesystem storage: {path!r}")
        return parts

    def _object_file(self, container: str, path: str) -> str:
        return os.path.join(self._container_dir(container), *self._split_path(path))

    def _meta_file(self, container: str, path: str) -> str:
        # Flat, hashed names never collide with an object path
        self._split_path(path)
        name = hashlib.sha256(path.encode("utf-8")).hexdigest() + ".json"
        return os.path.join(self.root_path, _META_DIR, container, name)

    def _require_container(self, container: str) -> str:
        container_dir = self._container_dir(container)
        if not os.path.isdir(container_dir):
            raise FileNotFoundError(f"Container not found: {container}")
        return container_dir

    def _paginate(self, entries: list, continuation_token: str | None) -> Page:
        offset = _decode_offset(continuation_token)
        if not self._page_size:
            return Page(entries=entries[offset:])
        end = offset + self._page_size
        next_token = str(end) if end < len(entries) else None
        return Page(entries=entries[offset:end], continuation_token=next_token)

    # Containers

    async def create_container(self, name: str, region: str | None, *, if_not_exists: bool) -> None:
        container_dir = self._container_dir(name)

        def _create():
            try:
                os.mkdir(container_dir)
            except FileExistsError:
                if not if_not_exists:
                    raise
                if not os.path.isdir(container_dir):
                    raise
                log.debug("[FSStorage:ensure_container:%s] Container already exists", name)

        await asyncio.to_thread(_create)

    async def get_container_properties(self, name: str) -> str:
        await asyncio.to_thread(self._require_container, name)
        return name

    async def list_containers_page(self, continuation_token: str | None) -> Page:
        def _list():
            with os.scandir(self.root_path) as it:
                names = sorted(
                    entry.name
                    for entry in it
                    if entry.is_dir() and not entry.name.startswith(".")
                )
            return self._paginate(names, continuation_token)

        return await asyncio.to_thread(_list)

    async def delete_container(self, name: str) -> None:
        def _delete():
            container_dir = self._require_container(name)
            shutil.rmtree(container_dir)
            shutil.rmtree(os.path.join(self.root_path, _META_DIR, name), ignore_errors=True)

        await asyncio.to_thread(_delete)

    # Objects

    async def upload_object(
        self,
        container: str,
        path: str,
        data: UploadContent,
        options: UploadOptions,
    ) -> None:
        target = self._object_file(container, path)
        meta_file = self._meta_file(container, path)

        def _upload(body):
            container_dir = self._require_container(container)
            parent = os.path.dirname(target)
            meta_dir = os.path.dirname(meta_file)
            tmp_path = os.path.join(parent, f"{_TMP_PREFIX}{uuid.uuid4().hex}")
            tmp_meta = os.path.join(meta_dir, f"{_TMP_PREFIX}{uuid.uuid4().hex}")
            digest = hashlib.md5()
            size = 0
            try:
                os.makedirs(parent, exist_ok=True)
                with open(tmp_path, "wb") as f:
                    if is_stream(body):
                        while True:
                            chunk = body.read(self._chunk_size)
                            if not chunk:
                                break
                            if isinstance(chunk, str):
                                chunk = chunk.encode("utf-8")
                            digest.update(chunk)
                            size += len(chunk)
                            f.write(chunk)
                    else:
                        if isinstance(body, str):
                            body = body.encode("utf-8")
                        digest.update(body)
                        size = len(body)
                        f.write(body)

                content_md5 = base64.b64encode(digest.digest()).decode("ascii")
                expected = options.content_settings.content_md5
                if expected is not None and expected != content_md5:
                    raise StorageBackendError(
                        f"{CONTENT_MD5} mismatch: expected {expected}, computed {content_md5}"
                    )

                settings = {
                    key: value
                    for key, value in options.content_settings.as_headers().items()
                    if key != CONTENT_MD5
                }
                settings[CONTENT_MD5] = content_md5
                os.makedirs(meta_dir, exist_ok=True)
                with open(tmp_meta, "w", encoding="utf-8") as f:
                    json.dump({"path": path, "headers": settings, "metadata": options.metadata}, f)

                os.replace(tmp_path, target)
                os.replace(tmp_meta, meta_file)
            except Exception:
                for leftover in (tmp_path, tmp_meta):
                    if os.path.exists(leftover):
                        os.remove(leftover)
                if not os.path.exists(target):
                    _prune_empty_dirs(parent, container_dir)
                raise

            log.debug(
                "[FSStorage:put_object:%s/%s] Wrote %d bytes under %s",
                container,
                path,
                size,
                container_dir,
            )

        await run_upload(_upload, data)

    async def open_object(self, container: str, path: str) -> ObjectStream:
        object_file = self._object_file(container, path)

        def _open():
            self._require_container(container)
            f = open(object_file, "rb")
            return f, os.fstat(f.fileno()).st_size

        f, size = await asyncio.to_thread(_open)
        chunk_size = self._chunk_size
        return ObjectStream(
            iter(lambda: f.read(chunk_size), b""),
            close=f.close,
            size=size,
            on_error=functools.partial(
                self.translate_error, operation="get_object", container=container, path=path
            ),
        )

    async def get_object_properties(self, container: str, path: str) -> ObjectProperties:
        object_file = self._object_file(container, path)
        meta_file = self._meta_file(container, path)

        def _head():
            self._require_container(container)
            st = os.stat(object_file)
            if not os.path.isfile(object_file):
                raise IsADirectoryError(object_file)
            headers: dict = {}
            metadata: dict = {}
            if os.path.exists(meta_file):
                with open(meta_file, encoding="utf-8") as f:
                    sidecar = json.load(f)
                headers = sidecar.get("headers") or {}
                metadata = sidecar.get("metadata") or {}
            return st, headers, metadata

        st, headers, metadata = await asyncio.to_thread(_head)
        settings = ContentSettings(
            content_type=headers.get("Content-Type"),
            content_encoding=headers.get("Content-Encoding"),
            content_language=headers.get("Content-Language"),
            cache_control=headers.get("Cache-Control"),
            content_disposition=headers.get("Content-Disposition"),
            content_md5=headers.get(CONTENT_MD5),
        )
        return ObjectProperties(
            path=path,
            size=st.st_size,
            last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            etag=headers.get(CONTENT_MD5),
            metadata=merge_metadata(settings, metadata),
        )

    async def list_objects_page(
        self, container: str, prefix: str, continuation_token: str | None
    ) -> Page:
        def _list():
            container_dir = self._require_container(container)
            directory, _, name_prefix = prefix.rpartition("/")
            dir_parts = self._split_path(directory) if directory else []
            base = os.path.join(container_dir, *dir_parts)
            path_prefix = f"{directory}/" if directory else ""

            entries = []
            if os.path.isdir(base):
                with os.scandir(base) as it:
                    for entry in sorted(it, key=lambda e: e.name):
                        if not entry.name.startswith(name_prefix) or entry.name.startswith(_TMP_PREFIX):
                            continue
                        if entry.is_dir():
                            entries.append(ListItemPrefix(prefix=f"{path_prefix}{entry.name}/"))
                        elif entry.is_file():
                            st = entry.stat()
                            entries.append(
                                ListItemObject(
                                    path=f"{path_prefix}{entry.name}",
                                    last_modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
                                    size=st.st_size,
                                )
                            )
            return self._paginate(entries, continuation_token)

        return await asyncio.to_thread(_list)

    async def delete_object(self, container: str, path: str) -> None:
        object_file = self._object_file(container, path)
        meta_file = self._meta_file(container, path)

        def _delete():
            container_dir = self._require_container(container)
            os.remove(object_file)
            if os.path.exists(meta_file):
                os.remove(meta_file)
            _prune_empty_dirs(os.path.dirname(object_file), container_dir)

        await asyncio.to_thread(_delete)

    def classify_error(self, error: Exception, operation: str) -> tuple[type[StorageError], bool]:
        return classify_error(error, operation)

"""Shared fixtures for object storage tests."""

import pytest

from unistore.base import (
    ListItemObject,
    ListItemPrefix,
    ObjectProperties,
    Page,
    StorageBackend,
)
from unistore.client import ObjectStorageClient
from unistore.content import ObjectStream, is_stream
from unistore.exceptions import (
    StorageBackendError,
    StorageConflictError,
    StorageNotFoundError,
)
from unistore.filesystem_client import FilesystemStorageBackend


class FakeSdkError(Exception):
    """Stand-in for a vendor SDK error carrying a service error code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"The request failed: {code}")


def _paginate(entries: list, token: str | None, page_size: int) -> Page:
    offset = int(token) if token else 0
    end = offset + page_size
    return Page(
        entries=entries[offset:end],
        continuation_token=str(end) if end < len(entries) else None,
    )


class InMemoryBackend(StorageBackend):
    """Dict-backed backend that records every primitive call."""

    name = "memory"

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.containers: dict[str, dict[str, bytes]] = {}
        self.uploads: list = []
        self.calls: list[str] = []
        self._failures: dict[str, tuple[int, str]] = {}

    def fail(self, method: str, code: str, after: int = 0) -> None:
        """Make ``method`` raise FakeSdkError(code) once it has been called ``after`` times."""
        self._failures[method] = (after, code)

    def _record(self, method: str) -> None:
        self.calls.append(method)
        if method in self._failures:
            after, code = self._failures[method]
            if self.calls.count(method) > after:
                raise FakeSdkError(code)

    def _container(self, name: str) -> dict[str, bytes]:
        if name not in self.containers:
            raise FakeSdkError("ContainerNotFound")
        return self.containers[name]

    async def create_container(self, name, region, *, if_not_exists):
        self._record("create_container")
        if name in self.containers:
            if if_not_exists:
                return
            raise FakeSdkError("ContainerAlreadyExists")
        self.containers[name] = {}

    async def get_container_properties(self, name):
        self._record("get_container_properties")
        self._container(name)
        return name

    async def list_containers_page(self, continuation_token):
        self._record("list_containers_page")
        return _paginate(sorted(self.containers), continuation_token, self.page_size)

    async def delete_container(self, name):
        self._record("delete_container")
        self._container(name)
        del self.containers[name]

    async def upload_object(self, container, path, data, options):
        self._record("upload_object")
        objects = self._container(container)
        if is_stream(data):
            body = data.read()
        elif isinstance(data, str):
            body = data.encode("utf-8")
        else:
            body = data
        self.uploads.append((container, path, options))
        objects[path] = body

    async def open_object(self, container, path):
        self._record("open_object")
        objects = self._container(container)
        if path not in objects:
            raise FakeSdkError("BlobNotFound")
        body = objects[path]
        return ObjectStream(iter([body[i:i + 3] for i in range(0, len(body), 3)]), size=len(body))

    async def get_object_properties(self, container, path):
        self._record("get_object_properties")
        objects = self._container(container)
        if path not in objects:
            raise FakeSdkError("BlobNotFound")
        return ObjectProperties(path=path, size=len(objects[path]))

    async def list_objects_page(self, container, prefix, continuation_token):
        self._record("list_objects_page")
        objects = self._container(container)
        entries = []
        seen = set()
        for path in sorted(objects):
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            if "/" in rest:
                sub = prefix + rest.split("/", 1)[0] + "/"
                if sub not in seen:
                    seen.add(sub)
                    entries.append(ListItemPrefix(prefix=sub))
            else:
                entries.append(ListItemObject(path=path, last_modified=None, size=len(objects[path])))
        return _paginate(entries, continuation_token, self.page_size)

    async def delete_object(self, container, path):
        self._record("delete_object")
        objects = self._container(container)
        if path not in objects:
            raise FakeSdkError("BlobNotFound")
        del objects[path]

    def classify_error(self, error, operation):
        code = getattr(error, "code", "")
        if code.endswith("NotFound"):
            return StorageNotFoundError, False
        if code == "ContainerAlreadyExists":
            return StorageConflictError, False
        return StorageBackendError, code == "ServerBusy"


@pytest.fixture()
def memory_backend():
    return InMemoryBackend()


@pytest.fixture()
def memory_client(memory_backend):
    return ObjectStorageClient(memory_backend)


@pytest.fixture()
def fs_backend(tmp_path):
    return FilesystemStorageBackend(root_path=str(tmp_path / "storage"), page_size=2)


@pytest.fixture()
def fs_client(fs_backend):
    return ObjectStorageClient(fs_backend)

"""Abstract base class and result types for object storage backends."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Union

from .exceptions import StorageBackendError, StorageError
from .metadata import ContentSettings

if TYPE_CHECKING:
    from .content import ObjectStream, UploadContent

# Operations that require an exclusive name; only these report conflicts.
CREATE_OPERATIONS = frozenset({"create_container", "ensure_container"})

# Operations where a missing target is reported as not found.
READ_OPERATIONS = frozenset({"get_object", "head_object", "remove_object"})


@dataclass(frozen=True)
class ListItemObject:
    """An object returned when listing a container."""

    path: str
    last_modified: datetime | None
    size: int


@dataclass(frozen=True)
class ListItemPrefix:
    """A common prefix (virtual folder) returned by a non-recursive listing."""

    prefix: str


ListItem = Union[ListItemObject, ListItemPrefix]


@dataclass
class Page:
    """One page of a listing and the token needed to fetch the next one."""

    entries: list
    continuation_token: str | None = None


@dataclass(frozen=True)
class ObjectProperties:
    """Properties of a stored object.

    ``metadata`` holds user metadata and the well-known headers merged
    into a single dictionary.
    """

    path: str
    size: int
    last_modified: datetime | None = None
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class UploadOptions:
    """Upload options after the caller's metadata has been split."""

    content_settings: ContentSettings = field(default_factory=ContentSettings)
    metadata: dict[str, str] = field(default_factory=dict)


class StorageBackend(ABC):
    """Provider adapter over a single vendor SDK.

    Implementations may let SDK exceptions escape from any primitive;
    ObjectStorageClient runs them through translate_error. A structurally
    invalid success response must be raised as StorageMalformedResponseError.
    """

    name = "backend"

    @abstractmethod
    async def create_container(
        self, name: str, region: str | None, *, if_not_exists: bool
    ) -> None:
        """Create a container, tolerating an existing one when if_not_exists is set."""

    @abstractmethod
    async def get_container_properties(self, name: str) -> str:
        """Return the container name. Raises the SDK's not-found error if absent."""

    @abstractmethod
    async def list_containers_page(self, continuation_token: str | None) -> Page:
        """Return one page of container names."""

    @abstractmethod
    async def delete_container(self, name: str) -> None:
        """Delete a container."""

    @abstractmethod
    async def upload_object(
        self,
        container: str,
        path: str,
        data: "UploadContent",
        options: UploadOptions,
    ) -> None:
        """Upload a validated str, bytes or binary stream."""

    @abstractmethod
    async def open_object(self, container: str, path: str) -> "ObjectStream":
        """Open an object for sequential reading."""

    @abstractmethod
    async def get_object_properties(self, container: str, path: str) -> ObjectProperties:
        """Return the properties and merged metadata of an object."""

    @abstractmethod
    async def list_objects_page(
        self, container: str, prefix: str, continuation_token: str | None
    ) -> Page:
        """Return one page of ListItemObject / ListItemPrefix entries, delimited by '/'."""

    @abstractmethod
    async def delete_object(self, container: str, path: str) -> None:
        """Delete a single object."""

    @abstractmethod
    def classify_error(
        self, error: Exception, operation: str
    ) -> tuple[type[StorageError], bool]:
        """Map an SDK exception to a storage error class and a retryable flag."""

    async def close(self) -> None:
        """Release the SDK client. No-op by default."""

    def translate_error(
        self,
        error: Exception,
        operation: str,
        container: str | None = None,
        path: str | None = None,
    ) -> StorageError:
        if isinstance(error, StorageError):
            error.operation = error.operation or operation
            error.container = error.container or container
            error.path = error.path or path
            return error
        exc_cls, retryable = self.classify_error(error, operation)
        kwargs = {
            "operation": operation,
            "container": container,
            "path": path,
            "cause": error,
        }
        if issubclass(exc_cls, StorageBackendError):
            kwargs["retryable"] = retryable
        return exc_cls(str(error) or type(error).__name__, **kwargs)

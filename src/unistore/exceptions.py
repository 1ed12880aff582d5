"""Common exception hierarchy for object storage backends."""


class StorageError(Exception):
    """Base exception for all storage operations."""

    kind = "storage"

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        container: str | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ):
        self.operation = operation
        self.container = container
        self.path = path
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        target = "/".join(p for p in (self.container, self.path) if p)
        if self.operation and target:
            return f"{self.operation}({target}): {message}"
        if self.operation:
            return f"{self.operation}: {message}"
        return message


class StorageNotFoundError(StorageError):
    """Raised when a requested container or object does not exist."""

    kind = "not_found"


class StorageConflictError(StorageError):
    """Raised when creating a resource whose name is already taken."""

    kind = "conflict"


class StorageInvalidArgumentError(StorageError, ValueError):
    """Raised for caller input rejected before any backend call is made."""

    kind = "invalid_argument"


class StorageMalformedResponseError(StorageError):
    """Raised when a backend reports success with a structurally invalid response."""

    kind = "malformed_response"


class StorageBackendError(StorageError):
    """Raised for every other backend failure (network, auth, provider internal).

    ``retryable`` is a hint for callers building their own retry policy.
    """

    kind = "backend"

    def __init__(self, *args, retryable: bool = False, **kwargs):
        self.retryable = retryable
        super().__init__(*args, **kwargs)

"""Upload content validation and the download stream wrapper."""

import asyncio
import io
import logging
import threading
from collections.abc import Callable, Iterator
from typing import BinaryIO, TypeVar, Union

from .exceptions import StorageBackendError, StorageError, StorageInvalidArgumentError

log = logging.getLogger(__name__)

UploadContent = Union[bytes, str, BinaryIO]

T = TypeVar("T")

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


def is_stream(data) -> bool:
    """True for readable binary file-like objects."""
    if isinstance(data, io.TextIOBase):
        return False
    return callable(getattr(data, "read", None))


def validate_content(
    data,
    operation: str = "put_object",
    container: str | None = None,
    path: str | None = None,
) -> UploadContent:
    """Check that ``data`` is a binary stream, a str or bytes-like, and not empty.

    Bytes-like values are returned as ``bytes``; str and streams are
    returned unchanged.
    """
    context = {"operation": operation, "container": container, "path": path}
    if data is None:
        raise StorageInvalidArgumentError("Argument data is empty", **context)
    if isinstance(data, str):
        if not data:
            raise StorageInvalidArgumentError("Argument data is empty", **context)
        return data
    if isinstance(data, (bytes, bytearray, memoryview)):
        if len(data) == 0:
            raise StorageInvalidArgumentError("Argument data is empty", **context)
        return bytes(data)
    if is_stream(data):
        return data
    raise StorageInvalidArgumentError(
        f"Argument data must be a binary stream, a str or a bytes-like object, got {type(data).__name__}",
        **context,
    )


class ObjectStream:
    """Sequential, single-pass async reader over an object's content.

    Wraps a blocking chunk iterator from a vendor SDK; every chunk is
    pulled in a worker thread. Supports ``await read()``, ``async for``
    and ``async with``. Cancelling a read closes the underlying response.
    """

    def __init__(
        self,
        chunks: Iterator[bytes],
        close: Callable[[], None] | None = None,
        size: int | None = None,
        on_error: Callable[[Exception], StorageError] | None = None,
    ):
        self._chunks = chunks
        self._close = close
        self._on_error = on_error
        self._buffer = b""
        self._exhausted = False
        self._closed = False
        self._released = False
        self.size = size

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative."""
        self._check_open()
        if size is None or size < 0:
            parts = [self._buffer]
            self._buffer = b""
            while True:
                chunk = await self._next_chunk()
                if chunk is None:
                    break
                parts.append(chunk)
            return b"".join(parts)

        while len(self._buffer) < size:
            chunk = await self._next_chunk()
            if chunk is None:
                break
            self._buffer += chunk
        data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        self._check_open()
        if self._buffer:
            data, self._buffer = self._buffer, b""
            return data
        chunk = await self._next_chunk()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def aclose(self) -> None:
        self._close_now()

    async def __aenter__(self) -> "ObjectStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed stream")

    async def _next_chunk(self) -> bytes | None:
        while not self._exhausted:
            try:
                chunk = await asyncio.to_thread(next, self._chunks, None)
            except asyncio.CancelledError:
                self._close_now()
                raise
            except Exception as e:
                self._close_now()
                if self._on_error is None or isinstance(e, StorageError):
                    raise
                raise self._on_error(e) from e
            if chunk is None:
                self._release()
                return None
            if chunk:
                return bytes(chunk)
        return None

    def _close_now(self) -> None:
        self._closed = True
        self._release()

    def _release(self) -> None:
        # Underlying response is released at EOF; the stream stays readable
        if self._released:
            return
        self._released = True
        self._exhausted = True
        if self._close is not None:
            try:
                self._close()
            except Exception as e:
                log.warning("Failed to close object stream: %s", e)


class CancellableReader:
    """Proxy over an upload stream that fails once the upload is cancelled."""

    def __init__(self, stream, cancelled: threading.Event):
        self._stream = stream
        self._cancelled = cancelled

    def read(self, size: int = -1):
        if self._cancelled.is_set():
            raise StorageBackendError("Upload cancelled", retryable=True)
        return self._stream.read(size)

    def __getattr__(self, name):
        return getattr(self._stream, name)


async def run_upload(upload: Callable[[UploadContent], T], data: UploadContent) -> T:
    """Run a blocking upload in a worker thread.

    If the awaiting task is cancelled, a streaming source stops yielding
    data so the SDK aborts the transfer instead of completing it.
    """
    cancelled = threading.Event()
    if is_stream(data):
        data = CancellableReader(data, cancelled)
    try:
        return await asyncio.to_thread(upload, data)
    except asyncio.CancelledError:
        cancelled.set()
        raise

"""Tests for upload content validation and ObjectStream."""

import asyncio
import io
import threading
from unittest.mock import MagicMock

import pytest

from unistore.content import (
    CancellableReader,
    ObjectStream,
    is_stream,
    run_upload,
    validate_content,
)
from unistore.exceptions import (
    StorageBackendError,
    StorageInvalidArgumentError,
    StorageNotFoundError,
)


class TestValidateContent:
    @pytest.mark.parametrize("data", [b"abc", bytearray(b"abc"), memoryview(b"abc")])
    def test_bytes_like_becomes_bytes(self, data):
        result = validate_content(data)
        assert result == b"abc"
        assert type(result) is bytes

    def test_str_and_streams_are_unchanged(self):
        stream = io.BytesIO(b"abc")
        assert validate_content("abc") == "abc"
        assert validate_content(stream) is stream

    @pytest.mark.parametrize("data", [None, "", b"", bytearray()])
    def test_empty_values_are_rejected(self, data):
        with pytest.raises(StorageInvalidArgumentError, match="empty"):
            validate_content(data, "put_object", "c", "p")

    @pytest.mark.parametrize("data", [42, 1.5, {"a": 1}, io.StringIO("text")])
    def test_unsupported_types_are_rejected(self, data):
        with pytest.raises(StorageInvalidArgumentError, match="binary stream"):
            validate_content(data)

    def test_invalid_argument_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_content(None)

    def test_is_stream(self):
        assert is_stream(io.BytesIO())
        assert not is_stream(io.StringIO())
        assert not is_stream(b"abc")


class TestObjectStream:
    @pytest.mark.asyncio
    async def test_read_all_releases_response_at_eof(self):
        close = MagicMock()
        stream = ObjectStream(iter([b"ab", b"cd", b"e"]), close=close, size=5)

        assert await stream.read() == b"abcde"
        assert stream.size == 5
        close.assert_called_once()
        assert await stream.read() == b""
        assert not stream.closed

    @pytest.mark.asyncio
    async def test_read_sized(self):
        stream = ObjectStream(iter([b"ab", b"cd", b"e"]))

        assert await stream.read(3) == b"abc"
        assert await stream.read(3) == b"de"
        assert await stream.read(3) == b""

    @pytest.mark.asyncio
    async def test_async_iteration_skips_empty_chunks(self):
        stream = ObjectStream(iter([b"ab", b"", bytearray(b"cd")]))
        assert [chunk async for chunk in stream] == [b"ab", b"cd"]

    @pytest.mark.asyncio
    async def test_iteration_returns_buffered_bytes_first(self):
        stream = ObjectStream(iter([b"abcd", b"ef"]))
        await stream.read(1)
        assert [chunk async for chunk in stream] == [b"bcd", b"ef"]

    @pytest.mark.asyncio
    async def test_close_calls_underlying_close_once(self):
        close = MagicMock()
        stream = ObjectStream(iter([b"ab"]), close=close)

        async with stream:
            pass
        await stream.aclose()

        close.assert_called_once()
        with pytest.raises(ValueError, match="closed"):
            await stream.read()

    @pytest.mark.asyncio
    async def test_close_failure_is_logged_not_raised(self):
        stream = ObjectStream(iter([b"ab"]), close=MagicMock(side_effect=OSError("gone")))
        await stream.aclose()
        assert stream.closed

    @pytest.mark.asyncio
    async def test_errors_are_translated_and_close_the_stream(self):
        def chunks():
            yield b"ab"
            raise ConnectionResetError("reset")

        close = MagicMock()
        on_error = MagicMock(return_value=StorageBackendError("reset", retryable=True))
        stream = ObjectStream(chunks(), close=close, on_error=on_error)

        with pytest.raises(StorageBackendError) as exc_info:
            await stream.read()

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.__cause__, ConnectionResetError)
        close.assert_called_once()

    @pytest.mark.asyncio
    async def test_storage_errors_are_not_translated_twice(self):
        def chunks():
            raise StorageNotFoundError("gone")
            yield b""  # pragma: no cover

        on_error = MagicMock()
        stream = ObjectStream(chunks(), on_error=on_error)

        with pytest.raises(StorageNotFoundError):
            await stream.read()
        on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_read_closes_stream(self):
        release = threading.Event()

        def chunks():
            release.wait(5)
            yield b"late"

        close = MagicMock()
        stream = ObjectStream(chunks(), close=close)
        task = asyncio.create_task(stream.read())
        await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        release.set()

        assert stream.closed
        close.assert_called_once()


class TestRunUpload:
    @pytest.mark.asyncio
    async def test_wraps_streams(self):
        received = []

        def upload(body):
            received.append(body)
            return body.read()

        assert await run_upload(upload, io.BytesIO(b"abc")) == b"abc"
        assert isinstance(received[0], CancellableReader)

    @pytest.mark.asyncio
    async def test_passes_bytes_through(self):
        assert await run_upload(lambda body: body, b"abc") == b"abc"

    @pytest.mark.asyncio
    async def test_cancel_stops_stream_reads(self):
        started = threading.Event()
        finished = threading.Event()
        outcome = []

        def upload(body):
            started.set()
            try:
                while True:
                    if not body.read(1):
                        break
                    finished.wait(0.01)
            except StorageBackendError as e:
                outcome.append(e)
            finally:
                finished.set()

        task = asyncio.create_task(run_upload(upload, io.BytesIO(b"x" * 10_000_000)))
        await asyncio.to_thread(started.wait, 5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.to_thread(finished.wait, 5)

        assert len(outcome) == 1
        assert outcome[0].retryable is True

    def test_reader_proxies_attributes(self):
        stream = io.BytesIO(b"abc")
        reader = CancellableReader(stream, threading.Event())
        assert reader.seekable() is True
        assert reader.read(2) == b"ab"
        assert reader.tell() == 2

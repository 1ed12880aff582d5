"""S3-compatible storage backend (AWS S3, SeaweedFS, MinIO)."""

import asyncio
import functools
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

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

_ERROR_CODE_MAP = {
    "NoSuchKey": StorageNotFoundError,
    "NoSuchBucket": StorageNotFoundError,
    "NotFound": StorageNotFoundError,
    "404": StorageNotFoundError,
    "BucketAlreadyExists": StorageConflictError,
    "BucketAlreadyOwnedByYou": StorageConflictError,
}

_RETRYABLE_CODES = frozenset(
    {
        "500",
        "502",
        "503",
        "504",
        "InternalError",
        "ServiceUnavailable",
        "SlowDown",
        "RequestTimeout",
        "Throttling",
        "ThrottlingException",
        "OperationAborted",
    }
)

_TRANSPORT_ERRORS = (
    EndpointConnectionError,
    ConnectionClosedError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionError,
    TimeoutError,
)

# ContentSettings attribute -> S3 request parameter
_CONTENT_PARAMS = {
    "content_type": "ContentType",
    "content_encoding": "ContentEncoding",
    "content_language": "ContentLanguage",
    "cache_control": "CacheControl",
    "content_disposition": "ContentDisposition",
    "content_md5": "ContentMD5",
}


def _error_code(error: Exception) -> str:
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return ""
    return str(response.get("Error", {}).get("Code", ""))


def classify_error(error: Exception, operation: str) -> tuple[type[StorageError], bool]:
    """Map a botocore exception to a storage error class and a retryable flag."""
    if isinstance(error, _TRANSPORT_ERRORS):
        return StorageBackendError, True
    code = _error_code(error)
    exc_cls = _ERROR_CODE_MAP.get(code, StorageBackendError)
    if exc_cls is StorageConflictError and operation not in CREATE_OPERATIONS:
        exc_cls = StorageBackendError
    return exc_cls, code in _RETRYABLE_CODES


def _check_response(response) -> dict:
    if not isinstance(response, dict):
        raise StorageMalformedResponseError("Response was empty or not successful")
    status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if status is not None and not 200 <= status < 300:
        raise StorageMalformedResponseError(f"Response was not successful (HTTP {status})")
    return response


class S3StorageBackend(StorageBackend):
    """S3-compatible storage backend. Containers are buckets.

    Notes:
      - The region hint becomes the bucket LocationConstraint and defaults
        to the client region.
      - AWS us-east-1 accepts a repeated create of a bucket you already own,
        so create_container may succeed there instead of conflicting.
      - ensure_container treats BucketAlreadyOwnedByYou as success; a bucket
        owned by another account is still a conflict.
      - Deleting a non-empty bucket fails (BucketNotEmpty).
      - Removing a missing object succeeds; S3 deletes are idempotent.
      - Streams are uploaded with the managed transfer (multipart), which
        cannot carry a whole-object Content-MD5; it is dropped for streams.
    """

    name = "s3"

    def __init__(
        self,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        aws_access_key_id: str | None = None,
        aws_secret_access_key: str | None = None,
        aws_session_token: str | None = None,
        page_size: int | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._region = region
        self._endpoint_url = endpoint_url
        self._page_size = page_size
        self._chunk_size = chunk_size

        kwargs: dict = {
            "config": Config(
                region_name=region,
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "standard"},
            ),
        }
        if aws_access_key_id and aws_secret_access_key:
            kwargs["aws_access_key_id"] = aws_access_key_id
            kwargs["aws_secret_access_key"] = aws_secret_access_key
        if aws_session_token:
            kwargs["aws_session_token"] = aws_session_token
        if endpoint_url:
            kwargs["endpoint_url"] = endpoint_url

        self._client = boto3.client("s3", **kwargs)

    async def close(self) -> None:
        await asyncio.to_thread(self._client.close)

    async def create_container(self, name: str, region: str | None, *, if_not_exists: bool) -> None:
        params: dict = {"Bucket": name}
        location = region or self._region
        if location and location != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": location}

        def _create():
            try:
                return self._client.create_bucket(**params)
            except ClientError as e:
                if if_not_exists and _error_code(e) == "BucketAlreadyOwnedByYou":
                    log.debug("[S3:ensure_container:%s] Bucket already owned", name)
                    return {}
                raise

        _check_response(await asyncio.to_thread(_create))

    async def get_container_properties(self, name: str) -> str:
        _check_response(await asyncio.to_thread(functools.partial(self._client.head_bucket, Bucket=name)))
        return name

    async def list_containers_page(self, continuation_token: str | None) -> Page:
        params: dict = {}
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if self._page_size:
            params["MaxBuckets"] = self._page_size

        response = _check_response(
            await asyncio.to_thread(functools.partial(self._client.list_buckets, **params))
        )
        buckets = response.get("Buckets", [])
        if not isinstance(buckets, list):
            raise StorageMalformedResponseError("Response does not contain a Buckets array")
        entries = []
        for bucket in buckets:
            if not isinstance(bucket, dict) or not bucket.get("Name"):
                raise StorageMalformedResponseError(f"Invalid bucket entry: {bucket!r}")
            entries.append(bucket["Name"])
        return Page(entries=entries, continuation_token=response.get("ContinuationToken"))

    async def delete_container(self, name: str) -> None:
        _check_response(
            await asyncio.to_thread(functools.partial(self._client.delete_bucket, Bucket=name))
        )

    async def upload_object(
        self,
        container: str,
        path: str,
        data: UploadContent,
        options: UploadOptions,
    ) -> None:
        extra: dict = {}
        for attr, param in _CONTENT_PARAMS.items():
            value = getattr(options.content_settings, attr)
            if value is not None:
                extra[param] = value
        if options.metadata:
            extra["Metadata"] = dict(options.metadata)

        if is_stream(data):
            if extra.pop("ContentMD5", None) is not None:
                log.warning(
                    "[S3:put_object:%s/%s] Content-MD5 is not supported for stream uploads; ignoring it",
                    container,
                    path,
                )
            await run_upload(
                functools.partial(
                    self._upload_stream, container=container, path=path, extra_args=extra or None
                ),
                data,
            )
            return

        body = data.encode("utf-8") if isinstance(data, str) else data
        response = await asyncio.to_thread(
            functools.partial(self._client.put_object, Bucket=container, Key=path, Body=body, **extra)
        )
        if not _check_response(response).get("ETag"):
            raise StorageMalformedResponseError("Response was empty or not successful")

    async def open_object(self, container: str, path: str) -> ObjectStream:
        response = _check_response(
            await asyncio.to_thread(
                functools.partial(self._client.get_object, Bucket=container, Key=path)
            )
        )
        body = response.get("Body")
        if body is None:
            raise StorageMalformedResponseError("Response does not contain a Body")
        return ObjectStream(
            body.iter_chunks(self._chunk_size),
            close=body.close,
            size=response.get("ContentLength"),
            on_error=functools.partial(
                self.translate_error, operation="get_object", container=container, path=path
            ),
        )

    async def get_object_properties(self, container: str, path: str) -> ObjectProperties:
        response = _check_response(
            await asyncio.to_thread(
                functools.partial(self._client.head_object, Bucket=container, Key=path)
            )
        )
        settings = ContentSettings(
            **{
                attr: response.get(param)
                for attr, param in _CONTENT_PARAMS.items()
                if attr != "content_md5"
            }
        )
        return ObjectProperties(
            path=path,
            size=response.get("ContentLength") or 0,
            last_modified=response.get("LastModified"),
            etag=(response.get("ETag") or "").strip('"') or None,
            metadata=merge_metadata(settings, response.get("Metadata")),
        )

    async def list_objects_page(
        self, container: str, prefix: str, continuation_token: str | None
    ) -> Page:
        params: dict = {"Bucket": container, "Prefix": prefix, "Delimiter": "/"}
        if continuation_token:
            params["ContinuationToken"] = continuation_token
        if self._page_size:
            params["MaxKeys"] = self._page_size

        response = _check_response(
            await asyncio.to_thread(functools.partial(self._client.list_objects_v2, **params))
        )
        contents = response.get("Contents", [])
        common_prefixes = response.get("CommonPrefixes", [])
        if not isinstance(contents, list) or not isinstance(common_prefixes, list):
            raise StorageMalformedResponseError("Response does not contain an entries array")

        keyed = []
        for obj in contents:
            if not isinstance(obj, dict) or not obj.get("Key"):
                raise StorageMalformedResponseError(f"Invalid object entry: {obj!r}")
            keyed.append(
                (
                    obj["Key"],
                    ListItemObject(
                        path=obj["Key"],
                        last_modified=obj.get("LastModified"),
                        size=obj.get("Size") or 0,
                    ),
                )
            )
        for common in common_prefixes:
            if not isinstance(common, dict) or not common.get("Prefix"):
                raise StorageMalformedResponseError(f"Invalid prefix entry: {common!r}")
            keyed.append((common["Prefix"], ListItemPrefix(prefix=common["Prefix"])))
        # S3 returns objects and prefixes separately; restore key order
        keyed.sort(key=lambda pair: pair[0])

        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        return Page(entries=[entry for _, entry in keyed], continuation_token=next_token)

    async def delete_object(self, container: str, path: str) -> None:
        _check_response(
            await asyncio.to_thread(
                functools.partial(self._client.delete_object, Bucket=container, Key=path)
            )
        )

    def classify_error(self, error: Exception, operation: str) -> tuple[type[StorageError], bool]:
        return classify_error(error, operation)

    def _upload_stream(self, body, container: str, path: str, extra_args: dict | None) -> None:
        self._client.upload_fileobj(body, container, path, ExtraArgs=extra_args)

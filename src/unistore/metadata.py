"""Split and merge of well-known transport headers and user metadata."""

import base64
import binascii
from dataclasses import dataclass, fields

from .exceptions import StorageInvalidArgumentError

CONTENT_TYPE = "Content-Type"
CONTENT_ENCODING = "Content-Encoding"
CONTENT_LANGUAGE = "Content-Language"
CACHE_CONTROL = "Cache-Control"
CONTENT_DISPOSITION = "Content-Disposition"
CONTENT_MD5 = "Content-MD5"

# header name -> ContentSettings attribute
WELL_KNOWN_HEADERS: dict[str, str] = {
    CONTENT_TYPE: "content_type",
    CONTENT_ENCODING: "content_encoding",
    CONTENT_LANGUAGE: "content_language",
    CACHE_CONTROL: "cache_control",
    CONTENT_DISPOSITION: "content_disposition",
    CONTENT_MD5: "content_md5",
}


@dataclass(frozen=True)
class ContentSettings:
    """Transport headers that backends keep outside of user metadata.

    ``content_md5`` is the base64 encoded digest, as sent in the HTTP header.
    """

    content_type: str | None = None
    content_encoding: str | None = None
    content_language: str | None = None
    cache_control: str | None = None
    content_disposition: str | None = None
    content_md5: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def as_headers(self) -> dict[str, str]:
        """Return the set headers keyed by their HTTP names."""
        headers = {}
        for header, attr in WELL_KNOWN_HEADERS.items():
            value = getattr(self, attr)
            if value is not None:
                headers[header] = value
        return headers


def split_metadata(
    metadata: dict[str, str] | None,
) -> tuple[ContentSettings, dict[str, str]]:
    """Split a caller metadata dict into content settings and user metadata.

    The caller's dictionary is not modified. Keys are matched
    case-sensitively; ``None`` values are dropped and other values
    are converted to strings.
    """
    if not metadata:
        return ContentSettings(), {}

    settings: dict[str, str] = {}
    user_metadata: dict[str, str] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        key = str(key)
        if key in WELL_KNOWN_HEADERS:
            settings[WELL_KNOWN_HEADERS[key]] = str(value)
        else:
            user_metadata[key] = str(value)
    return ContentSettings(**settings), user_metadata


def merge_metadata(
    content_settings: ContentSettings,
    user_metadata: dict[str, str] | None,
) -> dict[str, str]:
    """Inverse of :func:`split_metadata`, used by the read path.

    Well-known headers win over user keys of the same name.
    """
    merged = dict(user_metadata or {})
    merged.update(content_settings.as_headers())
    return merged


def decode_content_md5(value: str) -> bytes:
    """Decode a base64 ``Content-MD5`` header value into the raw 16-byte digest."""
    try:
        digest = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise StorageInvalidArgumentError(f"{CONTENT_MD5} is not valid base64: {value!r}") from e
    if len(digest) != 16:
        raise StorageInvalidArgumentError(f"{CONTENT_MD5} must encode a 16-byte digest")
    return digest

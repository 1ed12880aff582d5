"""Drives paginated backend listings to completion."""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from .base import Page
from .exceptions import StorageMalformedResponseError

log = logging.getLogger(__name__)

FetchPage = Callable[[str | None], Awaitable[Page]]


async def iterate_pages(
    fetch_page: FetchPage,
    *,
    operation: str,
    container: str | None = None,
) -> AsyncIterator:
    """Yield every entry of a listing, following continuation tokens.

    Pages are requested one after another; the loop continues while the
    last page carried a continuation token. Any error aborts the listing.
    """
    log_prefix = f"[Pagination:{operation}:{container or '*'}] "
    token = None
    page_number = 0
    while True:
        page = await fetch_page(token)
        page_number += 1
        if not isinstance(page, Page) or not isinstance(page.entries, (list, tuple)):
            raise StorageMalformedResponseError(
                "Response does not contain an entries array",
                operation=operation,
                container=container,
            )
        log.debug("%sPage %d: %d entries", log_prefix, page_number, len(page.entries))
        for entry in page.entries:
            yield entry

        next_token = page.continuation_token
        if not next_token:
            return
        if next_token == token:
            raise StorageMalformedResponseError(
                "Backend returned the same continuation token twice",
                operation=operation,
                container=container,
            )
        token = next_token


async def collect_pages(
    fetch_page: FetchPage,
    *,
    operation: str,
    container: str | None = None,
) -> list:
    """Drain :func:`iterate_pages` into a list."""
    return [
        entry
        async for entry in iterate_pages(fetch_page, operation=operation, container=container)
    ]

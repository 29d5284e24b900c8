"""
Cursor-based holder enumeration.

Walks a listing one page at a time at a fixed height. Only the current
page is held in memory unless de-duplication is requested.
"""

import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from balance_sources.models import Page


logger = logging.getLogger(__name__)


PageFetcher = Callable[[Optional[str]], Awaitable[Union[list, Page]]]


def _address_of(item) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, tuple):
        return item[0]
    return item.address


async def iter_pages(
    fetch_page: PageFetcher,
    source_name: str = "",
    label: str = "",
    deduplicate: bool = False,
) -> AsyncIterator[list]:
    """
    Yield pages from `fetch_page` until the listing is exhausted.

    `fetch_page(cursor)` is called with None first. A plain list result
    continues from its last item's address; a Page result continues from
    its next_cursor, and a None next_cursor marks the last page. An empty
    page always ends the enumeration.

    With `deduplicate`, addresses already yielded in this enumeration are
    dropped. Pages emptied by de-duplication are skipped, not yielded.
    """
    cursor: Optional[str] = None
    seen: Optional[set[str]] = set() if deduplicate else None
    page_number = 0

    while True:
        logger.info(f"[{source_name}] Fetching {label} accounts at key {cursor}")
        result = await fetch_page(cursor)
        page_number += 1

        if isinstance(result, Page):
            items, next_cursor = result.items, result.next_cursor
        else:
            items = result
            next_cursor = _address_of(items[-1]) if items else None

        if not items:
            logger.debug(f"[{source_name}] {label} listing exhausted after {page_number} pages")
            return

        if seen is not None:
            fresh = []
            for item in items:
                address = _address_of(item)
                if address in seen:
                    logger.warning(f"[{source_name}] Duplicate holder {address} in {label} listing")
                    continue
                seen.add(address)
                fresh.append(item)
            items = fresh

        if items:
            yield items

        if next_cursor is None:
            return
        if next_cursor == cursor:
            # A listing that does not advance would loop forever
            logger.warning(f"[{source_name}] {label} cursor did not advance past {cursor}")
            return
        cursor = next_cursor

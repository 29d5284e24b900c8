"""
Tests for cursor-based holder enumeration.
"""

import math

import pytest

from balance_sources.models import HolderBalance, Page
from balance_sources.pagination import iter_pages


def make_listing(addresses, limit, calls):
    """Listing keyed by last returned address, like CW20 all_accounts."""
    ordered = sorted(addresses)

    async def fetch_page(start_after):
        calls.append(start_after)
        remaining = [a for a in ordered if start_after is None or a > start_after]
        return remaining[:limit]

    return fetch_page


async def collect_pages(pages):
    return [page async for page in pages]


# ============================================================
# LAST-ADDRESS CURSOR
# ============================================================

class TestLastAddressCursor:
    """Listings that continue from the last returned address."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "holders,limit",
        [(0, 3), (1, 1), (5, 2), (6, 3), (7, 10), (30, 30)],
    )
    async def test_request_count_and_coverage(self, holders, limit):
        """ceil(N/P)+1 requests, every holder seen exactly once."""
        addresses = [f"addr{i:03d}" for i in range(holders)]
        calls = []

        pages = await collect_pages(iter_pages(make_listing(addresses, limit, calls)))

        assert len(calls) == math.ceil(holders / limit) + 1
        seen = [a for page in pages for a in page]
        assert sorted(seen) == sorted(addresses)
        assert all(0 < len(page) <= limit for page in pages)

    @pytest.mark.asyncio
    async def test_cursor_is_last_address(self):
        """Each request starts after the previous page's last holder."""
        calls = []
        await collect_pages(iter_pages(make_listing(["a", "b", "c", "d", "e"], 2, calls)))

        assert calls == [None, "b", "d", "e"]

    @pytest.mark.asyncio
    async def test_holder_records_use_address(self):
        """Pages of HolderBalance continue from the record's address."""
        calls = []

        async def fetch_page(start_after):
            calls.append(start_after)
            if start_after is None:
                return [HolderBalance("x", "1", "a"), HolderBalance("y", "2", "a")]
            return []

        pages = await collect_pages(iter_pages(fetch_page))

        assert calls == [None, "y"]
        assert len(pages) == 1

    @pytest.mark.asyncio
    async def test_stalled_cursor_stops(self):
        """A listing that keeps returning the same page is not followed forever."""
        calls = []

        async def fetch_page(start_after):
            calls.append(start_after)
            return ["same"]

        pages = await collect_pages(iter_pages(fetch_page))

        assert calls == [None, "same"]
        assert pages == [["same"], ["same"]]


# ============================================================
# EXPLICIT NEXT KEY
# ============================================================

class TestNextKeyCursor:
    """Listings that return an opaque continuation key."""

    @pytest.mark.asyncio
    async def test_none_next_key_ends(self):
        """A page without next key is the last one; no trailing empty request."""
        calls = []
        data = {None: Page(["a", "b"], "k1"), "k1": Page(["c"], None)}

        async def fetch_page(key):
            calls.append(key)
            return data[key]

        pages = await collect_pages(iter_pages(fetch_page))

        assert calls == [None, "k1"]
        assert pages == [["a", "b"], ["c"]]

    @pytest.mark.asyncio
    async def test_empty_page_ends(self):
        """An empty page ends enumeration even with a next key."""
        async def fetch_page(key):
            return Page([], "ignored")

        assert await collect_pages(iter_pages(fetch_page)) == []


# ============================================================
# DE-DUPLICATION
# ============================================================

class TestDeduplication:
    """Optional address de-duplication across pages."""

    @staticmethod
    def listing_with_repeat():
        data = {
            None: Page(["a", "b"], "k1"),
            "k1": Page(["b", "c"], "k2"),
            "k2": Page(["c"], None),
        }

        async def fetch_page(key):
            return data[key]

        return fetch_page

    @pytest.mark.asyncio
    async def test_duplicates_propagate_by_default(self):
        pages = await collect_pages(iter_pages(self.listing_with_repeat()))

        assert [a for p in pages for a in p] == ["a", "b", "b", "c", "c"]

    @pytest.mark.asyncio
    async def test_duplicates_dropped_when_enabled(self):
        pages = await collect_pages(
            iter_pages(self.listing_with_repeat(), deduplicate=True)
        )

        assert pages == [["a", "b"], ["c"]]

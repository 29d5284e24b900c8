"""
Bounded concurrent per-holder reads with settle-all semantics.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar

from balance_sources.exceptions import ConfigurationError, HolderFetchError
from balance_sources.models import FetchOutcome


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BoundedFetcher(Generic[T, R]):
    """
    Runs one read per item with at most `concurrency_limit` in flight.

    Every read settles independently. In tolerant mode failed reads
    (including timeouts) are dropped from the results and counted; in
    strict mode the first failure is raised once the page has settled.
    No retries.
    """

    def __init__(
        self,
        concurrency_limit: int,
        request_timeout: Optional[float] = None,
        tolerate_failures: bool = True,
        source_name: str = "",
    ) -> None:
        if concurrency_limit < 1:
            raise ConfigurationError(
                "concurrency_limit must be at least 1",
                source_name,
                config_key="concurrency_limit",
            )
        self._concurrency_limit = concurrency_limit
        self._request_timeout = request_timeout
        self._tolerate_failures = tolerate_failures
        self._source_name = source_name

        self._in_flight = 0
        self._max_in_flight = 0
        self._requests = 0
        self._failures = 0

    @property
    def concurrency_limit(self) -> int:
        return self._concurrency_limit

    async def fetch_all(
        self,
        items: Iterable[T],
        fetch_one: Callable[[T], Awaitable[R]],
    ) -> FetchOutcome[R]:
        """Read every item; results come back in completion order."""
        semaphore = asyncio.Semaphore(self._concurrency_limit)
        outcome: FetchOutcome[R] = FetchOutcome()

        async def run(item: T) -> R:
            async with semaphore:
                self._in_flight += 1
                self._max_in_flight = max(self._max_in_flight, self._in_flight)
                self._requests += 1
                try:
                    if self._request_timeout:
                        result = await asyncio.wait_for(
                            fetch_one(item), timeout=self._request_timeout
                        )
                    else:
                        result = await fetch_one(item)
                finally:
                    self._in_flight -= 1
            outcome.results.append(result)
            return result

        items = list(items)
        settled = await asyncio.gather(
            *(run(item) for item in items), return_exceptions=True
        )

        for item, result in zip(items, settled):
            if not isinstance(result, BaseException):
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            self._failures += 1
            error = HolderFetchError(
                message=f"Read failed for {item}",
                source_name=self._source_name,
                address=item if isinstance(item, str) else None,
                original_error=result,
            )
            outcome.failures.append(error)
            logger.warning(f"[{self._source_name}] Dropping holder {item}: {result!r}")

        if outcome.failures and not self._tolerate_failures:
            raise outcome.failures[0]

        return outcome

    def get_stats(self) -> dict[str, Any]:
        """Fetcher statistics."""
        return {
            "concurrency_limit": self._concurrency_limit,
            "requests": self._requests,
            "failures": self._failures,
            "max_in_flight": self._max_in_flight,
        }

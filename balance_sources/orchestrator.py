"""
Aggregation Orchestrator - Drives one source over one height.

============================================================
RESPONSIBILITY
============================================================
- Pick the snapshot height (pinned or latest)
- Run the source over every configured asset
- Hand each page to the caller's callback and wait for it
- Report what was delivered and how many holders were dropped

The callback is the only backpressure: the source does not fetch the
next page until the callback has returned (or its awaitable resolved).

============================================================
"""

import inspect
import logging
from datetime import datetime
from typing import Mapping, Optional

from balance_sources.base import BaseBalanceSource, BatchCallback, Multiplier
from balance_sources.config import SourceConfig
from balance_sources.exceptions import ConfigurationError
from balance_sources.models import AggregationResult, HolderBalance
from balance_sources.registry import create_source


logger = logging.getLogger(__name__)


async def resolve_height(
    source: BaseBalanceSource,
    height: Optional[int] = None,
) -> int:
    """
    Snapshot height to use for a pass.

    A pinned height is returned as is; otherwise the ledger's latest
    height is used.
    """
    if height is not None:
        if height < 1:
            raise ConfigurationError(
                f"height must be a positive block height, got {height}",
                source.source_name,
                config_key="height",
            )
        return height

    latest = await source.get_last_block_height()
    logger.info(f"[{source.source_name}] No height pinned, using latest {latest}")
    return latest


class BalanceAggregator:
    """
    Runs a balance source and streams its pages to a callback.

    Usage:
        aggregator = BalanceAggregator(source)
        result = await aggregator.run({"atom-usdc": 1.5}, on_batch)
    """

    def __init__(self, source: BaseBalanceSource) -> None:
        self.source = source

    async def run(
        self,
        multipliers: Mapping[str, Multiplier],
        on_batch: BatchCallback,
        height: Optional[int] = None,
    ) -> AggregationResult:
        height = await resolve_height(self.source, height)
        result = AggregationResult(
            source_name=self.source.source_name,
            height=height,
            started_at=datetime.utcnow(),
        )
        dropped_before = self.source.get_stats()["dropped_holders"]

        async def deliver(records: list[HolderBalance]) -> None:
            result.batches += 1
            result.records += len(records)
            outcome = on_batch(records)
            if inspect.isawaitable(outcome):
                await outcome

        await self.source.get_users_balances(height, multipliers, deliver)

        result.finished_at = datetime.utcnow()
        result.dropped_holders = self.source.get_stats()["dropped_holders"] - dropped_before
        if result.dropped_holders:
            logger.warning(
                f"[{self.source.source_name}] Completed at height {height} "
                f"after dropping {result.dropped_holders} holders"
            )
        else:
            logger.info(
                f"[{self.source.source_name}] Completed at height {height}: "
                f"{result.records} records in {result.batches} batches"
            )
        return result


async def aggregate(
    config: SourceConfig,
    multipliers: Mapping[str, Multiplier],
    on_batch: BatchCallback,
    height: Optional[int] = None,
) -> AggregationResult:
    """Build the configured source, run one pass, close it."""
    async with create_source(config) as source:
        return await BalanceAggregator(source).run(multipliers, on_batch, height)

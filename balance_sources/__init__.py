"""
Balance Sources Package - Height-pinned holder balance snapshots.

Computes, for a set of protocols, the balances (or underlying-asset
equivalents of LP positions) that existed at one block height, scales
them by caller-supplied reward multipliers and streams them page by page.

Features:
- One contract for every protocol source
- Static protocol registry
- Cursor pagination with O(page) memory
- Bounded concurrent per-holder reads, partial failure tolerated
- Callback backpressure: one page in flight at a time

Quick Start:
    from balance_sources import SourceConfig, aggregate

    async def snapshot():
        config = SourceConfig.from_yaml("astroport.yaml")

        async def on_batch(records):
            for record in records:
                print(record.address, record.balance, record.asset)

        result = await aggregate(config, {"atom-ntrn": 1.5}, on_batch)
        print(f"{result.records} records at height {result.height}")

Adding New Sources:
    class NewSource(BaseBalanceSource):
        @property
        def name(self) -> str:
            return "new_source"

        async def collect_asset(self, asset, height, multiplier, on_batch): ...

    SOURCE_REGISTRY["new_source"] = NewSource
"""

__version__ = "1.0.0"

from balance_sources.base import BaseBalanceSource
from balance_sources.config import AssetDescriptor, SourceConfig
from balance_sources.exceptions import (
    BalanceSourceError,
    ConfigurationError,
    ExchangeRateError,
    HolderFetchError,
    MissingMultiplierError,
    QueryError,
    UnknownProtocolError,
)
from balance_sources.fetcher import BoundedFetcher
from balance_sources.liquidity import ExchangeRate, effective_multiplier, round_half_up
from balance_sources.models import AggregationResult, FetchOutcome, HolderBalance, Page
from balance_sources.orchestrator import BalanceAggregator, aggregate, resolve_height
from balance_sources.pagination import iter_pages
from balance_sources.providers import (
    AstroportGeneratorSource,
    AstroportSource,
    BankModuleSource,
)
from balance_sources.query import LedgerQueryClient
from balance_sources.registry import (
    SOURCE_REGISTRY,
    create_source,
    get_source_class,
    list_protocols,
)


__all__ = [
    # Base
    "BaseBalanceSource",

    # Config
    "AssetDescriptor",
    "SourceConfig",

    # Models
    "HolderBalance",
    "Page",
    "FetchOutcome",
    "AggregationResult",
    "ExchangeRate",

    # Exceptions
    "BalanceSourceError",
    "ConfigurationError",
    "UnknownProtocolError",
    "MissingMultiplierError",
    "QueryError",
    "ExchangeRateError",
    "HolderFetchError",

    # Building blocks
    "LedgerQueryClient",
    "BoundedFetcher",
    "iter_pages",
    "effective_multiplier",
    "round_half_up",

    # Providers
    "AstroportSource",
    "AstroportGeneratorSource",
    "BankModuleSource",

    # Registry
    "SOURCE_REGISTRY",
    "create_source",
    "get_source_class",
    "list_protocols",

    # Orchestration
    "BalanceAggregator",
    "aggregate",
    "resolve_height",
]

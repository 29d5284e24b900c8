"""
Base Balance Source - Abstract interface for all protocol sources.

All sources MUST:
- Read every value at the requested height
- Deliver non-empty, zero-free, multiplier-scaled pages
- Wait for the batch callback before fetching the next page
- Raise on configuration, rate and listing errors
"""

import inspect
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional, Union

from balance_sources.config import AssetDescriptor, SourceConfig
from balance_sources.exceptions import ConfigurationError, MissingMultiplierError
from balance_sources.fetcher import BoundedFetcher
from balance_sources.liquidity import scale_balance, to_decimal
from balance_sources.models import HolderBalance
from balance_sources.pagination import PageFetcher, iter_pages
from balance_sources.query import LedgerQueryClient


logger = logging.getLogger(__name__)


Multiplier = Union[int, float, str, Decimal]
BatchCallback = Callable[[list[HolderBalance]], Union[None, Awaitable[None]]]


class BaseBalanceSource(ABC):
    """
    Abstract base class for all balance sources.

    Each source must:
    1. Implement name - registry identifier
    2. Implement collect_asset() - stream one asset's scaled balances

    The base class owns the two public operations, get_users_balances()
    and get_last_block_height(), plus the lazily created query client.
    """

    def __init__(
        self,
        config: SourceConfig,
        client: Optional[LedgerQueryClient] = None,
    ) -> None:
        self.config = config
        self.source_name = config.source_name
        self.assets: dict[str, AssetDescriptor] = dict(config.assets)
        self.concurrency_limit = config.concurrency_limit
        self.pagination_limit = config.pagination_limit

        self._client = client
        self._owns_client = client is None

        self._fetcher: BoundedFetcher[str, HolderBalance] = BoundedFetcher(
            concurrency_limit=config.concurrency_limit,
            request_timeout=config.request_timeout,
            tolerate_failures=config.tolerate_holder_failures,
            source_name=self.source_name,
        )

        self._stats = {
            "assets_completed": 0,
            "pages": 0,
            "batches": 0,
            "records": 0,
            "zero_filtered": 0,
            "dropped_holders": 0,
        }

        self.validate_config()

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry identifier for this source variant."""
        pass

    @abstractmethod
    async def collect_asset(
        self,
        asset: AssetDescriptor,
        height: int,
        multiplier: Decimal,
        on_batch: BatchCallback,
    ) -> None:
        """
        Stream one asset's balances at `height`.

        Args:
            asset: Configured asset
            height: Pinned block height
            multiplier: Caller's reward rate for this asset
            on_batch: Callback receiving each processed page
        """
        pass

    def validate_config(self) -> None:
        """Variant-specific construction checks; override as needed."""

    # ─────────────────────────────────────────────────────────────
    # Source Contract
    # ─────────────────────────────────────────────────────────────

    async def get_users_balances(
        self,
        height: int,
        multipliers: Mapping[str, Multiplier],
        on_batch: BatchCallback,
    ) -> None:
        """
        Stream every configured asset's balances at `height`.

        Assets are processed one after another in configuration order.
        Returns once every asset has been enumerated.

        Raises:
            MissingMultiplierError: A configured asset has no multiplier
            QueryError: A rate or listing read failed
            ExchangeRateError: Pool-share supply is zero
        """
        resolved = self._resolve_multipliers(multipliers)

        for asset_id, asset in self.assets.items():
            logger.info(f"[{self.source_name}] Collecting {asset_id} at height {height}")
            await self.collect_asset(asset, height, resolved[asset_id], on_batch)
            self._stats["assets_completed"] += 1
            logger.info(f"[{self.source_name}] Finished {asset_id}")

    async def get_last_block_height(self) -> int:
        """Latest block height known to the backing ledger."""
        client = await self.get_client()
        return await client.latest_height()

    # ─────────────────────────────────────────────────────────────
    # Shared Helpers
    # ─────────────────────────────────────────────────────────────

    async def get_client(self) -> LedgerQueryClient:
        """Get or create the query client."""
        if self._client is None:
            self._client = LedgerQueryClient(
                self.config.endpoint,
                timeout=self.config.request_timeout,
                source_name=self.source_name,
            )
            self._owns_client = True
        return self._client

    def _resolve_multipliers(
        self,
        multipliers: Mapping[str, Multiplier],
    ) -> dict[str, Decimal]:
        resolved = {}
        for asset_id in self.assets:
            if asset_id not in multipliers or multipliers[asset_id] is None:
                raise MissingMultiplierError(
                    f"No multiplier supplied for asset '{asset_id}'",
                    self.source_name,
                    asset_id=asset_id,
                )
            if isinstance(multipliers[asset_id], bool):
                raise ConfigurationError(
                    f"Multiplier for asset '{asset_id}' must be a number, not a boolean",
                    self.source_name,
                    config_key="multipliers",
                )
            try:
                value = to_decimal(multipliers[asset_id])
            except (InvalidOperation, TypeError, ValueError) as e:
                raise ConfigurationError(
                    f"Invalid multiplier for asset '{asset_id}': {multipliers[asset_id]!r}",
                    self.source_name,
                    config_key="multipliers",
                    original_error=e,
                ) from e
            if not value.is_finite():
                raise ConfigurationError(
                    f"Multiplier for asset '{asset_id}' is not finite",
                    self.source_name,
                    config_key="multipliers",
                )
            if value < 0:
                raise ConfigurationError(
                    f"Multiplier for asset '{asset_id}' is negative: {value}",
                    self.source_name,
                    config_key="multipliers",
                )
            resolved[asset_id] = value
        return resolved

    def pages(self, fetch_page: PageFetcher, label: str = "") -> AsyncIterator[list]:
        """Enumerate a holder listing with this source's settings."""
        return iter_pages(
            fetch_page,
            source_name=self.source_name,
            label=label,
            deduplicate=self.config.deduplicate_holders,
        )

    async def fetch_balances(
        self,
        addresses: list[str],
        fetch_one: Callable[[str], Awaitable[HolderBalance]],
    ) -> list[HolderBalance]:
        """Per-holder reads for one page; failed holders are dropped."""
        outcome = await self._fetcher.fetch_all(addresses, fetch_one)
        self._stats["dropped_holders"] += outcome.dropped
        return outcome.results

    def _scale_and_filter(
        self,
        records: list[HolderBalance],
        multiplier: Decimal,
    ) -> list[HolderBalance]:
        """Drop zero balances, scale the rest in place."""
        scaled = []
        for record in records:
            if record.balance in ("0", ""):
                self._stats["zero_filtered"] += 1
                continue
            record.balance = scale_balance(record.balance, multiplier)
            if record.balance == "0":
                self._stats["zero_filtered"] += 1
                continue
            scaled.append(record)
        return scaled

    async def _deliver(
        self,
        on_batch: BatchCallback,
        records: list[HolderBalance],
    ) -> None:
        """Hand a page to the callback and wait for it."""
        self._stats["pages"] += 1
        if not records:
            return
        result = on_batch(records)
        if inspect.isawaitable(result):
            await result
        self._stats["batches"] += 1
        self._stats["records"] += len(records)

    def get_stats(self) -> dict[str, Any]:
        """Source statistics."""
        stats = dict(self._stats)
        stats["fetcher"] = self._fetcher.get_stats()
        if self._client is not None:
            stats["client"] = self._client.get_stats()
        return stats

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_client and self._client is not None:
            await self._client.close()

    async def __aenter__(self) -> "BaseBalanceSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(name={self.name}, "
            f"source={self.source_name}, assets={list(self.assets)})>"
        )

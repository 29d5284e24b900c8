"""
Bank Module Balance Source - Native denom holders.

Reads holders and balances of native denoms straight from the bank
module. Balances come with the listing, so there are no per-holder reads
and no exchange rate: balance = round_half_up(amount * multiplier).
"""

import logging
from decimal import Decimal
from typing import Optional

from balance_sources.base import BaseBalanceSource, BatchCallback
from balance_sources.config import AssetDescriptor
from balance_sources.models import HolderBalance, Page


logger = logging.getLogger(__name__)


class BankModuleSource(BaseBalanceSource):
    """Native denom balances via bank module denom owners."""

    @property
    def name(self) -> str:
        return "bank-module"

    async def collect_asset(
        self,
        asset: AssetDescriptor,
        height: int,
        multiplier: Decimal,
        on_batch: BatchCallback,
    ) -> None:
        client = await self.get_client()

        async def fetch_page(key: Optional[str]) -> Page[HolderBalance]:
            owners, next_key = await client.denom_owners(
                asset.denom, height, self.pagination_limit, key
            )
            return Page(
                items=[
                    HolderBalance(address=address, balance=str(amount), asset=asset.asset_id)
                    for address, amount in owners
                ],
                next_cursor=next_key,
            )

        async for owners in self.pages(fetch_page, label=asset.asset_id):
            await self._deliver(on_batch, self._scale_and_filter(owners, multiplier))

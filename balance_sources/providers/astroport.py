"""
Astroport Balance Sources - Liquidity provider positions.

LP token balances are converted to underlying-asset units through the
pool exchange rate at the pinned height:

    rate      = underlying total supply / LP total supply
    effective = multiplier * rate
    balance   = round_half_up(lp_balance * effective)

AstroportSource reads holders straight from the LP token contract.
AstroportGeneratorSource reads LP tokens staked in the generator
(incentives) contract instead.
"""

import logging
from decimal import Decimal
from typing import Optional

from balance_sources.base import BaseBalanceSource, BatchCallback
from balance_sources.config import AssetDescriptor
from balance_sources.exceptions import ConfigurationError, QueryError
from balance_sources.liquidity import (
    effective_multiplier,
    resolve_exchange_rate,
    resolve_lp_token,
)
from balance_sources.models import HolderBalance


logger = logging.getLogger(__name__)


class AstroportSource(BaseBalanceSource):
    """LP token holders of Astroport pairs."""

    @property
    def name(self) -> str:
        return "astroport"

    def validate_config(self) -> None:
        for asset_id, asset in self.assets.items():
            if not asset.pool_contract:
                raise ConfigurationError(
                    f"No pair_contract configured for asset '{asset_id}'",
                    self.source_name,
                    config_key=f"assets.{asset_id}.pair_contract",
                )

    async def resolve_multiplier(
        self,
        asset: AssetDescriptor,
        height: int,
        multiplier: Decimal,
    ) -> tuple[str, Decimal]:
        """LP token and effective multiplier for `asset` at `height`."""
        client = await self.get_client()
        lp_token = await resolve_lp_token(client, asset.pool_contract, height)
        rate = await resolve_exchange_rate(
            client, lp_token, asset.denom, height, asset_id=asset.asset_id
        )
        effective = effective_multiplier(multiplier, rate)
        logger.info(
            f"[{self.source_name}] {asset.asset_id}: lp={lp_token} "
            f"rate={rate.rate} effective={effective}"
        )
        return lp_token, effective

    async def get_user_balance(
        self,
        account: str,
        lp_token: str,
        height: int,
        asset_id: str,
    ) -> HolderBalance:
        client = await self.get_client()
        data = await client.query_contract(
            lp_token,
            height,
            {"balance_at": {"address": account, "block": height}},
        )
        return HolderBalance(address=account, balance=str(data["balance"]), asset=asset_id)

    async def collect_asset(
        self,
        asset: AssetDescriptor,
        height: int,
        multiplier: Decimal,
        on_batch: BatchCallback,
    ) -> None:
        lp_token, effective = await self.resolve_multiplier(asset, height, multiplier)
        client = await self.get_client()

        async def fetch_page(start_after: Optional[str]) -> list[str]:
            query = {"limit": self.pagination_limit}
            if start_after is not None:
                query["start_after"] = start_after
            data = await client.query_contract(lp_token, height, {"all_accounts": query})
            return list(data.get("accounts", []))

        async def fetch_one(account: str) -> HolderBalance:
            return await self.get_user_balance(account, lp_token, height, asset.asset_id)

        async for accounts in self.pages(fetch_page, label=asset.asset_id):
            balances = await self.fetch_balances(accounts, fetch_one)
            await self._deliver(on_batch, self._scale_and_filter(balances, effective))


class AstroportGeneratorSource(AstroportSource):
    """LP tokens staked in the Astroport generator contract."""

    @property
    def name(self) -> str:
        return "generator"

    @property
    def generator_contract(self) -> str:
        return self.config.params["generator_contract"]

    def validate_config(self) -> None:
        super().validate_config()
        if not self.config.params.get("generator_contract"):
            raise ConfigurationError(
                "No generator_contract configured in params",
                self.source_name,
                config_key="generator_contract",
            )

    async def collect_asset(
        self,
        asset: AssetDescriptor,
        height: int,
        multiplier: Decimal,
        on_batch: BatchCallback,
    ) -> None:
        lp_token, effective = await self.resolve_multiplier(asset, height, multiplier)
        client = await self.get_client()

        async def fetch_page(start_after: Optional[str]) -> list[HolderBalance]:
            query = {"lp_token": lp_token, "limit": self.pagination_limit}
            if start_after is not None:
                query["start_after"] = start_after
            stakers = await client.query_contract(
                self.generator_contract, height, {"pool_stakers": query}
            )
            try:
                return [
                    HolderBalance(
                        address=staker["account"],
                        balance=str(staker["amount"]),
                        asset=asset.asset_id,
                    )
                    for staker in stakers
                ]
            except (KeyError, TypeError) as e:
                raise QueryError(
                    message=f"Malformed pool_stakers response for {lp_token}",
                    source_name=self.source_name,
                    response_body=str(stakers)[:500],
                    height=height,
                    original_error=e,
                ) from e

        async for stakers in self.pages(fetch_page, label=asset.asset_id):
            await self._deliver(on_batch, self._scale_and_filter(stakers, effective))

"""
Liquidity pool helpers - pool-share to underlying conversion.

The exchange rate is read fresh for every (asset, height) pair and is
never cached across heights.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Union

from balance_sources.exceptions import ExchangeRateError, QueryError
from balance_sources.query import LedgerQueryClient


logger = logging.getLogger(__name__)

# Enough digits that rate * balance keeps full integer precision for
# 128-bit token amounts.
_PRECISION = 80


def to_decimal(value: Union[int, float, str, Decimal]) -> Decimal:
    """Convert a caller-supplied number without float representation noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class ExchangeRate:
    """Underlying units per pool-share unit at one height."""
    underlying_supply: int
    share_supply: int
    height: int
    asset_id: str = ""

    def __post_init__(self) -> None:
        if self.share_supply <= 0:
            raise ExchangeRateError(
                f"Pool-share supply is {self.share_supply} at height {self.height}",
                asset_id=self.asset_id,
                underlying_supply=self.underlying_supply,
                share_supply=self.share_supply,
            )

    @property
    def rate(self) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Decimal(self.underlying_supply) / Decimal(self.share_supply)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "asset_id": self.asset_id,
            "height": self.height,
            "underlying_supply": str(self.underlying_supply),
            "share_supply": str(self.share_supply),
            "rate": str(self.rate),
        }


def effective_multiplier(
    multiplier: Union[int, float, str, Decimal],
    rate: ExchangeRate,
) -> Decimal:
    """Caller's reward rate composed with the pool exchange rate."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return to_decimal(multiplier) * rate.rate


def scale_balance(raw_balance: str, multiplier: Decimal) -> str:
    """round_half_up(raw × multiplier) rendered as a decimal string."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return str(round_half_up(Decimal(raw_balance) * multiplier))


async def resolve_lp_token(
    client: LedgerQueryClient,
    pair_contract: str,
    height: int,
) -> str:
    """LP token contract of an Astroport-style pair at `height`."""
    data = await client.query_contract(pair_contract, height, {"pair": {}})
    lp_token = data.get("liquidity_token") if isinstance(data, dict) else None
    if not lp_token:
        raise QueryError(
            message=f"Pair {pair_contract} reported no liquidity_token",
            response_body=str(data)[:500],
            height=height,
        )
    return lp_token


async def resolve_exchange_rate(
    client: LedgerQueryClient,
    lp_token: str,
    denom: str,
    height: int,
    asset_id: str = "",
) -> ExchangeRate:
    """Read both supplies at `height` and build the exchange rate."""
    share_supply = await client.query_contract(
        lp_token, height, {"total_supply_at": {"block": height}}
    )
    underlying_supply = await client.total_supply(denom, height)
    try:
        share_supply = int(share_supply)
    except (TypeError, ValueError) as e:
        raise QueryError(
            message=f"Malformed total_supply_at response from {lp_token}",
            response_body=str(share_supply)[:500],
            height=height,
            original_error=e,
        ) from e

    rate = ExchangeRate(
        underlying_supply=underlying_supply,
        share_supply=share_supply,
        height=height,
        asset_id=asset_id,
    )
    logger.debug(
        f"Exchange rate for {asset_id or denom} @ {height}: "
        f"{underlying_supply} / {share_supply} = {rate.rate}"
    )
    return rate

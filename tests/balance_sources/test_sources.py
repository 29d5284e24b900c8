"""
Balance Source Tests.

============================================================
PURPOSE
============================================================
End-to-end behaviour of each source against an in-memory ledger.

TEST CATEGORIES:
- Astroport LP: exchange rate, scaling, filtering, partial failure
- Astroport generator: staked LP listing
- Bank module: key-paginated native balances
- Contract: multipliers, backpressure, height pinning

============================================================
"""

import asyncio

import pytest

from balance_sources.exceptions import (
    ConfigurationError,
    ExchangeRateError,
    HolderFetchError,
    MissingMultiplierError,
    QueryError,
)
from balance_sources.providers import (
    AstroportGeneratorSource,
    AstroportSource,
    BankModuleSource,
)
from tests.balance_sources.fakes import (
    DENOM,
    GENERATOR,
    HEIGHT,
    LP_TOKEN,
    PAIR,
    FakeLedger,
    make_config,
)


def flatten(batches):
    return [record for batch in batches for record in batch]


# ============================================================
# ASTROPORT LP SOURCE
# ============================================================

class TestAstroportSource:
    """LP holders converted to underlying units."""

    @pytest.mark.asyncio
    async def test_scaled_balance(self, ledger, batches, collect):
        """rate 2.0 * multiplier 1.5 on raw 10 gives 30."""
        source = AstroportSource(make_config(), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1.5}, collect)

        assert batches == [[{"address": "addr1", "balance": "30", "asset": "atom-lp"}]]

    @pytest.mark.asyncio
    async def test_zero_balance_never_delivered(self, ledger, batches, collect):
        ledger.lp_holders[LP_TOKEN] = {"addr1": "10", "addr2": "0"}
        source = AstroportSource(make_config(), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1.5}, collect)

        records = flatten(batches)
        assert [r["address"] for r in records] == ["addr1"]
        assert all(r["balance"] != "0" for r in records)

    @pytest.mark.asyncio
    async def test_balance_scaling_to_zero_is_filtered(self, ledger, batches, collect):
        """A dust balance that rounds to 0 after scaling is dropped too."""
        ledger.lp_holders[LP_TOKEN] = {"addr1": "1", "addr2": "10"}
        source = AstroportSource(make_config(), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": "0.1"}, collect)

        assert flatten(batches) == [{"address": "addr2", "balance": "2", "asset": "atom-lp"}]

    @pytest.mark.asyncio
    async def test_failed_holder_dropped(self, ledger, batches, collect):
        """Holder #3 of a 5-holder page fails; the other 4 are delivered."""
        ledger.lp_holders[LP_TOKEN] = {f"addr{i}": str(i * 10) for i in range(1, 6)}
        ledger.failing.add("addr3")
        source = AstroportSource(make_config(pagination_limit=5), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

        assert len(batches) == 1
        assert sorted(r["address"] for r in batches[0]) == ["addr1", "addr2", "addr4", "addr5"]
        assert source.get_stats()["dropped_holders"] == 1

    @pytest.mark.asyncio
    async def test_strict_mode_aborts(self, ledger, collect):
        ledger.failing.add("addr1")
        source = AstroportSource(
            make_config(tolerate_holder_failures=False), client=ledger
        )

        with pytest.raises(HolderFetchError):
            await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

    @pytest.mark.asyncio
    async def test_zero_share_supply_is_fatal(self, ledger, batches, collect):
        ledger.lp_supply[LP_TOKEN] = 0
        source = AstroportSource(make_config(), client=ledger)

        with pytest.raises(ExchangeRateError):
            await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

        assert batches == []
        assert ledger.balance_calls == 0

    @pytest.mark.asyncio
    async def test_supply_query_error_propagates(self, ledger, collect):
        async def broken(denom, height):
            raise QueryError("HTTP 400", status_code=400, height=height)

        ledger.total_supply = broken
        source = AstroportSource(make_config(), client=ledger)

        with pytest.raises(QueryError):
            await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

    @pytest.mark.asyncio
    async def test_pages_streamed_in_order(self, ledger, batches, collect):
        ledger.lp_holders[LP_TOKEN] = {f"addr{i}": "1" for i in range(5)}
        source = AstroportSource(make_config(pagination_limit=2), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

        assert [len(b) for b in batches] == [2, 2, 1]
        assert [sorted(r["address"] for r in b) for b in batches] == [
            ["addr0", "addr1"], ["addr2", "addr3"], ["addr4"],
        ]
        # three pages plus the empty terminating page
        assert [e for e in ledger.events if e[0] == "page"] == [
            ("page", None), ("page", "addr1"), ("page", "addr3"), ("page", "addr4"),
        ]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, batches, collect):
        ledger = FakeLedger(delay=0.01)
        ledger.add_pool(
            PAIR, LP_TOKEN, DENOM, 1000, 1000,
            holders={f"addr{i:02d}": "5" for i in range(20)},
        )
        source = AstroportSource(
            make_config(concurrency_limit=3, pagination_limit=20), client=ledger
        )

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

        assert len(flatten(batches)) == 20
        assert ledger.max_in_flight <= 3

    @pytest.mark.asyncio
    async def test_every_read_at_same_height(self, ledger, collect):
        ledger.lp_holders[LP_TOKEN] = {f"addr{i}": "1" for i in range(4)}
        source = AstroportSource(make_config(), client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, collect)

        assert ledger.heights
        assert set(ledger.heights) == {HEIGHT}

    @pytest.mark.asyncio
    async def test_multiple_assets_in_config_order(self, ledger, batches, collect):
        ledger.add_pool(
            "neutron1pair2", "neutron1lp2", "untrn", 100, 300,
            holders={"bob": "2"},
        )
        config = make_config(assets={
            "second": {"denom": "untrn", "pair_contract": "neutron1pair2"},
            "first": {"denom": DENOM, "pair_contract": PAIR},
        })
        source = AstroportSource(config, client=ledger)

        await source.get_users_balances(HEIGHT, {"first": 1, "second": 1}, collect)

        assert flatten(batches) == [
            {"address": "bob", "balance": "6", "asset": "second"},
            {"address": "addr1", "balance": "20", "asset": "first"},
        ]

    def test_missing_pair_contract(self):
        config = make_config(assets={"atom-lp": {"denom": DENOM}})

        with pytest.raises(ConfigurationError) as exc_info:
            AstroportSource(config, client=FakeLedger())

        assert exc_info.value.config_key == "assets.atom-lp.pair_contract"


# ============================================================
# SOURCE CONTRACT
# ============================================================

class TestSourceContract:
    """Behaviour shared by every source."""

    @pytest.mark.asyncio
    async def test_missing_multiplier_is_fatal(self, ledger, batches, collect):
        source = AstroportSource(make_config(), client=ledger)

        with pytest.raises(MissingMultiplierError) as exc_info:
            await source.get_users_balances(HEIGHT, {"other": 1}, collect)

        assert exc_info.value.asset_id == "atom-lp"
        assert ledger.heights == []
        assert batches == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "bad", ["abc", float("nan"), float("inf"), True, False, -1, "-0.5", -2.5]
    )
    async def test_invalid_multiplier(self, ledger, collect, bad):
        source = AstroportSource(make_config(), client=ledger)

        with pytest.raises(ConfigurationError) as exc_info:
            await source.get_users_balances(HEIGHT, {"atom-lp": bad}, collect)

        assert exc_info.value.config_key == "multipliers"
        assert ledger.heights == []

    @pytest.mark.asyncio
    async def test_async_callback_backpressure(self, ledger):
        """No page is requested while the callback is still running."""
        ledger.lp_holders[LP_TOKEN] = {f"addr{i}": "1" for i in range(6)}
        source = AstroportSource(make_config(pagination_limit=2), client=ledger)

        async def slow_consumer(records):
            ledger.events.append(("batch_start", len(records)))
            await asyncio.sleep(0.01)
            ledger.events.append(("batch_end", len(records)))

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, slow_consumer)

        kinds = [kind for kind, _ in ledger.events]
        assert kinds == [
            "page", "batch_start", "batch_end",
            "page", "batch_start", "batch_end",
            "page", "batch_start", "batch_end",
            "page",
        ]

    @pytest.mark.asyncio
    async def test_callback_never_gets_empty_batch(self, ledger):
        ledger.lp_holders[LP_TOKEN] = {"a": "0", "b": "0", "c": "5"}
        source = AstroportSource(make_config(pagination_limit=2), client=ledger)
        sizes = []

        await source.get_users_balances(HEIGHT, {"atom-lp": 1}, lambda r: sizes.append(len(r)))

        assert sizes == [1]
        assert source.get_stats()["pages"] == 2

    @pytest.mark.asyncio
    async def test_last_block_height(self, ledger):
        source = AstroportSource(make_config(), client=ledger)

        assert await source.get_last_block_height() == ledger.latest

    @pytest.mark.asyncio
    async def test_injected_client_not_closed(self, ledger):
        async with AstroportSource(make_config(), client=ledger):
            pass

        assert ledger.closed is False

    def test_repr(self, ledger):
        source = AstroportSource(make_config(), client=ledger)

        assert "atom-lp" in repr(source)
        assert source.name == "astroport"


# ============================================================
# ASTROPORT GENERATOR SOURCE
# ============================================================

class TestAstroportGeneratorSource:
    """Staked LP positions."""

    @pytest.mark.asyncio
    async def test_staked_balances(self, ledger, batches, collect):
        ledger.stakers[LP_TOKEN] = [
            {"account": "alice", "amount": "10"},
            {"account": "bob", "amount": "0"},
            {"account": "carol", "amount": "3"},
        ]
        config = make_config("generator", generator_contract=GENERATOR)
        source = AstroportGeneratorSource(config, client=ledger)

        await source.get_users_balances(HEIGHT, {"atom-lp": 1.5}, collect)

        assert flatten(batches) == [
            {"address": "alice", "balance": "30", "asset": "atom-lp"},
            {"address": "carol", "balance": "9", "asset": "atom-lp"},
        ]
        assert ledger.balance_calls == 0
        assert [e for e in ledger.events if e[0] == "page"] == [
            ("page", None), ("page", "bob"), ("page", "carol"),
        ]

    def test_requires_generator_contract(self):
        with pytest.raises(ConfigurationError) as exc_info:
            AstroportGeneratorSource(make_config("generator"), client=FakeLedger())

        assert exc_info.value.config_key == "generator_contract"


# ============================================================
# BANK MODULE SOURCE
# ============================================================

class TestBankModuleSource:
    """Native denom balances."""

    @pytest.mark.asyncio
    async def test_native_balances(self, batches, collect):
        ledger = FakeLedger()
        ledger.owners["untrn"] = [
            ("n1", "100"), ("n2", "0"), ("n3", "7"), ("n4", "1"), ("n5", "2"),
        ]
        config = make_config(
            "neutron",
            assets={"ntrn": {"denom": "untrn"}},
            pagination_limit=2,
        )
        source = BankModuleSource(config, client=ledger)

        await source.get_users_balances(HEIGHT, {"ntrn": 2}, collect)

        assert batches == [
            [{"address": "n1", "balance": "200", "asset": "ntrn"}],
            [
                {"address": "n3", "balance": "14", "asset": "ntrn"},
                {"address": "n4", "balance": "2", "asset": "ntrn"},
            ],
            [{"address": "n5", "balance": "4", "asset": "ntrn"}],
        ]
        # next key pagination: no trailing empty request
        assert [e for e in ledger.events if e[0] == "page"] == [
            ("page", None), ("page", "2"), ("page", "4"),
        ]
        assert set(ledger.heights) == {HEIGHT}

    @pytest.mark.asyncio
    async def test_no_holders(self, batches, collect):
        ledger = FakeLedger()
        ledger.owners["untrn"] = []
        config = make_config("kujira", assets={"ntrn": {"denom": "untrn"}})
        source = BankModuleSource(config, client=ledger)

        await source.get_users_balances(HEIGHT, {"ntrn": 1}, collect)

        assert batches == []

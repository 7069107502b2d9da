import pytest
from eth_abi import decode, encode

from flash_arb_bot.config import VenueConfig
from flash_arb_bot.connector import RpcClient, RpcError
from flash_arb_bot.signals import OpportunityScanner
from flash_arb_bot.venues import (
    ConcentratedLiquidityVenue,
    ConstantProductVenue,
    VenueKind,
    build_venues,
)
from flash_arb_bot.venues.amm_math import BPS, FEE_PIPS, Q96, get_amount_out, virtual_reserves
from flash_arb_bot.venues.concentrated import LIQUIDITY, QUOTE_EXACT_INPUT_SINGLE, SLOT0
from flash_arb_bot.venues.constant_product import GET_RESERVES

from conftest import ONE

TOKEN0 = "0x" + "aa" * 20
TOKEN1 = "0x" + "bb" * 20
PAIR = "0x" + "01" * 20
POOL_500 = "0x" + "05" * 20
POOL_3000 = "0x" + "30" * 20
QUOTER = "0x" + "0f" * 20

QUOTE_SELECTOR = "0x" + QUOTE_EXACT_INPUT_SINGLE.hex()


def hexed(types, values) -> str:
    return "0x" + encode(types, values).hex()


def slot0(sqrt_price_x96: int) -> str:
    return hexed(
        ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"],
        [sqrt_price_x96, -5, 0, 1, 1, 0, True],
    )


class ChainStub(RpcClient):
    """
    eth_call answers from pool state.

    Pools are keyed by fee tier; the quoter prices each tier on that pool's
    virtual reserves, so tiers of one pair quote independently.
    """

    def __init__(self):
        super().__init__("http://node.invalid")
        self.reserves: dict[str, tuple[int, int]] = {}
        self.pools: dict[int, tuple[str, int, int]] = {}
        self.calls: list[tuple[str, str]] = []

    def add_pair(self, address: str, reserve0: int, reserve1: int) -> None:
        self.reserves[address] = (reserve0, reserve1)

    def add_pool(self, address: str, fee: int, sqrt_price_x96: int, liquidity: int) -> None:
        self.pools[fee] = (address, sqrt_price_x96, liquidity)

    def quoted(self) -> list[tuple]:
        """Decoded quoter arguments, in call order."""
        return [
            decode(["(address,address,uint256,uint24,uint160)"], bytes.fromhex(data[10:]))[0]
            for to, data in self.calls
            if to == QUOTER
        ]

    async def call(self, to: str, data: str, block: str = "latest") -> str:
        self.calls.append((to, data))
        selector = data[:10]

        if to in self.reserves and selector == GET_RESERVES:
            reserve0, reserve1 = self.reserves[to]
            return hexed(["uint112", "uint112", "uint32"], [reserve0, reserve1, 1_700_000_000])

        for address, sqrt_price_x96, liquidity in self.pools.values():
            if to != address:
                continue
            if selector == SLOT0:
                return slot0(sqrt_price_x96)
            if selector == LIQUIDITY:
                return hexed(["uint128"], [liquidity])

        if to == QUOTER and selector == QUOTE_SELECTOR:
            token_in, _, amount_in, fee, _ = self.quoted()[-1]
            _, sqrt_price_x96, liquidity = self.pools[fee]
            reserve0, reserve1 = virtual_reserves(sqrt_price_x96, liquidity)
            if token_in.lower() == TOKEN0:
                amount_out = get_amount_out(amount_in, reserve0, reserve1, fee, FEE_PIPS)
            else:
                amount_out = get_amount_out(amount_in, reserve1, reserve0, fee, FEE_PIPS)
            return hexed(["uint256", "uint160", "uint32", "uint256"], [amount_out, 0, 1, 90_000])

        raise RpcError(3, "execution reverted")


def pool_venue(chain: ChainStub, fee: int, pool: str, index: int = 0) -> ConcentratedLiquidityVenue:
    return ConcentratedLiquidityVenue(
        chain, f"pool-{fee}", pool, QUOTER, TOKEN0, TOKEN1, fee=fee, index=index
    )


class TestConstantProductVenue:
    async def test_snapshot_from_reserves(self):
        chain = ChainStub()
        chain.add_pair(PAIR, 1_000 * ONE, 2_500 * ONE)
        venue = ConstantProductVenue(chain, "alpha", PAIR, TOKEN0, TOKEN1, fee=25, index=2)

        snapshot = await venue.fetch_snapshot()

        assert chain.calls == [(PAIR, GET_RESERVES)]
        assert snapshot.kind == VenueKind.CONSTANT_PRODUCT
        assert (snapshot.reserve0, snapshot.reserve1) == (1_000 * ONE, 2_500 * ONE)
        assert snapshot.fee == 25
        assert snapshot.fee_denominator == BPS

    async def test_quote_is_local_math(self):
        chain = ChainStub()
        chain.add_pair(PAIR, 1_000 * ONE, 2_500 * ONE)
        venue = ConstantProductVenue(chain, "alpha", PAIR, TOKEN0, TOKEN1)
        snapshot = await venue.fetch_snapshot()

        amount_out = await venue.quote(ONE, TOKEN1, snapshot)

        assert amount_out == get_amount_out(ONE, 2_500 * ONE, 1_000 * ONE, 30, BPS)
        assert len(chain.calls) == 1


class TestConcentratedLiquidityVenue:
    async def test_snapshot_from_slot0_and_liquidity(self):
        chain = ChainStub()
        chain.add_pool(POOL_500, 500, Q96, 1_000 * ONE)
        venue = pool_venue(chain, 500, POOL_500)

        snapshot = await venue.fetch_snapshot()

        assert chain.calls == [(POOL_500, SLOT0), (POOL_500, LIQUIDITY)]
        assert snapshot.kind == VenueKind.CONCENTRATED
        assert snapshot.sqrt_price_x96 == Q96
        assert snapshot.liquidity == 1_000 * ONE
        # price 1: both virtual reserves equal the liquidity
        assert (snapshot.reserve0, snapshot.reserve1) == (1_000 * ONE, 1_000 * ONE)
        assert snapshot.fee_denominator == FEE_PIPS

    async def test_quote_encodes_single_hop_request(self):
        chain = ChainStub()
        chain.add_pool(POOL_500, 500, Q96, 1_000 * ONE)
        venue = pool_venue(chain, 500, POOL_500)
        snapshot = await venue.fetch_snapshot()

        amount_out = await venue.quote(ONE, TOKEN0, snapshot)

        token_in, token_out, amount_in, fee, price_limit = chain.quoted()[0]
        assert token_in.lower() == TOKEN0
        assert token_out.lower() == TOKEN1
        assert amount_in == ONE
        assert fee == 500
        assert price_limit == 0
        assert amount_out == snapshot.amount_out(ONE, TOKEN0)

    async def test_reverting_quoter_raises(self):
        chain = ChainStub()
        chain.add_pool(POOL_500, 500, Q96, ONE)
        venue = ConcentratedLiquidityVenue(chain, "pool-500", POOL_500, PAIR, TOKEN0, TOKEN1, fee=500)
        snapshot = await venue.fetch_snapshot()

        with pytest.raises(RpcError) as excinfo:
            await venue.quote(ONE, TOKEN0, snapshot)

        assert excinfo.value.code == 3


class TestFeeTiers:
    def build(self, chain: ChainStub):
        return build_venues(
            [
                VenueConfig("pool", "concentrated", POOL_500, "router", TOKEN0, TOKEN1, fee=500),
                VenueConfig("pool", "concentrated", POOL_3000, "router", TOKEN0, TOKEN1, fee=3000),
            ],
            chain,
            quoter_address=QUOTER,
        )

    async def test_tiers_of_one_pair_are_separate_venues(self):
        chain = ChainStub()
        chain.add_pool(POOL_500, 500, Q96, 1_000 * ONE)
        chain.add_pool(POOL_3000, 3000, Q96 * 11 // 10, 1_000 * ONE)

        venues = self.build(chain)

        assert [v.venue_id for v in venues] == ["pool-500", "pool-3000"]
        assert [v.index for v in venues] == [0, 1]
        assert [v.pool_address for v in venues] == [POOL_500, POOL_3000]

    async def test_scan_routes_between_tiers(self):
        chain = ChainStub()
        # token0 trades at 1.21 token1 on the 0.3% tier and at par on the 0.05% tier
        chain.add_pool(POOL_500, 500, Q96, 1_000 * ONE)
        chain.add_pool(POOL_3000, 3000, Q96 * 11 // 10, 1_000 * ONE)
        scanner = OpportunityScanner(self.build(chain), TOKEN0, ONE)

        opportunities = await scanner.scan()

        assert len(opportunities) == 1
        best = opportunities[0]
        assert (best.venue_a, best.venue_b) == ("pool-3000", "pool-500")
        assert (best.venue_a_index, best.venue_b_index) == (1, 0)
        assert best.lock_key == ":".join(sorted((TOKEN0, TOKEN1)))

        cheap = virtual_reserves(Q96, 1_000 * ONE)
        rich = virtual_reserves(Q96 * 11 // 10, 1_000 * ONE)
        hop1 = get_amount_out(ONE, rich[0], rich[1], 3000, FEE_PIPS)
        hop2 = get_amount_out(hop1, cheap[1], cheap[0], 500, FEE_PIPS)
        assert best.hop1_amount_out == hop1
        assert best.expected_amount_out == hop2
        assert best.gross_profit == hop2 - ONE > 0

        fees_quoted = [(args[3], args[2]) for args in chain.quoted()]
        assert (3000, ONE) in fees_quoted
        assert (500, hop1) in fees_quoted

    async def test_unreadable_tier_is_dropped(self):
        chain = ChainStub()
        chain.add_pool(POOL_500, 500, Q96, 1_000 * ONE)
        scanner = OpportunityScanner(self.build(chain), TOKEN0, ONE)

        assert await scanner.scan() == []
        assert list(scanner.last_errors) == ["pool-3000"]
        assert isinstance(scanner.last_errors["pool-3000"], RpcError)

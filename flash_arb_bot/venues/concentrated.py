"""
Concentrated-liquidity pool adapter (Uniswap V3 style).
Each pool is one fee tier; tiers of the same pair are separate venues.
"""

from eth_abi import decode, encode
from eth_utils import keccak

from ..connector.rpc_client import RpcClient
from .base import VenueAdapter, VenueKind, VenueSnapshot

SLOT0 = "0x" + keccak(text="slot0()")[:4].hex()
LIQUIDITY = "0x" + keccak(text="liquidity()")[:4].hex()
QUOTE_EXACT_INPUT_SINGLE = keccak(
    text="quoteExactInputSingle((address,address,uint256,uint24,uint160))"
)[:4]


class ConcentratedLiquidityVenue(VenueAdapter):
    """Reads slot0 and in-range liquidity; quotes through the quoter contract."""

    kind = VenueKind.CONCENTRATED

    def __init__(
        self,
        rpc: RpcClient,
        venue_id: str,
        pool_address: str,
        quoter_address: str,
        token0: str,
        token1: str,
        fee: int = 3000,
        index: int = 0,
    ):
        super().__init__(venue_id, token0, token1, fee, index)
        self.rpc = rpc
        self.pool_address = pool_address
        self.quoter_address = quoter_address

    async def fetch_snapshot(self) -> VenueSnapshot:
        slot0 = await self.rpc.call(self.pool_address, SLOT0)
        liquidity = await self.rpc.call(self.pool_address, LIQUIDITY)

        # only sqrtPriceX96 is needed from the slot0 tuple
        (sqrt_price_x96,) = decode(["uint160"], bytes.fromhex(slot0[2:66]))
        (active_liquidity,) = decode(["uint128"], bytes.fromhex(liquidity[2:]))

        return VenueSnapshot.from_sqrt_price(
            venue_id=self.venue_id,
            token0=self.token0,
            token1=self.token1,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=active_liquidity,
            fee=self.fee,
        )

    async def quote(self, amount_in: int, token_in: str, snapshot: VenueSnapshot) -> int:
        """Exact output for amount_in from a non-mutating quoter call."""
        token_out = snapshot.other_token(token_in)
        args = encode(
            ["(address,address,uint256,uint24,uint160)"],
            [(token_in, token_out, amount_in, self.fee, 0)],
        )
        result = await self.rpc.call(
            self.quoter_address, "0x" + (QUOTE_EXACT_INPUT_SINGLE + args).hex()
        )
        amount_out, _, _, _ = decode(
            ["uint256", "uint160", "uint32", "uint256"], bytes.fromhex(result[2:])
        )
        return amount_out

"""
Constant-product pair adapter (Uniswap V2 style).
"""

from eth_abi import decode
from eth_utils import keccak

from ..connector.rpc_client import RpcClient
from .amm_math import BPS
from .base import VenueAdapter, VenueKind, VenueSnapshot

GET_RESERVES = "0x" + keccak(text="getReserves()")[:4].hex()


class ConstantProductVenue(VenueAdapter):
    """Reads reserves of a single pair contract over JSON-RPC."""

    kind = VenueKind.CONSTANT_PRODUCT

    def __init__(
        self,
        rpc: RpcClient,
        venue_id: str,
        pair_address: str,
        token0: str,
        token1: str,
        fee: int = 30,
        index: int = 0,
    ):
        super().__init__(venue_id, token0, token1, fee, index)
        self.rpc = rpc
        self.pair_address = pair_address

    async def fetch_snapshot(self) -> VenueSnapshot:
        result = await self.rpc.call(self.pair_address, GET_RESERVES)
        reserve0, reserve1, _ = decode(
            ["uint112", "uint112", "uint32"], bytes.fromhex(result[2:])
        )
        return VenueSnapshot(
            venue_id=self.venue_id,
            kind=self.kind,
            token0=self.token0,
            token1=self.token1,
            reserve0=reserve0,
            reserve1=reserve1,
            fee=self.fee,
            fee_denominator=BPS,
        )

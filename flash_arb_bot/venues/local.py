"""
Adapter over a constant-product router on the in-process ledger.
"""

import asyncio

from .amm_math import BPS
from .base import VenueAdapter, VenueKind, VenueSnapshot


class LocalVenue(VenueAdapter):
    """Reads pool reserves straight from a ledger router object."""

    kind = VenueKind.CONSTANT_PRODUCT

    def __init__(self, router, venue_id: str, token0: str, token1: str, index: int = 0):
        super().__init__(venue_id, token0, token1, router.fee_bps, index)
        self.router = router

    async def fetch_snapshot(self) -> VenueSnapshot:
        # yield so reads across venues interleave like network reads
        await asyncio.sleep(0)
        reserve0, reserve1 = self.router.get_reserves(self.token0, self.token1)
        return VenueSnapshot(
            venue_id=self.venue_id,
            kind=self.kind,
            token0=self.token0,
            token1=self.token1,
            reserve0=reserve0,
            reserve1=reserve1,
            fee=self.router.fee_bps,
            fee_denominator=BPS,
        )

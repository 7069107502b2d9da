"""
Venue adapter interface and reserve snapshots.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from .amm_math import BPS, FEE_PIPS, get_amount_out, virtual_reserves


class VenueKind(Enum):
    """Automated market maker families."""
    CONSTANT_PRODUCT = "constant_product"
    CONCENTRATED = "concentrated"


@dataclass(frozen=True)
class VenueSnapshot:
    """Point-in-time pricing state of one venue."""
    venue_id: str
    kind: VenueKind
    token0: str
    token1: str
    reserve0: int
    reserve1: int
    fee: int
    fee_denominator: int = BPS
    sqrt_price_x96: int = 0
    liquidity: int = 0
    fetched_at: float = field(default_factory=time.time)

    @classmethod
    def from_sqrt_price(
        cls,
        venue_id: str,
        token0: str,
        token1: str,
        sqrt_price_x96: int,
        liquidity: int,
        fee: int,
    ) -> "VenueSnapshot":
        """Concentrated-liquidity snapshot priced on its in-range virtual reserves."""
        reserve0, reserve1 = virtual_reserves(sqrt_price_x96, liquidity)
        return cls(
            venue_id=venue_id,
            kind=VenueKind.CONCENTRATED,
            token0=token0,
            token1=token1,
            reserve0=reserve0,
            reserve1=reserve1,
            fee=fee,
            fee_denominator=FEE_PIPS,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity,
        )

    def quotes(self, token_a: str, token_b: str) -> bool:
        """True if this venue trades the token_a/token_b pair."""
        return {token_a, token_b} == {self.token0, self.token1}

    def other_token(self, token: str) -> str:
        if token == self.token0:
            return self.token1
        if token == self.token1:
            return self.token0
        raise ValueError(f"{self.venue_id} does not trade {token}")

    def reserves_for(self, token_in: str) -> tuple[int, int]:
        """(reserve_in, reserve_out) for a swap selling token_in."""
        if token_in == self.token0:
            return self.reserve0, self.reserve1
        if token_in == self.token1:
            return self.reserve1, self.reserve0
        raise ValueError(f"{self.venue_id} does not trade {token_in}")

    def amount_out(self, amount_in: int, token_in: str) -> int:
        reserve_in, reserve_out = self.reserves_for(token_in)
        return get_amount_out(
            amount_in, reserve_in, reserve_out, self.fee, self.fee_denominator
        )


class VenueAdapter(ABC):
    """
    Read-only price source for one venue.

    `index` is the venue's position in the arbitrage contract's venue list,
    used to route execution through it.
    """

    kind: VenueKind

    def __init__(self, venue_id: str, token0: str, token1: str, fee: int, index: int = 0):
        self.venue_id = venue_id
        self.token0 = token0
        self.token1 = token1
        self.fee = fee
        self.index = index

    def quotes(self, token_a: str, token_b: str) -> bool:
        return {token_a, token_b} == {self.token0, self.token1}

    @abstractmethod
    async def fetch_snapshot(self) -> VenueSnapshot:
        """Read current reserves / price state."""
        ...

    async def quote(self, amount_in: int, token_in: str, snapshot: VenueSnapshot) -> int:
        """Expected output of selling amount_in of token_in at the snapshot state."""
        return snapshot.amount_out(amount_in, token_in)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.venue_id})"

"""
Shared fixtures: a funded in-process market, a fake clock and a fake Redis.
"""

from dataclasses import dataclass
from typing import Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from flash_arb_bot.ledger import (
    ConstantProductRouter,
    FlashArbitrage,
    FlashLender,
    Ledger,
    LocalContractGateway,
)
from flash_arb_bot.venues import LocalVenue

ONE = 10 ** 18

TOKEN_A = "TKA"
TOKEN_B = "TKB"
OPERATOR = "operator"
STRANGER = "stranger"
LENDER = "lender"
CONTRACT = "arb"

# well-known development key, never funded on a real network
DEV_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """The slice of redis.asyncio.Redis the lock backend uses."""

    def __init__(self, clock: Optional[FakeClock] = None, reachable: bool = True):
        self.clock = clock or FakeClock()
        self.reachable = reachable
        self.closed = False
        self._data: dict[str, tuple[str, Optional[float]]] = {}

    def _get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def ping(self) -> bool:
        self._check_reachable()
        return True

    async def get(self, key: str) -> Optional[str]:
        return self._get(key)

    def _check_reachable(self) -> None:
        if not self.reachable:
            raise RedisConnectionError("Connection refused")

    async def set(self, key, value, nx=False, px=None):
        self._check_reachable()
        if nx and self._get(key) is not None:
            return None
        expires_at = self.clock() + px / 1000 if px else None
        self._data[key] = (value, expires_at)
        return True

    def register_script(self, script: str):
        async def release(keys, args):
            self._check_reachable()
            if self._get(keys[0]) == args[0]:
                del self._data[keys[0]]
                return 1
            return 0
        return release

    async def aclose(self) -> None:
        self.closed = True


@dataclass
class LocalMarket:
    """Two constant-product venues, a flash lender and the arbitrage contract."""
    ledger: Ledger
    alpha: ConstantProductRouter
    beta: ConstantProductRouter
    lender: FlashLender
    contract: FlashArbitrage
    gateway: LocalContractGateway
    venues: list[LocalVenue]

    def venue(self, venue_id: str) -> LocalVenue:
        return next(v for v in self.venues if v.venue_id == venue_id)


def build_market(
    alpha_reserves: tuple[int, int] = (1000 * ONE, 50 * ONE),
    beta_reserves: tuple[int, int] = (50 * ONE, 1000 * ONE),
    lender_liquidity: int = 100 * ONE,
    premium_bps: int = 5,
    fee_bps: int = 30,
    **gateway_kwargs,
) -> LocalMarket:
    """Reserves are (TOKEN_A, TOKEN_B) per venue."""
    ledger = Ledger()

    alpha = ConstantProductRouter(ledger, "router-alpha", fee_bps=fee_bps)
    alpha.create_pool(TOKEN_A, TOKEN_B, *alpha_reserves)
    beta = ConstantProductRouter(ledger, "router-beta", fee_bps=fee_bps)
    beta.create_pool(TOKEN_A, TOKEN_B, *beta_reserves)

    lender = FlashLender(ledger, LENDER, premium_bps=premium_bps)
    ledger.mint(TOKEN_A, LENDER, lender_liquidity)

    contract = FlashArbitrage(
        ledger,
        CONTRACT,
        operator=OPERATOR,
        lender=LENDER,
        venues=[alpha.address, beta.address],
    )
    gateway = LocalContractGateway(ledger, contract, OPERATOR, **gateway_kwargs)

    venues = [
        LocalVenue(alpha, "alpha", TOKEN_A, TOKEN_B, index=0),
        LocalVenue(beta, "beta", TOKEN_A, TOKEN_B, index=1),
    ]
    return LocalMarket(ledger, alpha, beta, lender, contract, gateway, venues)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def make_market():
    return build_market


@pytest.fixture
def market():
    return build_market()

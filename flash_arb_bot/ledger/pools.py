"""
Constant-product trading venues on the ledger.
A router owns a set of two-token pools and swaps along token paths.
"""

from ..venues.amm_math import BPS, get_amount_out
from .state import Ledger, require


class ConstantProductRouter:
    """Router over constant-product pools whose reserves are ledger balances."""

    def __init__(self, ledger: Ledger, address: str, fee_bps: int = 30):
        self.ledger = ledger
        self.address = address
        self.fee_bps = fee_bps
        self._pools: dict[frozenset, str] = {}
        ledger.deploy(self)

    def create_pool(self, token_a: str, token_b: str, amount_a: int, amount_b: int) -> str:
        """Create a pool seeded with the given reserves."""
        key = frozenset((token_a, token_b))
        require(len(key) == 2, "Identical tokens")
        require(key not in self._pools, "Pool exists")
        pool = f"{self.address}:{'-'.join(sorted(key))}"
        self._pools[key] = pool
        self.ledger.mint(token_a, pool, amount_a)
        self.ledger.mint(token_b, pool, amount_b)
        return pool

    def pool_for(self, token_a: str, token_b: str) -> str:
        pool = self._pools.get(frozenset((token_a, token_b)))
        require(pool is not None, "Pool not found")
        return pool

    def get_reserves(self, token_in: str, token_out: str) -> tuple[int, int]:
        pool = self.pool_for(token_in, token_out)
        return (
            self.ledger.balance_of(token_in, pool),
            self.ledger.balance_of(token_out, pool),
        )

    def get_amounts_out(self, amount_in: int, path: list[str]) -> list[int]:
        require(len(path) >= 2, "Invalid path")
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            reserve_in, reserve_out = self.get_reserves(token_in, token_out)
            require(reserve_in > 0 and reserve_out > 0, "Insufficient liquidity")
            amounts.append(
                get_amount_out(amounts[-1], reserve_in, reserve_out, self.fee_bps, BPS)
            )
        return amounts

    def swap_exact_tokens_for_tokens(
        self,
        caller: str,
        amount_in: int,
        amount_out_min: int,
        path: list[str],
        to: str,
    ) -> list[int]:
        """Swap an exact input along path, pulling it from caller via allowance."""
        with self.ledger.transaction():
            amounts = self.get_amounts_out(amount_in, path)
            require(amounts[-1] >= amount_out_min, "Insufficient output amount")

            first_pool = self.pool_for(path[0], path[1])
            self.ledger.transfer_from(path[0], self.address, caller, first_pool, amount_in)

            hops = list(zip(path, path[1:]))
            for i, (token_in, token_out) in enumerate(hops):
                pool = self.pool_for(token_in, token_out)
                if i + 1 < len(hops):
                    recipient = self.pool_for(*hops[i + 1])
                else:
                    recipient = to
                self.ledger.transfer(token_out, pool, recipient, amounts[i + 1])

            return amounts

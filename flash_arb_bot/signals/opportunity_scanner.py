"""
Cross-venue round-trip opportunity scanner.
Borrow token_in, sell it on venue A, buy it back on venue B; keep the
route when the buy-back returns more than was borrowed.
"""

import asyncio
import time
from dataclasses import dataclass, field
from itertools import permutations
from typing import Callable, Optional, TYPE_CHECKING

from ..venues.base import VenueAdapter, VenueSnapshot

if TYPE_CHECKING:
    from ..monitor.logger import Logger

MAX_HOP2_CANDIDATES = 3


@dataclass(frozen=True)
class Opportunity:
    """
    Profitable two-hop round trip at scan time.

    Hop 1 sells amount_in of token_in for token_out on venue_a; hop 2 sells
    the proceeds back to token_in on venue_b. Immutable once computed.
    """
    venue_a: str
    venue_b: str
    token_in: str
    token_out: str
    amount_in: int
    hop1_amount_out: int
    expected_amount_out: int
    gross_profit: int
    discovered_at: float = field(default_factory=time.time)
    venue_a_index: int = 0
    venue_b_index: int = 0
    fallback_venues: tuple[str, ...] = ()
    fallback_indices: tuple[int, ...] = ()

    @property
    def path1(self) -> tuple[str, str]:
        return (self.token_in, self.token_out)

    @property
    def path2(self) -> tuple[str, str]:
        return (self.token_out, self.token_in)

    @property
    def lock_key(self) -> str:
        """Logical key shared by every route over the same token pair."""
        return ":".join(sorted((self.token_in, self.token_out)))

    @property
    def hop2_indices(self) -> tuple[int, ...]:
        """Ordered hop-2 candidates: venue B first, then fallbacks."""
        return ((self.venue_b_index,) + self.fallback_indices)[:MAX_HOP2_CANDIDATES]

    def age(self, now: Optional[float] = None) -> float:
        return (now if now is not None else time.time()) - self.discovered_at

    def is_stale(self, max_age_seconds: float, now: Optional[float] = None) -> bool:
        return self.age(now) > max_age_seconds


class OpportunityScanner:
    """
    Prices every ordered venue pair quoting the same token pair.

    Venue reads run concurrently. A venue whose read or quote fails is
    dropped from this cycle only; the rest of the scan still completes.
    """

    def __init__(
        self,
        venues: list[VenueAdapter],
        token_in: str,
        amount_in: int,
        logger: Optional["Logger"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.venues = [v for v in venues if token_in in (v.token0, v.token1)]
        self.token_in = token_in
        self.amount_in = amount_in
        self.logger = logger
        self.clock = clock

        self._callbacks: list[Callable[[Opportunity], None]] = []
        self.last_errors: dict[str, Exception] = {}

    def on_opportunity(self, callback: Callable[[Opportunity], None]) -> None:
        """Register callback for new opportunities."""
        self._callbacks.append(callback)

    def _emit(self, opportunity: Opportunity) -> None:
        for callback in self._callbacks:
            callback(opportunity)

    def _record_error(self, venue: VenueAdapter, stage: str, error: Exception) -> None:
        self.last_errors[venue.venue_id] = error
        if self.logger:
            self.logger.warning(
                "venue_read_failed",
                venue=venue.venue_id,
                stage=stage,
                error=str(error),
            )

    async def fetch_snapshots(
        self, venues: Optional[list[VenueAdapter]] = None
    ) -> dict[str, VenueSnapshot]:
        """Read all venues concurrently. Failed venues are left out."""
        venues = self.venues if venues is None else venues
        results = await asyncio.gather(
            *(v.fetch_snapshot() for v in venues),
            return_exceptions=True,
        )

        snapshots = {}
        for venue, result in zip(venues, results):
            if isinstance(result, Exception):
                self._record_error(venue, "snapshot", result)
                continue
            snapshots[venue.venue_id] = result
        return snapshots

    async def scan(self) -> list[Opportunity]:
        """
        Run one scan cycle.
        Returns profitable opportunities ranked by gross profit, highest first.
        """
        self.last_errors = {}
        snapshots = await self.fetch_snapshots()
        live = [v for v in self.venues if v.venue_id in snapshots]

        # hop 1: sell token_in on every venue
        hop1_results = await asyncio.gather(
            *(v.quote(self.amount_in, self.token_in, snapshots[v.venue_id]) for v in live),
            return_exceptions=True,
        )
        hop1: dict[str, int] = {}
        for venue, result in zip(live, hop1_results):
            if isinstance(result, Exception):
                self._record_error(venue, "quote_hop1", result)
                continue
            hop1[venue.venue_id] = result

        # hop 2: buy token_in back on every other venue of the same pair
        pairs = [
            (a, b) for a, b in permutations(live, 2)
            if a.venue_id in hop1
            and hop1[a.venue_id] > 0
            and b.quotes(a.token0, a.token1)
        ]
        hop2_results = await asyncio.gather(
            *(
                b.quote(hop1[a.venue_id], snapshots[b.venue_id].other_token(self.token_in),
                        snapshots[b.venue_id])
                for a, b in pairs
            ),
            return_exceptions=True,
        )

        quotes: dict[tuple[str, str], int] = {}
        for (a, b), result in zip(pairs, hop2_results):
            if isinstance(result, Exception):
                self._record_error(b, "quote_hop2", result)
                continue
            quotes[(a.venue_id, b.venue_id)] = result

        now = self.clock()
        opportunities = []
        for a, b in pairs:
            final = quotes.get((a.venue_id, b.venue_id))
            if final is None or final <= self.amount_in:
                continue

            fallbacks = self._fallbacks(a, b, quotes)
            opportunity = Opportunity(
                venue_a=a.venue_id,
                venue_b=b.venue_id,
                token_in=self.token_in,
                token_out=snapshots[a.venue_id].other_token(self.token_in),
                amount_in=self.amount_in,
                hop1_amount_out=hop1[a.venue_id],
                expected_amount_out=final,
                gross_profit=final - self.amount_in,
                discovered_at=now,
                venue_a_index=a.index,
                venue_b_index=b.index,
                fallback_venues=tuple(v.venue_id for v in fallbacks),
                fallback_indices=tuple(v.index for v in fallbacks),
            )
            opportunities.append(opportunity)

        opportunities.sort(key=lambda o: o.gross_profit, reverse=True)

        for opportunity in opportunities:
            if self.logger:
                self.logger.opportunity_found(opportunity)
            self._emit(opportunity)

        return opportunities

    def _fallbacks(
        self,
        a: VenueAdapter,
        b: VenueAdapter,
        quotes: dict[tuple[str, str], int],
    ) -> list[VenueAdapter]:
        """Next-best hop-2 venues for the same hop-1 fill, best quote first."""
        others = [
            v for v in self.venues
            if v.venue_id not in (a.venue_id, b.venue_id)
            and quotes.get((a.venue_id, v.venue_id), 0) > 0
        ]
        others.sort(key=lambda v: quotes[(a.venue_id, v.venue_id)], reverse=True)
        return others[:MAX_HOP2_CANDIDATES - 1]

    def venue(self, venue_id: str) -> Optional[VenueAdapter]:
        for v in self.venues:
            if v.venue_id == venue_id:
                return v
        return None


def filter_profitable(
    opportunities: list[Opportunity],
    gas_cost: int,
    min_net_profit: int = 0,
) -> list[Opportunity]:
    """Keep opportunities whose gross profit minus gas_cost exceeds min_net_profit."""
    return [o for o in opportunities if o.gross_profit - gas_cost > min_net_profit]

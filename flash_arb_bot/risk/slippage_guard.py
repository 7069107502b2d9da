"""
Slippage and profitability guard.
Derives minimum acceptable outputs for both hops from live reserves and
decides whether the round trip still repays the loan under the worst
tolerated slippage.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from ..signals.opportunity_scanner import Opportunity
from ..venues.amm_math import (
    apply_slippage,
    calculate_price_impact,
    flash_loan_premium,
    safe_amount_in,
)
from ..venues.base import VenueAdapter, VenueSnapshot
from .checks import RiskCheck, RiskViolation

if TYPE_CHECKING:
    from ..monitor.logger import Logger


@dataclass(frozen=True)
class ProtectedRoute:
    """Slippage-protected parameters of an opportunity at one reserve snapshot."""
    opportunity: Opportunity
    expected_amount_out_hop1: int
    expected_amount_out_hop2: int
    min_amount_out_hop1: int
    min_amount_out_hop2: int
    premium: int
    price_impact_pct: float
    computed_at: float = field(default_factory=time.time, compare=False)

    @property
    def owed(self) -> int:
        return self.opportunity.amount_in + self.premium

    @property
    def is_profitable(self) -> bool:
        return self.min_amount_out_hop2 > self.owed

    @property
    def expected_profit(self) -> int:
        """Profit at current reserves with no slippage, net of premium."""
        return self.expected_amount_out_hop2 - self.owed

    @property
    def guaranteed_profit(self) -> int:
        """Profit if both hops fill at their minimum."""
        return self.min_amount_out_hop2 - self.owed


class SlippageGuard:
    """
    Recomputes protected routes from fresh reserves.

    `protect` is a pure function of its snapshots; `revalidate` re-reads the
    snapshots first and must be called immediately before submission.
    """

    def __init__(
        self,
        venues: list[VenueAdapter],
        slippage_tolerance_pct: float = 2.0,
        premium_bps: int = 5,
        max_price_impact_pct: float = 1.0,
        enforce_price_impact: bool = False,
        logger: Optional["Logger"] = None,
    ):
        self.venues = {v.venue_id: v for v in venues}
        self.tolerance_bps = int(round(slippage_tolerance_pct * 100))
        self.premium_bps = premium_bps
        self.max_price_impact_pct = max_price_impact_pct
        self.enforce_price_impact = enforce_price_impact
        self.logger = logger

    def protect(
        self,
        opportunity: Opportunity,
        snapshot_a: VenueSnapshot,
        snapshot_b: VenueSnapshot,
    ) -> ProtectedRoute:
        """Derive hop minimums from the given reserve snapshots."""
        amount_in = opportunity.amount_in

        expected1 = snapshot_a.amount_out(amount_in, opportunity.token_in)
        min1 = apply_slippage(expected1, self.tolerance_bps)

        expected2 = snapshot_b.amount_out(expected1, opportunity.token_out)
        # hop 2 is bounded from the worst hop-1 fill, not the expected one
        min2 = apply_slippage(
            snapshot_b.amount_out(min1, opportunity.token_out),
            self.tolerance_bps,
        )

        reserve_in, _ = snapshot_a.reserves_for(opportunity.token_in)

        return ProtectedRoute(
            opportunity=opportunity,
            expected_amount_out_hop1=expected1,
            expected_amount_out_hop2=expected2,
            min_amount_out_hop1=min1,
            min_amount_out_hop2=min2,
            premium=flash_loan_premium(amount_in, self.premium_bps),
            price_impact_pct=calculate_price_impact(amount_in, reserve_in),
        )

    async def revalidate(self, opportunity: Opportunity) -> ProtectedRoute:
        """
        Re-read both venues concurrently and protect against the live state.
        Raises KeyError for an unknown venue and propagates read errors.
        """
        venue_a = self.venues[opportunity.venue_a]
        venue_b = self.venues[opportunity.venue_b]
        snapshot_a, snapshot_b = await asyncio.gather(
            venue_a.fetch_snapshot(),
            venue_b.fetch_snapshot(),
        )
        return self.protect(opportunity, snapshot_a, snapshot_b)

    def check(self, route: ProtectedRoute) -> RiskCheck:
        """Gate a protected route."""
        if self.enforce_price_impact and route.price_impact_pct > self.max_price_impact_pct:
            return RiskCheck.fail(
                RiskViolation.PRICE_IMPACT,
                f"Price impact {route.price_impact_pct}% exceeds {self.max_price_impact_pct}%",
            )

        if not route.is_profitable:
            return RiskCheck.fail(
                RiskViolation.NOT_PROFITABLE,
                f"Min output {route.min_amount_out_hop2} does not exceed owed {route.owed}",
            )

        return RiskCheck.ok()

    def max_safe_amount_in(self, snapshot: VenueSnapshot, token_in: str) -> int:
        """Largest input selling token_in that stays within the price-impact bound."""
        reserve_in, _ = snapshot.reserves_for(token_in)
        return safe_amount_in(reserve_in, self.max_price_impact_pct)

import pytest

from flash_arb_bot.risk import RiskViolation, SlippageGuard
from flash_arb_bot.signals import Opportunity, OpportunityScanner
from flash_arb_bot.venues.amm_math import get_amount_out

from conftest import ONE, TOKEN_A, TOKEN_B


async def scan_best(market) -> Opportunity:
    scanner = OpportunityScanner(market.venues, TOKEN_A, ONE)
    opportunities = await scanner.scan()
    return opportunities[0]


class TestProtect:
    async def test_minimums_chain_from_worst_hop1(self, market):
        guard = SlippageGuard(market.venues, slippage_tolerance_pct=2.0, premium_bps=5)
        opportunity = await scan_best(market)
        snap_beta = await market.venue("beta").fetch_snapshot()
        snap_alpha = await market.venue("alpha").fetch_snapshot()

        route = guard.protect(opportunity, snap_beta, snap_alpha)

        hop1 = get_amount_out(ONE, 50 * ONE, 1000 * ONE)
        min1 = hop1 * 9800 // 10000
        min2 = get_amount_out(min1, 50 * ONE, 1000 * ONE) * 9800 // 10000
        assert route.expected_amount_out_hop1 == hop1
        assert route.min_amount_out_hop1 == min1
        assert route.min_amount_out_hop2 == min2
        assert route.premium == 5 * 10 ** 14
        assert route.owed == ONE + 5 * 10 ** 14
        assert route.is_profitable
        assert route.guaranteed_profit == min2 - route.owed
        assert route.expected_profit > route.guaranteed_profit

    async def test_idempotent_on_unchanged_snapshot(self, market):
        guard = SlippageGuard(market.venues)
        opportunity = await scan_best(market)
        snap_beta = await market.venue("beta").fetch_snapshot()
        snap_alpha = await market.venue("alpha").fetch_snapshot()

        first = guard.protect(opportunity, snap_beta, snap_alpha)
        second = guard.protect(opportunity, snap_beta, snap_alpha)

        assert first.min_amount_out_hop1 == second.min_amount_out_hop1
        assert first.min_amount_out_hop2 == second.min_amount_out_hop2
        assert first == second

    async def test_price_impact_recorded(self, market):
        guard = SlippageGuard(market.venues)
        route = await guard.revalidate(await scan_best(market))
        assert route.price_impact_pct == pytest.approx(1.96)


class TestCheck:
    async def test_profitable_route_passes(self, market):
        guard = SlippageGuard(market.venues)
        route = await guard.revalidate(await scan_best(market))
        assert guard.check(route).passed

    async def test_price_impact_enforced_when_enabled(self, market):
        guard = SlippageGuard(market.venues, max_price_impact_pct=1.0, enforce_price_impact=True)
        route = await guard.revalidate(await scan_best(market))

        check = guard.check(route)

        assert not check.passed
        assert check.violation == RiskViolation.PRICE_IMPACT

    async def test_reserves_moved_against_route(self, market):
        guard = SlippageGuard(market.venues)
        opportunity = await scan_best(market)

        # alpha is drained of A between scan and submission
        pool = market.alpha.pool_for(TOKEN_A, TOKEN_B)
        market.ledger.transfer(TOKEN_A, pool, "whale", 999 * ONE)

        route = await guard.revalidate(opportunity)
        check = guard.check(route)

        assert not route.is_profitable
        assert check.violation == RiskViolation.NOT_PROFITABLE

    async def test_unknown_venue_raises(self, market):
        guard = SlippageGuard(market.venues[:1])
        with pytest.raises(KeyError):
            await guard.revalidate(await scan_best(market))


async def test_max_safe_amount_in(market):
    guard = SlippageGuard(market.venues, max_price_impact_pct=1.0)
    snapshot = await market.venue("beta").fetch_snapshot()
    amount = guard.max_safe_amount_in(snapshot, TOKEN_A)
    assert 0 < amount < ONE

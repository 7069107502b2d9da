"""
Fixed-point AMM pricing math.

All amounts are unsigned integers in token base units. Fees are expressed
as a numerator over `fee_denominator`: basis points (30 / 10_000 = 0.3%)
for constant-product pools, hundredths of a bip (3000 / 1_000_000 = 0.3%)
for concentrated-liquidity pools.
"""

BPS = 10_000
FEE_PIPS = 1_000_000
Q96 = 2 ** 96


def get_amount_out(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee: int = 30,
    fee_denominator: int = BPS,
) -> int:
    """
    Constant-product output for an exact input.

    out = in*(1-fee)*reserveOut / (reserveIn + in*(1-fee)), floored.
    """
    if amount_in < 0:
        raise ValueError("amount_in must be non-negative")
    if reserve_in <= 0 or reserve_out <= 0:
        raise ValueError("Insufficient liquidity")
    if amount_in == 0:
        return 0

    amount_in_with_fee = amount_in * (fee_denominator - fee)
    numerator = amount_in_with_fee * reserve_out
    denominator = reserve_in * fee_denominator + amount_in_with_fee
    return numerator // denominator


def get_amounts_out(
    amount_in: int,
    hops: list[tuple[int, int]],
    fee: int = 30,
    fee_denominator: int = BPS,
) -> list[int]:
    """Chain get_amount_out across (reserve_in, reserve_out) hops."""
    amounts = [amount_in]
    for reserve_in, reserve_out in hops:
        amounts.append(
            get_amount_out(amounts[-1], reserve_in, reserve_out, fee, fee_denominator)
        )
    return amounts


def apply_slippage(amount: int, tolerance_bps: int) -> int:
    """Reduce an expected amount by a tolerance, floored."""
    if not 0 <= tolerance_bps < BPS:
        raise ValueError("tolerance_bps must be in [0, 10000)")
    return amount * (BPS - tolerance_bps) // BPS


def flash_loan_premium(principal: int, premium_bps: int) -> int:
    """Lender premium for a principal, floored as the lender computes it."""
    return principal * premium_bps // BPS


def calculate_price_impact(amount_in: int, reserve_in: int) -> float:
    """Price impact of a trade as a percentage: amountIn / (reserveIn + amountIn)."""
    if amount_in + reserve_in <= 0:
        return 0.0
    impact_bps = amount_in * BPS // (reserve_in + amount_in)
    return impact_bps / 100


def safe_amount_in(reserve_in: int, max_impact_pct: float) -> int:
    """
    Largest input keeping amountIn / (reserveIn + amountIn) <= p.

    Solved as amountIn = p * reserveIn / (1 - p).
    """
    impact_bps = int(round(max_impact_pct * 100))
    if not 0 <= impact_bps < BPS:
        raise ValueError("max_impact_pct must be in [0, 100)")
    return reserve_in * impact_bps // (BPS - impact_bps)


def price_from_sqrt_price_x96(
    sqrt_price_x96: int,
    token0_decimals: int = 18,
    token1_decimals: int = 18,
) -> float:
    """Human price of token0 in token1 from a Q64.96 square-root price."""
    sqrt_price = sqrt_price_x96 / Q96
    return sqrt_price ** 2 * 10 ** (token0_decimals - token1_decimals)


def virtual_reserves(sqrt_price_x96: int, liquidity: int) -> tuple[int, int]:
    """
    In-range virtual reserves (x, y) of a concentrated-liquidity pool.

    x = L / sqrtP, y = L * sqrtP, with sqrtP in Q64.96.
    """
    if sqrt_price_x96 <= 0 or liquidity <= 0:
        return 0, 0
    reserve0 = liquidity * Q96 // sqrt_price_x96
    reserve1 = liquidity * sqrt_price_x96 // Q96
    return reserve0, reserve1

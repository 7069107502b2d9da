"""
Risk check results shared by the guard, the breaker and the executor gates.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RiskViolation(Enum):
    """Checks that can reject an execution attempt."""
    STALE_OPPORTUNITY = "stale_opportunity"
    VENUE_UNAVAILABLE = "venue_unavailable"
    PRICE_IMPACT = "price_impact"
    NOT_PROFITABLE = "not_profitable"
    NET_PROFIT = "net_profit"
    FEE_RATIO = "fee_ratio"
    SIMULATION_FAILED = "simulation_failed"
    CIRCUIT_OPEN = "circuit_open"
    LOCK_HELD = "lock_held"
    DRY_RUN = "dry_run"


@dataclass
class RiskCheck:
    """Result of a risk check."""
    passed: bool
    violation: Optional[RiskViolation] = None
    message: str = ""

    @classmethod
    def ok(cls) -> "RiskCheck":
        return cls(passed=True)

    @classmethod
    def fail(cls, violation: RiskViolation, message: str = "") -> "RiskCheck":
        return cls(passed=False, violation=violation, message=message)

    @property
    def check_name(self) -> Optional[str]:
        return self.violation.value if self.violation else None

"""Risk management module."""

from .checks import RiskCheck, RiskViolation
from .circuit_breaker import CircuitBreaker, CircuitSnapshot, CircuitState
from .slippage_guard import ProtectedRoute, SlippageGuard

__all__ = [
    "RiskCheck",
    "RiskViolation",
    "CircuitBreaker",
    "CircuitSnapshot",
    "CircuitState",
    "ProtectedRoute",
    "SlippageGuard",
]

"""
Circuit breaker for execution attempts.
Suspends attempts after consecutive failures and lets a single trial
through once the cooldown has elapsed.
"""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..monitor.logger import Logger


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitSnapshot:
    """Read-only view of breaker state."""
    state: CircuitState
    consecutive_failures: int
    last_failure_timestamp: Optional[float]
    last_failure_cause: Optional[str]
    cumulative_realized_profit: int


class CircuitBreaker:
    """
    CLOSED -> OPEN after max_failures consecutive failures.
    OPEN -> HALF_OPEN once reset_timeout has elapsed, admitting one trial.
    HALF_OPEN -> CLOSED on trial success, back to OPEN on trial failure.
    """

    def __init__(
        self,
        max_failures: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional["Logger"] = None,
    ):
        self.max_failures = max_failures
        self.reset_timeout = reset_timeout
        self.clock = clock
        self.logger = logger

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._last_failure_time: Optional[float] = None
        self._last_failure_cause: Optional[str] = None
        self._trial_in_flight = False
        self._realized_profit = 0

        # Callbacks
        self._on_state_change: list[Callable[[CircuitState, CircuitState], None]] = []

    def on_state_change(self, callback: Callable[[CircuitState, CircuitState], None]) -> None:
        """Register callback for state transitions (old, new)."""
        self._on_state_change.append(callback)

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state

        if self.logger:
            self.logger.circuit_state_changed(
                old_state.value,
                new_state.value,
                consecutive_failures=self._consecutive_failures,
                cause=self._last_failure_cause,
            )

        for callback in self._on_state_change:
            callback(old_state, new_state)

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def realized_profit(self) -> int:
        return self._realized_profit

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and self.clock() - self._opened_at >= self.reset_timeout

    @property
    def is_open(self) -> bool:
        """True while attempts are suspended and the cooldown is still running."""
        return self._state == CircuitState.OPEN and not self._cooldown_elapsed()

    def cooldown_remaining(self) -> float:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self.clock() - self._opened_at))

    def should_allow_request(self) -> bool:
        """
        Gate consulted before every attempt.
        In HALF_OPEN exactly one caller is admitted until its outcome is recorded.
        """
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if not self._cooldown_elapsed():
                return False
            self._transition(CircuitState.HALF_OPEN)

        if self._trial_in_flight:
            return False
        self._trial_in_flight = True
        return True

    def record_success(self, profit: int = 0) -> None:
        self._consecutive_failures = 0
        self._trial_in_flight = False
        self._realized_profit += profit
        self._opened_at = None
        self._transition(CircuitState.CLOSED)

    def record_failure(self, cause: str = "") -> None:
        self._consecutive_failures += 1
        self._last_failure_time = self.clock()
        self._last_failure_cause = cause or None
        self._trial_in_flight = False

        if self._state == CircuitState.HALF_OPEN or self._consecutive_failures >= self.max_failures:
            self._opened_at = self._last_failure_time
            self._transition(CircuitState.OPEN)

    def record_abandoned(self) -> None:
        """Release a half-open trial slot after an attempt ended without a verdict."""
        self._trial_in_flight = False

    def snapshot(self) -> CircuitSnapshot:
        return CircuitSnapshot(
            state=self._state,
            consecutive_failures=self._consecutive_failures,
            last_failure_timestamp=self._last_failure_time,
            last_failure_cause=self._last_failure_cause,
            cumulative_realized_profit=self._realized_profit,
        )

    def get_status(self) -> dict:
        """Get current breaker status."""
        return {
            "state": self._state.value,
            "consecutive_failures": self._consecutive_failures,
            "last_failure_cause": self._last_failure_cause,
            "cooldown_remaining_seconds": round(self.cooldown_remaining(), 3),
            "realized_profit": str(self._realized_profit),
        }

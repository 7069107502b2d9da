"""
Metrics collection for monitoring bot performance.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..exec.submission import SettlementRecord


@dataclass
class SessionMetrics:
    """Metrics for a running session."""
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None

    # Scan counts
    scans: int = 0
    venue_errors: int = 0
    opportunities_found: int = 0

    # Execution counts
    executions_attempted: int = 0
    executions_succeeded: int = 0
    executions_failed: int = 0

    # Profit, in scan-token base units
    total_realized_profit: int = 0
    total_gas_spent: int = 0

    # Timing
    avg_execution_time_ms: float = 0
    avg_scan_time_ms: float = 0

    # Connection
    ws_reconnects: int = 0


class MetricsCollector:
    """
    Collects and aggregates metrics for the arbitrage bot.
    """

    def __init__(self):
        self._session = SessionMetrics()
        self._records: list["SettlementRecord"] = []
        self._execution_times: list[float] = []
        self._scan_times: list[float] = []
        self._outcomes: Counter = Counter()

    def record_scan(self, opportunities: int, venue_errors: int, duration_ms: float) -> None:
        self._session.scans += 1
        self._session.opportunities_found += opportunities
        self._session.venue_errors += venue_errors
        self._scan_times.append(duration_ms)
        self._session.avg_scan_time_ms = sum(self._scan_times) / len(self._scan_times)

    def record_settlement(self, record: "SettlementRecord") -> None:
        """Record the terminal outcome of one execution attempt."""
        self._session.executions_attempted += 1
        self._outcomes[record.status.value] += 1
        self._records.append(record)

        if record.succeeded:
            self._session.executions_succeeded += 1
            self._session.total_realized_profit += record.realized_profit
        else:
            self._session.executions_failed += 1
        self._session.total_gas_spent += record.gas_spent

        self._execution_times.append(record.latency_ms)
        self._session.avg_execution_time_ms = (
            sum(self._execution_times) / len(self._execution_times)
        )

    def record_ws_reconnect(self) -> None:
        self._session.ws_reconnects += 1

    def get_session_metrics(self) -> dict:
        """Get current session metrics as dict."""
        uptime = time.time() - self._session.start_time

        return {
            "uptime_seconds": uptime,
            "scans": self._session.scans,
            "venue_errors": self._session.venue_errors,
            "opportunities_found": self._session.opportunities_found,
            "executions_attempted": self._session.executions_attempted,
            "executions_succeeded": self._session.executions_succeeded,
            "executions_failed": self._session.executions_failed,
            "outcomes": dict(self._outcomes),
            "success_rate": (
                self._session.executions_succeeded / self._session.executions_attempted
                if self._session.executions_attempted > 0 else 0
            ),
            "total_realized_profit": str(self._session.total_realized_profit),
            "total_gas_spent": str(self._session.total_gas_spent),
            "avg_execution_time_ms": self._session.avg_execution_time_ms,
            "avg_scan_time_ms": self._session.avg_scan_time_ms,
            "ws_reconnects": self._session.ws_reconnects,
        }

    def get_recent_settlements(self, limit: int = 10) -> list[dict]:
        recent = self._records[-limit:] if self._records else []
        return [r.to_dict() for r in recent]

    def reset_session(self) -> None:
        """Reset session metrics."""
        self._session = SessionMetrics()
        self._records = []
        self._execution_times = []
        self._scan_times = []
        self._outcomes = Counter()

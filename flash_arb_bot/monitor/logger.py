"""
Structured JSON logging for the arbitrage bot.
All logs are JSON for easy parsing and analysis.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..exec.submission import SettlementRecord
    from ..signals.opportunity_scanner import Opportunity


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "event": record.msg,
            "logger": record.name,
        }

        # Add extra fields
        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class Logger:
    """
    Structured JSON logger for the arbitrage bot.

    All log entries are JSON objects with:
    - timestamp: ISO 8601 UTC timestamp
    - level: Log level
    - event: Event name/type
    - Additional context fields
    """

    def __init__(
        self,
        name: str = "flash_arb_bot",
        level: str = "INFO",
        log_file: Optional[str] = None,
        console: bool = True,
    ):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))
        self.logger.handlers = []  # Clear existing handlers
        self.logger.propagate = False

        # JSON formatter
        formatter = JSONFormatter()

        # Console handler
        if console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            self.logger.addHandler(console_handler)

        # File handler (optional)
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

    def _log(self, level: int, event: str, **kwargs: Any) -> None:
        """Internal log method."""
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "",
            0,
            event,
            (),
            None,
        )
        record.extra_fields = kwargs
        self.logger.handle(record)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event, **kwargs)

    def critical(self, event: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, event, **kwargs)

    # === Convenience methods for common events ===

    def opportunity_found(self, opportunity: "Opportunity") -> None:
        """Log a profitable route found by the scanner."""
        self.info(
            "opportunity_found",
            venue_a=opportunity.venue_a,
            venue_b=opportunity.venue_b,
            token_in=opportunity.token_in,
            token_out=opportunity.token_out,
            amount_in=str(opportunity.amount_in),
            expected_amount_out=str(opportunity.expected_amount_out),
            gross_profit=str(opportunity.gross_profit),
        )

    def execution_attempted(
        self,
        execution_id: str,
        opportunity_key: str,
        route: str,
        principal: int,
        min_amount_out: int,
        channel: str,
    ) -> None:
        """Log a submission about to be made."""
        self.info(
            "execution_attempted",
            execution_id=execution_id,
            opportunity_key=opportunity_key,
            route=route,
            principal=str(principal),
            min_amount_out=str(min_amount_out),
            channel=channel,
        )

    def execution_succeeded(self, record: "SettlementRecord") -> None:
        """Log a settled, profitable execution."""
        self.info(
            "execution_succeeded",
            execution_id=record.execution_id,
            opportunity_key=record.opportunity_key,
            route=record.route,
            realized_profit=str(record.realized_profit),
            gas_spent=str(record.gas_spent),
            tx_reference=record.tx_reference,
            latency_ms=round(record.latency_ms, 1),
        )

    def execution_failed(self, record: "SettlementRecord") -> None:
        """Log a failed or rejected execution with the check that stopped it."""
        log = self.warning if record.is_soft_failure else self.error
        log(
            "execution_failed",
            execution_id=record.execution_id,
            opportunity_key=record.opportunity_key,
            route=record.route,
            status=record.status.value,
            check=record.check_name,
            error=record.error,
            tx_reference=record.tx_reference,
        )

    def gate_rejected(self, check: str, message: str, **kwargs: Any) -> None:
        """Log a pre-submission gate rejection."""
        self.info("gate_rejected", check=check, message=message, **kwargs)

    def circuit_state_changed(self, old_state: str, new_state: str, **kwargs: Any) -> None:
        """Log a circuit breaker transition."""
        self.warning(
            "circuit_state_changed",
            old_state=old_state,
            new_state=new_state,
            **kwargs,
        )

    def scan_completed(self, venues: int, opportunities: int, duration_ms: float) -> None:
        self.debug(
            "scan_completed",
            venues=venues,
            opportunities=opportunities,
            duration_ms=round(duration_ms, 1),
        )

    def listener_started(self, url: str) -> None:
        self.info("block_listener_started", url=url)

    def ws_disconnected(self, reason: str = "") -> None:
        self.warning("ws_disconnected", reason=reason)

    def startup(self, config: dict) -> None:
        """Log bot startup."""
        self.info("bot_startup", config=config)

    def shutdown(self, reason: str = "normal") -> None:
        """Log bot shutdown."""
        self.info("bot_shutdown", reason=reason)

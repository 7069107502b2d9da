"""
Execution engine for flash-loan arbitrage.
Runs the pre-submission gates, holds the opportunity lease for the length
of the attempt, and feeds every outcome to the circuit breaker.
"""

import asyncio
import time
import uuid
from typing import Callable, Optional, TYPE_CHECKING

import aiohttp

from ..connector.contract_gateway import ContractGateway, LoanRequest
from ..connector.rpc_client import RpcError
from ..risk.checks import RiskCheck, RiskViolation
from .submission import ExecutionStatus, SettlementRecord, SubmissionChannel

if TYPE_CHECKING:
    from ..monitor import Logger, MetricsCollector
    from ..risk.circuit_breaker import CircuitBreaker
    from ..risk.slippage_guard import ProtectedRoute, SlippageGuard
    from ..signals.opportunity_scanner import Opportunity
    from .lock import ExecutionMutex


class ArbitrageExecutor:
    """
    Executes one opportunity end to end.

    Gate order: circuit breaker, lease, opportunity age, live re-validation,
    simulation, fee ratio, dry run. Any gate that says no ends the attempt
    with a SettlementRecord naming the check.
    """

    def __init__(
        self,
        gateway: ContractGateway,
        guard: "SlippageGuard",
        breaker: "CircuitBreaker",
        mutex: "ExecutionMutex",
        channel: SubmissionChannel,
        min_profit: int = 0,
        min_net_profit: int = 0,
        max_opportunity_age_seconds: float = 3.0,
        max_fee_profit_ratio: float = 0.5,
        lock_ttl_ms: int = 15_000,
        dry_run: bool = False,
        logger: Optional["Logger"] = None,
        metrics: Optional["MetricsCollector"] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.guard = guard
        self.breaker = breaker
        self.mutex = mutex
        self.channel = channel
        self.min_profit = min_profit
        self.min_net_profit = min_net_profit
        self.max_opportunity_age = max_opportunity_age_seconds
        self.max_fee_profit_ratio = max_fee_profit_ratio
        self.lock_ttl_ms = lock_ttl_ms
        self.dry_run = dry_run
        self.logger = logger
        self.metrics = metrics
        self.clock = clock

    def check_age(self, opportunity: "Opportunity") -> RiskCheck:
        age = opportunity.age(self.clock())
        if age > self.max_opportunity_age:
            return RiskCheck.fail(
                RiskViolation.STALE_OPPORTUNITY,
                f"Opportunity is {age:.2f}s old (max {self.max_opportunity_age}s)",
            )
        return RiskCheck.ok()

    def check_fee_ratio(self, fee_cost: int, expected_profit: int) -> RiskCheck:
        """Fee cost is in wei; profit compares directly when the scan token is wrapped native."""
        if expected_profit <= 0 or fee_cost > self.max_fee_profit_ratio * expected_profit:
            return RiskCheck.fail(
                RiskViolation.FEE_RATIO,
                f"Fee {fee_cost} exceeds {self.max_fee_profit_ratio} of profit {expected_profit}",
            )
        if expected_profit - fee_cost < self.min_net_profit:
            return RiskCheck.fail(
                RiskViolation.NET_PROFIT,
                f"Net profit {expected_profit - fee_cost} below {self.min_net_profit}",
            )
        return RiskCheck.ok()

    def build_request(self, route: "ProtectedRoute") -> LoanRequest:
        opportunity = route.opportunity
        return LoanRequest(
            asset=opportunity.token_in,
            principal=opportunity.amount_in,
            premium=route.premium,
            path1=opportunity.path1,
            path2=opportunity.path2,
            min_profit=self.min_profit,
            hop1_venue=opportunity.venue_a_index,
            hop2_venues=opportunity.hop2_indices,
        )

    async def execute(self, opportunity: "Opportunity") -> SettlementRecord:
        """Run one attempt. Any failure inside the lease becomes an ERROR record."""
        record = SettlementRecord(
            execution_id=str(uuid.uuid4()),
            opportunity_key=opportunity.lock_key,
            route=f"{opportunity.venue_a}->{opportunity.venue_b}",
            status=ExecutionStatus.ERROR,
            started_at=self.clock(),
        )

        if not self.breaker.should_allow_request():
            self._reject(record, RiskCheck.fail(
                RiskViolation.CIRCUIT_OPEN,
                f"Circuit {self.breaker.state.value}",
            ))
            return self._finish(record, consult_breaker=False)

        lease = await self.mutex.acquire(opportunity.lock_key, self.lock_ttl_ms)
        if lease is None:
            record.status = ExecutionStatus.LOCKED
            record.check_name = RiskViolation.LOCK_HELD.value
            record.error = f"Lease on {opportunity.lock_key} is held"
            return self._finish(record)

        try:
            await self._attempt(opportunity, record)
        except Exception as e:
            record.status = ExecutionStatus.ERROR
            record.error = str(e) or type(e).__name__
            if self.logger:
                self.logger.error(
                    "execution_error",
                    execution_id=record.execution_id,
                    opportunity_key=record.opportunity_key,
                    error=record.error,
                    error_type=type(e).__name__,
                )
        finally:
            await self.mutex.release(lease.key, lease.token)

        return self._finish(record)

    async def _attempt(self, opportunity: "Opportunity", record: SettlementRecord) -> None:
        check = self.check_age(opportunity)
        if not check.passed:
            self._reject(record, check)
            return

        try:
            route = await self.guard.revalidate(opportunity)
        except (RpcError, aiohttp.ClientError, asyncio.TimeoutError, ValueError, KeyError) as e:
            self._reject(record, RiskCheck.fail(RiskViolation.VENUE_UNAVAILABLE, str(e)))
            return

        check = self.guard.check(route)
        if not check.passed:
            self._reject(record, check)
            return

        request = self.build_request(route)

        simulation = await self.gateway.simulate(request)
        if not simulation.success:
            record.status = ExecutionStatus.SIMULATION_FAILED
            record.check_name = RiskViolation.SIMULATION_FAILED.value
            record.error = simulation.revert_reason
            return

        fee = await self.gateway.estimate_fee(request)
        expected_profit = simulation.profit or route.expected_profit
        check = self.check_fee_ratio(fee.max_cost, expected_profit)
        if not check.passed:
            self._reject(record, check)
            return

        if self.dry_run:
            self._reject(record, RiskCheck.fail(
                RiskViolation.DRY_RUN,
                f"Simulated profit {simulation.profit}",
            ))
            return

        if self.logger:
            self.logger.execution_attempted(
                execution_id=record.execution_id,
                opportunity_key=record.opportunity_key,
                route=record.route,
                principal=request.principal,
                min_amount_out=route.min_amount_out_hop2,
                channel=self.channel.name,
            )

        result = await self.channel.submit(request, fee)
        record.status = result.status
        record.tx_reference = result.tx_reference
        record.error = result.error
        if result.receipt is not None:
            record.gas_spent = result.receipt.gas_spent
            if result.receipt.succeeded:
                record.realized_profit = result.receipt.profit

    def _reject(self, record: SettlementRecord, check: RiskCheck) -> None:
        record.status = ExecutionStatus.REJECTED
        record.check_name = check.check_name
        record.error = check.message
        if self.logger:
            self.logger.gate_rejected(
                check.check_name,
                check.message,
                execution_id=record.execution_id,
                opportunity_key=record.opportunity_key,
            )

    def _finish(self, record: SettlementRecord, consult_breaker: bool = True) -> SettlementRecord:
        record.completed_at = self.clock()

        if consult_breaker:
            if record.succeeded:
                self.breaker.record_success(record.realized_profit)
            elif record.is_hard_failure:
                self.breaker.record_failure(f"{record.status.value}: {record.error}")
            else:
                self.breaker.record_abandoned()

        if self.logger:
            if record.succeeded:
                self.logger.execution_succeeded(record)
            else:
                self.logger.execution_failed(record)

        if self.metrics:
            self.metrics.record_settlement(record)

        return record

"""
Transaction delivery.
The public channel broadcasts to the mempool; the private channel simulates
a single-transaction bundle and offers it to a relay for a few upcoming
blocks.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import aiohttp

from ..connector.contract_gateway import (
    ContractGateway,
    FeeEstimate,
    LoanRequest,
    TxReceipt,
    wait_for_inclusion,
)
from ..connector.relay_client import BundleRelay
from ..connector.rpc_client import RpcError


class ExecutionStatus(Enum):
    """Terminal outcome of one execution attempt."""
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"  # a pre-submission gate said no
    SIMULATION_FAILED = "simulation_failed"
    NOT_INCLUDED = "not_included"  # bundle missed every target block
    REVERTED = "reverted"
    TIMEOUT = "timeout"
    LOCKED = "locked"  # another process holds the opportunity key
    ERROR = "error"


# outcomes that count against the circuit breaker
HARD_FAILURES = frozenset({
    ExecutionStatus.SIMULATION_FAILED,
    ExecutionStatus.REVERTED,
    ExecutionStatus.TIMEOUT,
    ExecutionStatus.ERROR,
})


@dataclass
class SubmissionResult:
    """Outcome of handing a request to a channel."""
    status: ExecutionStatus
    receipt: Optional[TxReceipt] = None
    tx_reference: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SettlementRecord:
    """Terminal record, written once per attempt."""
    execution_id: str
    opportunity_key: str
    route: str
    status: ExecutionStatus
    realized_profit: int = 0
    gas_spent: int = 0
    tx_reference: Optional[str] = None
    check_name: Optional[str] = None
    error: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCEEDED

    @property
    def is_hard_failure(self) -> bool:
        return self.status in HARD_FAILURES

    @property
    def is_soft_failure(self) -> bool:
        return not self.succeeded and not self.is_hard_failure

    @property
    def latency_ms(self) -> float:
        if self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at) * 1000

    def to_dict(self) -> dict:
        return {
            "execution_id": self.execution_id,
            "opportunity_key": self.opportunity_key,
            "route": self.route,
            "status": self.status.value,
            "succeeded": self.succeeded,
            "realized_profit": str(self.realized_profit),
            "gas_spent": str(self.gas_spent),
            "tx_reference": self.tx_reference,
            "check_name": self.check_name,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


def _receipt_result(receipt: TxReceipt) -> SubmissionResult:
    return SubmissionResult(
        status=ExecutionStatus.SUCCEEDED if receipt.succeeded else ExecutionStatus.REVERTED,
        receipt=receipt,
        tx_reference=receipt.tx_hash,
    )


class SubmissionChannel(ABC):
    """Delivers a priced loan request and waits for its settlement."""

    name: str

    @abstractmethod
    async def submit(self, request: LoanRequest, fee: FeeEstimate) -> SubmissionResult:
        ...


class PublicSubmissionChannel(SubmissionChannel):
    """Broadcast straight to the public mempool. Exposed to reordering."""

    name = "public"

    def __init__(self, gateway: ContractGateway, confirmation_timeout: float = 60.0):
        self.gateway = gateway
        self.confirmation_timeout = confirmation_timeout

    async def submit(self, request: LoanRequest, fee: FeeEstimate) -> SubmissionResult:
        try:
            receipt = await self.gateway.send(request, fee, self.confirmation_timeout)
        except asyncio.TimeoutError:
            return SubmissionResult(
                status=ExecutionStatus.TIMEOUT,
                error=f"No receipt within {self.confirmation_timeout}s",
            )
        except (RpcError, aiohttp.ClientError) as e:
            return SubmissionResult(status=ExecutionStatus.ERROR, error=str(e))

        return _receipt_result(receipt)


class PrivateSubmissionChannel(SubmissionChannel):
    """
    Simulate-then-submit through a bundle relay.

    The bundle is offered for `bundle_blocks` consecutive blocks after the
    current one. Missing all of them is a soft failure.
    """

    name = "private"

    def __init__(
        self,
        gateway: ContractGateway,
        relay: BundleRelay,
        bundle_blocks: int = 3,
        confirmation_timeout: float = 60.0,
        poll_interval: float = 1.0,
    ):
        self.gateway = gateway
        self.relay = relay
        self.bundle_blocks = bundle_blocks
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    async def submit(self, request: LoanRequest, fee: FeeEstimate) -> SubmissionResult:
        try:
            signed = await self.gateway.build_signed(request, fee)
            current_block = await self.gateway.block_number()

            simulation = await self.relay.simulate_bundle([signed.raw], current_block + 1)
            if not simulation.success:
                return SubmissionResult(
                    status=ExecutionStatus.SIMULATION_FAILED,
                    tx_reference=signed.tx_hash,
                    error=simulation.error,
                )

            last_block = current_block + self.bundle_blocks
            for target in range(current_block + 1, last_block + 1):
                await self.relay.send_bundle([signed.raw], target)

            receipt = await wait_for_inclusion(
                self.gateway,
                signed.tx_hash,
                last_block,
                self.confirmation_timeout,
                self.poll_interval,
            )
        except asyncio.TimeoutError:
            return SubmissionResult(
                status=ExecutionStatus.TIMEOUT,
                error=f"Inclusion not settled within {self.confirmation_timeout}s",
            )
        except (RpcError, aiohttp.ClientError) as e:
            return SubmissionResult(status=ExecutionStatus.ERROR, error=str(e))

        if receipt is None:
            return SubmissionResult(
                status=ExecutionStatus.NOT_INCLUDED,
                tx_reference=signed.tx_hash,
                error=f"Not included in blocks {current_block + 1}-{last_block}",
            )
        return _receipt_result(receipt)

"""
Gateway to the on-chain arbitrage contract.
Encodes loan requests, simulates them, prices their fees, signs them and
broadcasts them.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from eth_abi import decode, encode
from eth_utils import keccak

from .auth import TransactionSigner
from .rpc_client import RpcClient, RpcError

REQUEST_LOAN_SIGNATURE = (
    "requestLoan(address,uint256,address[],address[],uint256,uint8,uint8[])"
)
REQUEST_LOAN_SELECTOR = keccak(text=REQUEST_LOAN_SIGNATURE)[:4]
ERROR_SELECTOR = keccak(text="Error(string)")[:4]


@dataclass(frozen=True)
class LoanRequest:
    """Arguments of one flash-loan arbitrage attempt."""
    asset: str
    principal: int
    premium: int
    path1: tuple[str, ...]
    path2: tuple[str, ...]
    min_profit: int
    hop1_venue: int = 0
    hop2_venues: tuple[int, ...] = field(default_factory=tuple)


@dataclass
class SimulationResult:
    """Dry-run result of a loan request against current state."""
    success: bool
    profit: int = 0
    gas_used: int = 0
    revert_reason: Optional[str] = None


@dataclass
class FeeEstimate:
    """Gas and fee-per-gas bound for one transaction, in wei."""
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int

    @property
    def max_cost(self) -> int:
        return self.gas_limit * self.max_fee_per_gas


@dataclass
class SignedTransaction:
    """Signed, not yet broadcast transaction."""
    raw: str
    tx_hash: str
    request: LoanRequest


@dataclass
class TxReceipt:
    """Settlement of a mined loan request."""
    tx_hash: str
    succeeded: bool
    block_number: int
    gas_used: int
    effective_gas_price: int
    profit: int = 0

    @property
    def gas_spent(self) -> int:
        return self.gas_used * self.effective_gas_price


def encode_request_loan(request: LoanRequest) -> str:
    """Calldata for FlashArbitrage.requestLoan."""
    args = encode(
        ["address", "uint256", "address[]", "address[]", "uint256", "uint8", "uint8[]"],
        [
            request.asset,
            request.principal,
            list(request.path1),
            list(request.path2),
            request.min_profit,
            request.hop1_venue,
            list(request.hop2_venues),
        ],
    )
    return "0x" + (REQUEST_LOAN_SELECTOR + args).hex()


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """Extract the reason string from Error(string) revert data."""
    if not isinstance(data, str) or not data.startswith("0x"):
        return None
    raw = bytes.fromhex(data[2:])
    if raw[:4] != ERROR_SELECTOR:
        return None
    (reason,) = decode(["string"], raw[4:])
    return reason


class ContractGateway(ABC):
    """Operations the execution pipeline needs from the arbitrage contract."""

    @abstractmethod
    async def simulate(self, request: LoanRequest) -> SimulationResult:
        ...

    @abstractmethod
    async def estimate_fee(self, request: LoanRequest) -> FeeEstimate:
        ...

    @abstractmethod
    async def build_signed(self, request: LoanRequest, fee: FeeEstimate) -> SignedTransaction:
        ...

    @abstractmethod
    async def send(self, request: LoanRequest, fee: FeeEstimate, timeout: float) -> TxReceipt:
        """Broadcast publicly and wait for the receipt. Raises asyncio.TimeoutError."""
        ...

    @abstractmethod
    async def block_number(self) -> int:
        ...

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        ...


class RpcContractGateway(ContractGateway):
    """Contract gateway backed by a JSON-RPC node."""

    def __init__(
        self,
        rpc: RpcClient,
        signer: TransactionSigner,
        contract_address: str,
        gas_limit: int = 800_000,
        gas_headroom_pct: int = 20,
    ):
        self.rpc = rpc
        self.signer = signer
        self.contract_address = contract_address
        self.gas_limit = gas_limit
        self.gas_headroom_pct = gas_headroom_pct

    def _call_object(self, request: LoanRequest) -> dict:
        return {
            "from": self.signer.address,
            "to": self.contract_address,
            "data": encode_request_loan(request),
        }

    async def simulate(self, request: LoanRequest) -> SimulationResult:
        tx = self._call_object(request)
        try:
            result = await self.rpc.request("eth_call", [tx, "pending"])
            gas_used = await self.rpc.estimate_gas(tx)
        except RpcError as e:
            return SimulationResult(
                success=False,
                revert_reason=decode_revert_reason(e.data) or e.message,
            )

        profit = 0
        if result and result != "0x":
            (profit,) = decode(["uint256"], bytes.fromhex(result[2:]))
        return SimulationResult(success=True, profit=profit, gas_used=gas_used)

    async def estimate_fee(self, request: LoanRequest) -> FeeEstimate:
        fee_data = await self.rpc.get_fee_data()
        try:
            estimate = await self.rpc.estimate_gas(self._call_object(request))
            gas = min(estimate * (100 + self.gas_headroom_pct) // 100, self.gas_limit)
        except RpcError:
            gas = self.gas_limit
        return FeeEstimate(
            gas_limit=gas,
            max_fee_per_gas=fee_data.max_fee,
            max_priority_fee_per_gas=fee_data.max_priority_fee,
        )

    async def build_signed(self, request: LoanRequest, fee: FeeEstimate) -> SignedTransaction:
        nonce = await self.rpc.get_transaction_count(self.signer.address)
        raw, tx_hash = self.signer.sign_transaction(
            to=self.contract_address,
            data=encode_request_loan(request),
            nonce=nonce,
            gas=fee.gas_limit,
            max_fee_per_gas=fee.max_fee_per_gas,
            max_priority_fee_per_gas=fee.max_priority_fee_per_gas,
        )
        return SignedTransaction(raw=raw, tx_hash=tx_hash, request=request)

    async def send(self, request: LoanRequest, fee: FeeEstimate, timeout: float) -> TxReceipt:
        signed = await self.build_signed(request, fee)
        await self.rpc.send_raw_transaction(signed.raw)
        receipt = await self.rpc.wait_for_receipt(signed.tx_hash, timeout)
        return self._to_receipt(receipt)

    async def block_number(self) -> int:
        return await self.rpc.block_number()

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        receipt = await self.rpc.get_receipt(tx_hash)
        if receipt is None:
            return None
        return self._to_receipt(receipt)

    def _to_receipt(self, receipt) -> TxReceipt:
        return TxReceipt(
            tx_hash=receipt.tx_hash,
            succeeded=receipt.succeeded,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            effective_gas_price=receipt.effective_gas_price,
            profit=self._profit_from_logs(receipt.logs),
        )

    def _profit_from_logs(self, logs: list[dict]) -> int:
        """Realized profit from the ArbitrageExecuted event, if emitted."""
        topic = "0x" + keccak(
            text="ArbitrageExecuted(address,uint256,uint256,uint256,uint8)"
        ).hex()
        for log in logs:
            topics = log.get("topics", [])
            if not topics or topics[0].lower() != topic:
                continue
            if log.get("address", "").lower() != self.contract_address.lower():
                continue
            data = bytes.fromhex(log.get("data", "0x")[2:])
            _, _, _, profit, _ = decode(
                ["address", "uint256", "uint256", "uint256", "uint8"], data
            )
            return profit
        return 0


async def wait_for_inclusion(
    gateway: ContractGateway,
    tx_hash: str,
    last_block: int,
    timeout: float,
    poll_interval: float = 1.0,
) -> Optional[TxReceipt]:
    """
    Wait until the chain reaches last_block, then look up the receipt.
    Returns None when the transaction was not included.
    Raises asyncio.TimeoutError once timeout elapses.
    """
    async def _poll() -> Optional[TxReceipt]:
        while True:
            reached = await gateway.block_number() >= last_block
            receipt = await gateway.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if reached:
                return None
            await asyncio.sleep(poll_interval)

    return await asyncio.wait_for(_poll(), timeout)

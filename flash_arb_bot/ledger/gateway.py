"""
In-process contract gateway.
Runs loan requests against a local Ledger instead of a node, and doubles
as a bundle relay so the private submission path can run end to end in
paper trading and tests.
"""

import asyncio
import secrets
from typing import Optional

from ..connector.contract_gateway import (
    ContractGateway,
    FeeEstimate,
    LoanRequest,
    SignedTransaction,
    SimulationResult,
    TxReceipt,
)
from ..connector.relay_client import BundleRelay, BundleSimulation
from .contract import FlashArbitrage
from .state import Ledger, LedgerRevert


class LocalContractGateway(ContractGateway, BundleRelay):
    """Contract gateway and bundle relay over an in-process ledger."""

    def __init__(
        self,
        ledger: Ledger,
        contract: FlashArbitrage,
        operator: str,
        gas_used: int = 250_000,
        gas_price: int = 20 * 10 ** 9,
        priority_fee: int = 2 * 10 ** 9,
        include_bundles: bool = True,
        send_delay: float = 0.0,
    ):
        self.ledger = ledger
        self.contract = contract
        self.operator = operator
        self.gas_used = gas_used
        self.gas_price = gas_price
        self.priority_fee = priority_fee
        self.include_bundles = include_bundles
        self.send_delay = send_delay

        self._signed: dict[str, LoanRequest] = {}
        self._receipts: dict[str, TxReceipt] = {}
        self.bundles: list[tuple[int, list[str]]] = []

    def _request_loan(self, request: LoanRequest) -> int:
        return self.contract.request_loan(
            self.operator,
            request.asset,
            request.principal,
            list(request.path1),
            list(request.path2),
            request.min_profit,
            hop1_venue=request.hop1_venue,
            hop2_venues=list(request.hop2_venues) or None,
        )

    def _execute(self, request: LoanRequest, tx_hash: str) -> TxReceipt:
        """Mine the request in the next block; a revert still lands on chain."""
        block = self.ledger.mine()
        try:
            profit = self._request_loan(request)
            succeeded = True
        except LedgerRevert:
            profit = 0
            succeeded = False

        receipt = TxReceipt(
            tx_hash=tx_hash,
            succeeded=succeeded,
            block_number=block,
            gas_used=self.gas_used,
            effective_gas_price=self.gas_price,
            profit=profit,
        )
        self._receipts[tx_hash] = receipt
        return receipt

    # === ContractGateway ===

    async def simulate(self, request: LoanRequest) -> SimulationResult:
        with self.ledger.simulation():
            try:
                profit = self._request_loan(request)
            except LedgerRevert as e:
                return SimulationResult(success=False, revert_reason=e.reason)
        return SimulationResult(success=True, profit=profit, gas_used=self.gas_used)

    async def estimate_fee(self, request: LoanRequest) -> FeeEstimate:
        return FeeEstimate(
            gas_limit=self.gas_used,
            max_fee_per_gas=self.gas_price,
            max_priority_fee_per_gas=self.priority_fee,
        )

    async def build_signed(self, request: LoanRequest, fee: FeeEstimate) -> SignedTransaction:
        tx_hash = "0x" + secrets.token_hex(32)
        raw = "local:" + tx_hash
        self._signed[raw] = request
        return SignedTransaction(raw=raw, tx_hash=tx_hash, request=request)

    async def send(self, request: LoanRequest, fee: FeeEstimate, timeout: float) -> TxReceipt:
        signed = await self.build_signed(request, fee)

        async def _broadcast() -> TxReceipt:
            if self.send_delay:
                await asyncio.sleep(self.send_delay)
            return self._execute(request, signed.tx_hash)

        return await asyncio.wait_for(_broadcast(), timeout)

    async def block_number(self) -> int:
        return self.ledger.block_number

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self._receipts.get(tx_hash)

    # === BundleRelay ===

    async def simulate_bundle(self, signed_txs: list[str], block_number: int) -> BundleSimulation:
        results = []
        with self.ledger.simulation():
            for raw in signed_txs:
                try:
                    profit = self._request_loan(self._signed[raw])
                except LedgerRevert as e:
                    results.append({"txHash": raw, "revert": e.reason})
                    return BundleSimulation(success=False, error=e.reason, results=results)
                results.append({"txHash": raw, "profit": profit})

        return BundleSimulation(
            success=True,
            gas_used=self.gas_used * len(signed_txs),
            results=results,
        )

    async def send_bundle(self, signed_txs: list[str], target_block: int) -> str:
        bundle_hash = "0x" + secrets.token_hex(32)
        self.bundles.append((target_block, list(signed_txs)))

        while self.ledger.block_number < target_block - 1:
            self.ledger.mine()

        pending = [raw for raw in signed_txs if raw[len("local:"):] not in self._receipts]
        if not self.include_bundles or not pending:
            self.ledger.mine()
            return bundle_hash

        block = self.ledger.mine()
        receipts = []
        try:
            # bundles land whole or not at all
            with self.ledger.transaction():
                for raw in pending:
                    profit = self._request_loan(self._signed[raw])
                    receipts.append(TxReceipt(
                        tx_hash=raw[len("local:"):],
                        succeeded=True,
                        block_number=block,
                        gas_used=self.gas_used,
                        effective_gas_price=self.gas_price,
                        profit=profit,
                    ))
        except LedgerRevert:
            return bundle_hash

        for receipt in receipts:
            self._receipts[receipt.tx_hash] = receipt
        return bundle_hash

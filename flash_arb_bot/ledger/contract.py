"""
Flash-loan arbitrage contract.

Borrows from a trusted lender, swaps along path1 on one venue and back
along path2 on the first working hop-2 candidate, checks the round trip
beats principal plus premium, and approves exactly that amount back to
the lender. Everything runs inside one ledger transaction: a failed
assertion anywhere leaves no trace.
"""

import secrets
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .state import NATIVE, ZERO_ADDRESS, Ledger, LedgerRevert, require

HOP2_CANDIDATES = 3


class ArbState(str, Enum):
    IDLE = "idle"
    BORROWING = "borrowing"
    SWAPPING1 = "swapping1"
    SWAPPING2 = "swapping2"
    VALIDATING = "validating"
    REPAYING = "repaying"
    SETTLED = "settled"


@dataclass(frozen=True)
class LoanPermit:
    """Single-use capability minted by request_loan and consumed by the callback."""
    token: str
    asset: str
    principal: int
    premium: int


@dataclass(frozen=True)
class ArbParams:
    """Callback payload forwarded through the lender."""
    permit_token: str
    path1: tuple[str, ...]
    path2: tuple[str, ...]
    min_profit: int
    hop1_venue: int
    hop2_venues: tuple[int, ...] = field(default_factory=tuple)


class FlashArbitrage:
    """Ledger-side arbitrage executor, operated by a single operator address."""

    def __init__(
        self,
        ledger: Ledger,
        address: str,
        operator: str,
        lender: str,
        venues: Optional[list[str]] = None,
    ):
        require(operator != ZERO_ADDRESS, "Invalid address")
        require(lender != ZERO_ADDRESS, "Invalid address")
        self.ledger = ledger
        self.address = address
        store = ledger.storage(address)
        store.update(
            operator=operator,
            lender=lender,
            venues=list(venues or []),
            paused=False,
            pause_reason="",
            total_profits=0,
            permit=None,
            state=ArbState.IDLE,
        )
        ledger.deploy(self)

    # === Read-only ===

    @property
    def _store(self) -> dict:
        return self.ledger.storage(self.address)

    @property
    def operator(self) -> str:
        return self._store["operator"]

    @property
    def lender(self) -> str:
        return self._store["lender"]

    @property
    def venues(self) -> list[str]:
        return list(self._store["venues"])

    @property
    def paused(self) -> bool:
        return self._store["paused"]

    @property
    def total_profits(self) -> int:
        return self._store["total_profits"]

    @property
    def state(self) -> ArbState:
        return self._store["state"]

    @property
    def loan_in_progress(self) -> bool:
        return self._store["permit"] is not None

    def _only_operator(self, caller: str) -> None:
        require(caller == self.operator, "Caller is not operator")

    def _set_state(self, state: ArbState) -> None:
        self._store["state"] = state

    # === Operator configuration ===

    def set_lender(self, caller: str, lender: str) -> None:
        with self.ledger.transaction():
            self._only_operator(caller)
            require(lender != ZERO_ADDRESS, "Invalid address")
            self._store["lender"] = lender

    def set_venues(self, caller: str, venues: list[str]) -> None:
        with self.ledger.transaction():
            self._only_operator(caller)
            require(len(venues) > 0, "Invalid venues")
            require(all(v != ZERO_ADDRESS for v in venues), "Invalid address")
            self._store["venues"] = list(venues)

    def pause(self, caller: str, reason: str = "") -> None:
        with self.ledger.transaction():
            self._only_operator(caller)
            self._store["paused"] = True
            self._store["pause_reason"] = reason
            self.ledger.emit(self.address, "EmergencyPause", reason=reason)

    def unpause(self, caller: str) -> None:
        with self.ledger.transaction():
            self._only_operator(caller)
            self._store["paused"] = False
            self._store["pause_reason"] = ""
            self.ledger.emit(self.address, "EmergencyUnpause")

    def withdraw(self, caller: str, to: str, amount: int) -> None:
        """Withdraw native balance. Allowed while paused."""
        with self.ledger.transaction():
            self._only_operator(caller)
            require(to != ZERO_ADDRESS, "Invalid address")
            require(
                self.ledger.balance_of(NATIVE, self.address) >= amount,
                "Insufficient balance",
            )
            self.ledger.transfer(NATIVE, self.address, to, amount)
            self.ledger.emit(self.address, "Withdrawn", token=NATIVE, to=to, amount=amount)

    def withdraw_token(self, caller: str, token: str, to: str, amount: int) -> None:
        """Withdraw a token balance. Allowed while paused."""
        with self.ledger.transaction():
            self._only_operator(caller)
            require(to != ZERO_ADDRESS, "Invalid address")
            require(
                self.ledger.balance_of(token, self.address) >= amount,
                "Insufficient token balance",
            )
            self.ledger.transfer(token, self.address, to, amount)
            self.ledger.emit(self.address, "Withdrawn", token=token, to=to, amount=amount)

    # === Arbitrage ===

    def request_loan(
        self,
        caller: str,
        asset: str,
        principal: int,
        path1: list[str],
        path2: list[str],
        min_profit: int,
        hop1_venue: int = 0,
        hop2_venues: Optional[list[int]] = None,
    ) -> int:
        """
        Borrow principal of asset and run the two-hop round trip atomically.

        Returns the realized profit. Raises LedgerRevert, with every effect
        rolled back, if any step fails.
        """
        with self.ledger.transaction():
            self._only_operator(caller)
            require(not self.paused, "Contract paused")
            require(self.state == ArbState.IDLE, "Loan already in progress")
            require(len(path1) >= 2 and len(path2) >= 2, "Invalid paths")
            require(
                path1[0] == asset and path2[-1] == asset,
                "Paths must start and end with flash loan asset",
            )
            require(path1[-1] == path2[0], "Paths must connect")
            require(principal > 0, "Invalid amount")

            venues = self._store["venues"]
            if hop2_venues is None:
                hop2_venues = [i for i in range(len(venues)) if i != hop1_venue]
            candidates = tuple(hop2_venues[:HOP2_CANDIDATES])
            require(0 <= hop1_venue < len(venues), "Unknown venue")
            require(
                len(candidates) > 0 and all(0 <= i < len(venues) for i in candidates),
                "Unknown venue",
            )

            lender = self.ledger.contract_at(self.lender)
            premium = principal * lender.premium_bps // 10_000
            permit = LoanPermit(
                token=secrets.token_hex(16),
                asset=asset,
                principal=principal,
                premium=premium,
            )
            params = ArbParams(
                permit_token=permit.token,
                path1=tuple(path1),
                path2=tuple(path2),
                min_profit=min_profit,
                hop1_venue=hop1_venue,
                hop2_venues=candidates,
            )

            before = self.total_profits
            self._store["permit"] = permit
            self._set_state(ArbState.BORROWING)
            try:
                lender.flash_loan_simple(
                    caller=self.address,
                    receiver=self.address,
                    asset=asset,
                    amount=principal,
                    params=params,
                )
            finally:
                self._store["permit"] = None
                self._set_state(ArbState.IDLE)

            return self.total_profits - before

    def execute_operation(
        self,
        caller: str,
        asset: str,
        amount: int,
        premium: int,
        initiator: str,
        params: ArbParams,
    ) -> bool:
        """Lender callback. Funds for `amount` are already held by this contract."""
        require(caller == self.lender, "Caller must be lender")
        require(initiator == self.address, "Initiator must be this contract")
        permit: Optional[LoanPermit] = self._store["permit"]
        require(
            permit is not None and params.permit_token == permit.token,
            "Not in flash loan",
        )
        # consumed before any external call
        self._store["permit"] = None
        require(
            asset == permit.asset and amount == permit.principal,
            "Loan mismatch",
        )
        require(premium == permit.premium, "Premium mismatch")

        self._set_state(ArbState.SWAPPING1)
        venues = self._store["venues"]
        hop1_router = self.ledger.contract_at(venues[params.hop1_venue])
        self.ledger.approve(asset, self.address, hop1_router.address, amount)
        amounts1 = hop1_router.swap_exact_tokens_for_tokens(
            self.address, amount, 1, list(params.path1), self.address
        )
        hop1_out = amounts1[-1]

        self._set_state(ArbState.SWAPPING2)
        final_amount, used_venue = self._swap_hop2(hop1_out, params)

        self._set_state(ArbState.VALIDATING)
        owed = amount + premium
        require(final_amount > owed, "Arbitrage not profitable")
        profit = final_amount - owed
        require(profit >= params.min_profit, "Profit below minimum")

        self._set_state(ArbState.REPAYING)
        self.ledger.approve(asset, self.address, self.lender, owed)
        self._store["total_profits"] += profit
        self.ledger.emit(
            self.address,
            "ArbitrageExecuted",
            asset=asset,
            principal=amount,
            premium=premium,
            profit=profit,
            hop2_venue=used_venue,
        )
        self._set_state(ArbState.SETTLED)
        return True

    def _swap_hop2(self, amount_in: int, params: ArbParams) -> tuple[int, int]:
        """Try hop-2 candidates in order; the first non-zero fill wins."""
        token_in = params.path2[0]
        venues = self._store["venues"]
        for index in params.hop2_venues:
            try:
                with self.ledger.transaction():
                    router = self.ledger.contract_at(venues[index])
                    self.ledger.approve(token_in, self.address, router.address, amount_in)
                    amounts = router.swap_exact_tokens_for_tokens(
                        self.address, amount_in, 1, list(params.path2), self.address
                    )
                    require(amounts[-1] > 0, "Zero output")
                    self.ledger.approve(token_in, self.address, router.address, 0)
            except LedgerRevert:
                continue
            return amounts[-1], index
        raise LedgerRevert("Hop 2 venues exhausted")

"""
In-process transactional ledger.
Holds token balances, allowances, contract storage and events, and executes
every external call as an all-or-nothing unit.
"""

import copy
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

NATIVE = "native"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class LedgerRevert(Exception):
    """Assertion failure inside a ledger transaction. Unwinds the whole unit."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def require(condition: bool, reason: str) -> None:
    """Revert the current transaction unless condition holds."""
    if not condition:
        raise LedgerRevert(reason)


@dataclass
class LedgerEvent:
    """Event emitted by a contract during a committed transaction."""
    name: str
    emitter: str
    args: dict[str, Any] = field(default_factory=dict)
    block_number: int = 0


class Ledger:
    """
    Append-only ledger with snapshot/rollback semantics.

    State mutated inside `transaction()` is committed only if the block
    exits cleanly; any exception restores balances, allowances, storage
    and the event log to their values at entry. Transactions nest, so a
    contract can try an inner call and recover from its failure without
    keeping its partial effects.
    """

    def __init__(self):
        self._balances: dict[str, dict[str, int]] = {}
        self._allowances: dict[tuple[str, str, str], int] = {}
        self._storage: dict[str, dict[str, Any]] = {}
        self._contracts: dict[str, Any] = {}
        self.events: list[LedgerEvent] = []
        self.block_number: int = 1

    # === Transactions ===

    def _snapshot(self) -> tuple:
        return (
            copy.deepcopy(self._balances),
            dict(self._allowances),
            copy.deepcopy(self._storage),
            len(self.events),
        )

    def _restore(self, snapshot: tuple) -> None:
        balances, allowances, storage, event_count = snapshot
        self._balances = balances
        self._allowances = allowances
        self._storage = storage
        del self.events[event_count:]

    @contextmanager
    def transaction(self) -> Generator["Ledger", None, None]:
        """Run a block atomically; any exception rolls back every effect."""
        snapshot = self._snapshot()
        try:
            yield self
        except BaseException:
            self._restore(snapshot)
            raise

    @contextmanager
    def simulation(self) -> Generator["Ledger", None, None]:
        """Run a block against current state and always discard its effects."""
        snapshot = self._snapshot()
        try:
            yield self
        finally:
            self._restore(snapshot)

    def mine(self) -> int:
        """Advance to the next block."""
        self.block_number += 1
        return self.block_number

    # === Contracts ===

    def deploy(self, contract: Any) -> Any:
        """Register a contract object under its address."""
        self._contracts[contract.address] = contract
        return contract

    def contract_at(self, address: str) -> Any:
        contract = self._contracts.get(address)
        require(contract is not None, f"No contract at {address}")
        return contract

    def storage(self, address: str) -> dict[str, Any]:
        """Mutable storage record of a contract address."""
        return self._storage.setdefault(address, {})

    def emit(self, emitter: str, name: str, **args: Any) -> LedgerEvent:
        event = LedgerEvent(
            name=name,
            emitter=emitter,
            args=args,
            block_number=self.block_number,
        )
        self.events.append(event)
        return event

    def events_named(self, name: str, emitter: Optional[str] = None) -> list[LedgerEvent]:
        return [
            e for e in self.events
            if e.name == name and (emitter is None or e.emitter == emitter)
        ]

    # === Tokens ===

    def balance_of(self, token: str, owner: str) -> int:
        return self._balances.get(token, {}).get(owner, 0)

    def mint(self, token: str, to: str, amount: int) -> None:
        """Credit new units to an address (funding and test setup)."""
        require(amount >= 0, "Invalid amount")
        holders = self._balances.setdefault(token, {})
        holders[to] = holders.get(to, 0) + amount

    def transfer(self, token: str, sender: str, to: str, amount: int) -> None:
        require(amount >= 0, "Invalid amount")
        require(to != ZERO_ADDRESS, "Invalid address")
        holders = self._balances.setdefault(token, {})
        balance = holders.get(sender, 0)
        require(balance >= amount, "Insufficient balance")
        holders[sender] = balance - amount
        holders[to] = holders.get(to, 0) + amount

    def approve(self, token: str, owner: str, spender: str, amount: int) -> None:
        require(amount >= 0, "Invalid amount")
        self._allowances[(token, owner, spender)] = amount

    def allowance(self, token: str, owner: str, spender: str) -> int:
        return self._allowances.get((token, owner, spender), 0)

    def transfer_from(
        self,
        token: str,
        spender: str,
        owner: str,
        to: str,
        amount: int,
    ) -> None:
        """Move tokens on behalf of owner, consuming spender's allowance."""
        allowed = self.allowance(token, owner, spender)
        require(allowed >= amount, "Insufficient allowance")
        self._allowances[(token, owner, spender)] = allowed - amount
        self.transfer(token, owner, to, amount)

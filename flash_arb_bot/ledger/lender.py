"""
Flash lender on the ledger.
Lends any amount it holds for the duration of one transaction and pulls
back principal plus premium through the borrower's allowance.
"""

from typing import Any

from ..venues.amm_math import flash_loan_premium
from .state import Ledger, require


class FlashLender:
    """Single-asset flash loan pool with a proportional premium."""

    def __init__(self, ledger: Ledger, address: str, premium_bps: int = 5):
        self.ledger = ledger
        self.address = address
        ledger.storage(address)["premium_bps"] = premium_bps
        ledger.deploy(self)

    @property
    def premium_bps(self) -> int:
        return self.ledger.storage(self.address)["premium_bps"]

    def set_premium(self, premium_bps: int) -> None:
        self.ledger.storage(self.address)["premium_bps"] = premium_bps

    def flash_loan_simple(
        self,
        caller: str,
        receiver: str,
        asset: str,
        amount: int,
        params: Any,
    ) -> None:
        """Lend amount to receiver, invoke its callback, then collect repayment."""
        with self.ledger.transaction():
            require(amount > 0, "Invalid amount")
            require(
                self.ledger.balance_of(asset, self.address) >= amount,
                "Insufficient liquidity",
            )

            premium = flash_loan_premium(amount, self.premium_bps)
            self.ledger.transfer(asset, self.address, receiver, amount)

            borrower = self.ledger.contract_at(receiver)
            ok = borrower.execute_operation(
                caller=self.address,
                asset=asset,
                amount=amount,
                premium=premium,
                initiator=caller,
                params=params,
            )
            require(ok is True, "Invalid flash loan executor return")

            self.ledger.transfer_from(
                asset, self.address, receiver, self.address, amount + premium
            )
            self.ledger.emit(
                self.address,
                "FlashLoan",
                receiver=receiver,
                initiator=caller,
                asset=asset,
                amount=amount,
                premium=premium,
            )

"""Transactional in-process ledger and the flash-loan arbitrage contract."""

from .state import Ledger, LedgerEvent, LedgerRevert, NATIVE, ZERO_ADDRESS, require
from .pools import ConstantProductRouter
from .lender import FlashLender
from .contract import ArbState, FlashArbitrage, HOP2_CANDIDATES
from .gateway import LocalContractGateway

__all__ = [
    "Ledger",
    "LedgerEvent",
    "LedgerRevert",
    "NATIVE",
    "ZERO_ADDRESS",
    "require",
    "ConstantProductRouter",
    "FlashLender",
    "ArbState",
    "FlashArbitrage",
    "HOP2_CANDIDATES",
    "LocalContractGateway",
]

"""Signals module for arbitrage detection."""

from .opportunity_scanner import (
    MAX_HOP2_CANDIDATES,
    Opportunity,
    OpportunityScanner,
    filter_profitable,
)

__all__ = [
    "MAX_HOP2_CANDIDATES",
    "Opportunity",
    "OpportunityScanner",
    "filter_profitable",
]

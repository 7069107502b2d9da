"""
Flash-Loan Cross-Venue Arbitrage Bot

Borrows the scan token with a flash loan, sells it on one venue, buys it
back on another and repays within a single atomic transaction. Executes
only when the protected output exceeds principal + premium.
"""

__version__ = "1.0.0"

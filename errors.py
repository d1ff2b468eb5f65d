#!/usr/bin/env python3
"""
Error types for Pool Revenue Calculator

Version: 1.2.0
"""


class RevenueCalculatorError(Exception):
    """Base class for every failure raised by the calculator"""


class ValidationError(RevenueCalculatorError):
    """Malformed user input (address, date, basis points). Never retried."""

    def __init__(self, errors):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("Input validation failed: " + ", ".join(self.errors))


class TransientRpcError(RevenueCalculatorError):
    """Rate limit / timeout that survived the whole retry budget"""

    def __init__(self, message, attempts=None):
        super().__init__(message)
        self.attempts = attempts


class BlockRangeLimitError(RevenueCalculatorError):
    """Provider refuses the requested block span"""

    def __init__(self, message, from_block=None, to_block=None):
        super().__init__(message)
        self.from_block = from_block
        self.to_block = to_block


class InsufficientDataError(RevenueCalculatorError):
    """Not enough on-chain history to compute a meaningful result"""


class HistoricalDataUnavailableError(RevenueCalculatorError):
    """RPC node has no state for old blocks (non-archive node)"""

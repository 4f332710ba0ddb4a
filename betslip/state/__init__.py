"""
Cart state and odds reconciliation.
"""

from .cart import (
    BetCart,
    CartLine,
    CartState,
    CartSummary,
    CartTotals,
)
from .reconciliation import ReconciliationEngine, ResolvedOdds

__all__ = [
    "BetCart",
    "CartLine",
    "CartState",
    "CartSummary",
    "CartTotals",
    "ReconciliationEngine",
    "ResolvedOdds",
]

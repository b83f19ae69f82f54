"""External collaborators: the yield source and the underlying asset."""

from .base import UnderlyingAsset, YieldSource
from .memory import InMemoryLendingMarket, InMemoryToken, InsufficientAllowance, InsufficientFunds

__all__ = [
    "UnderlyingAsset",
    "YieldSource",
    "InMemoryLendingMarket",
    "InMemoryToken",
    "InsufficientAllowance",
    "InsufficientFunds",
]

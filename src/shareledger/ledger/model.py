from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

from ..errors import ConfigurationError, InvariantViolation
from ..fixedpoint import UINT256_MAX, checked_add, checked_sub, mul_div, require_uint


@dataclass(frozen=True)
class LedgerState:
    """Accounting state of one pool.

    Attributes:
        total_shares: Sum of outstanding shares (0 means no depositors)
        last_recorded_balance: Yield source balance at the last checkpoint
        last_exchange_rate: Underlying value of one share, scaled by ``scale``
        scale: ``10 ** decimals`` of the underlying asset
    """

    total_shares: int
    last_recorded_balance: int
    last_exchange_rate: int
    scale: int

    def __post_init__(self) -> None:
        for name in ("total_shares", "last_recorded_balance", "last_exchange_rate", "scale"):
            require_uint(getattr(self, name), name)
        if self.scale == 0:
            raise ConfigurationError("scale must be positive")
        if self.last_exchange_rate < self.scale:
            raise InvariantViolation(
                f"exchange rate {self.last_exchange_rate} below scale {self.scale}"
            )

    @classmethod
    def initial(cls, decimals: int) -> "LedgerState":
        if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
            raise ConfigurationError(f"decimals must be a non-negative int, got {decimals!r}")
        scale = 10 ** decimals
        if scale > UINT256_MAX:
            raise ConfigurationError(f"decimals too large: {decimals}")
        return cls(total_shares=0, last_recorded_balance=0, last_exchange_rate=scale, scale=scale)


def accrue(state: LedgerState, current_balance: int) -> Tuple[LedgerState, int]:
    """Fold yield observed since the last checkpoint into the exchange rate.

    Returns the new state and the interest attributed. The recorded balance
    is left alone; callers set it once they know the post-operation balance.
    With no shares outstanding nothing is attributed and the rate stays put.
    """
    require_uint(current_balance, "current_balance")
    if state.total_shares == 0:
        return state, 0
    if current_balance < state.last_recorded_balance:
        raise InvariantViolation(
            "yield source balance decreased without a withdrawal: "
            f"{state.last_recorded_balance} -> {current_balance}"
        )
    interest = checked_sub(current_balance, state.last_recorded_balance)
    if interest == 0:
        return state, 0
    rate = checked_add(state.last_exchange_rate, mul_div(interest, state.scale, state.total_shares))
    return replace(state, last_exchange_rate=rate), interest

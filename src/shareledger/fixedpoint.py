"""Checked unsigned fixed-point arithmetic.

Python integers never wrap, so the uint256 range is enforced explicitly:
any result below zero raises :class:`UnderflowError` and any result above
``UINT256_MAX`` raises :class:`OverflowViolation`. Division truncates toward
zero, which for unsigned operands means rounding down.
"""
from __future__ import annotations

from .errors import InvariantViolation, OverflowViolation, UnderflowError

UINT256_MAX = 2**256 - 1


def require_uint(value: int, name: str = "value") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise UnderflowError(f"{name} is negative: {value}")
    if value > UINT256_MAX:
        raise OverflowViolation(f"{name} exceeds uint256: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    require_uint(a, "a")
    require_uint(b, "b")
    result = a + b
    if result > UINT256_MAX:
        raise OverflowViolation(f"addition overflow: {a} + {b}")
    return result


def checked_sub(a: int, b: int) -> int:
    require_uint(a, "a")
    require_uint(b, "b")
    if b > a:
        raise UnderflowError(f"subtraction underflow: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    require_uint(a, "a")
    require_uint(b, "b")
    result = a * b
    if result > UINT256_MAX:
        raise OverflowViolation(f"multiplication overflow: {a} * {b}")
    return result


def checked_div(a: int, b: int) -> int:
    require_uint(a, "a")
    require_uint(b, "b")
    if b == 0:
        raise InvariantViolation(f"division by zero: {a} / 0")
    return a // b


def mul_div(a: int, b: int, c: int) -> int:
    """Return ``a * b // c`` with the intermediate product range-checked."""
    return checked_div(checked_mul(a, b), c)


def underlying_to_shares(amount: int, rate: int, scale: int) -> int:
    """Shares owed for ``amount`` of underlying, rounded down."""
    return mul_div(amount, scale, rate)


def shares_to_underlying(shares: int, rate: int, scale: int) -> int:
    """Underlying value of ``shares``, rounded down."""
    return mul_div(shares, rate, scale)

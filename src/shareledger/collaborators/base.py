"""
Interfaces the share ledger consumes.

The ledger treats the yield source as a balance oracle with deposit and
withdraw endpoints, and the underlying asset as plain value transfer. Any
object with these methods works; the in-memory versions in
``shareledger.collaborators.memory`` back the demo and the tests.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class UnderlyingAsset(Protocol):
    """Token-like value transfer.

    Attributes:
        symbol: Asset identifier (e.g., "USDC")
        decimals: Base-unit exponent; the ledger scale is ``10 ** decimals``
    """

    symbol: str
    decimals: int

    def balance_of(self, account: str) -> int: ...

    def transfer(self, src: str, dst: str, amount: int) -> None: ...

    def transfer_from(self, spender: str, src: str, dst: str, amount: int) -> None: ...

    def approve(self, owner: str, spender: str, amount: int) -> None: ...


@runtime_checkable
class YieldSource(Protocol):
    """Interest-bearing position (a lending market).

    ``balance_of`` must never decrease except through ``withdraw`` by the
    same account, and ``withdraw`` must never remove more than requested.
    """

    address: str

    def balance_of(self, account: str) -> int: ...

    def deposit(self, account: str, amount: int, referral_code: int = 0) -> None: ...

    def withdraw(self, account: str, amount: int) -> int: ...

from __future__ import annotations

import logging
from typing import Dict, Tuple

from ..errors import CollaboratorError, InvalidAmountError

logger = logging.getLogger(__name__)


class InsufficientFunds(CollaboratorError):
    """Raised when an account cannot cover a transfer."""


class InsufficientAllowance(CollaboratorError):
    """Raised when a spender has not been approved for the amount."""


def _require_amount(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(f"amount must be a non-negative int, got {amount!r}")
    return amount


class InMemoryToken:
    """Minimal fungible token: balances, allowances, mint."""

    def __init__(self, symbol: str = "USDC", decimals: int = 6):
        self.symbol = symbol
        self.decimals = int(decimals)
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}

    @property
    def total_supply(self) -> int:
        return sum(self._balances.values())

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self._allowances.get((owner, spender), 0)

    def mint(self, account: str, amount: int) -> None:
        self._balances[account] = self.balance_of(account) + _require_amount(amount)

    def approve(self, owner: str, spender: str, amount: int) -> None:
        self._allowances[(owner, spender)] = _require_amount(amount)

    def transfer(self, src: str, dst: str, amount: int) -> None:
        _require_amount(amount)
        have = self.balance_of(src)
        if have < amount:
            raise InsufficientFunds(f"{src} holds {have} {self.symbol}, needs {amount}")
        self._balances[src] = have - amount
        self._balances[dst] = self.balance_of(dst) + amount

    def transfer_from(self, spender: str, src: str, dst: str, amount: int) -> None:
        _require_amount(amount)
        allowed = self.allowance(src, spender)
        if allowed < amount:
            raise InsufficientAllowance(f"{spender} may move {allowed} from {src}, needs {amount}")
        self.transfer(src, dst, amount)
        self._allowances[(src, spender)] = allowed - amount


class InMemoryLendingMarket:
    """Simulated lending market holding underlying on behalf of depositors.

    Balances only grow through :meth:`accrue_bps` or :meth:`credit`; the
    interest is minted into the market so every balance stays redeemable.
    ``deposit_haircut`` and :meth:`slash` exist to simulate a faulty market.
    """

    def __init__(self, asset: InMemoryToken, address: str = "lending-market", deposit_haircut: int = 0):
        self.asset = asset
        self.address = address
        self.deposit_haircut = int(deposit_haircut)
        self.last_referral_code: int | None = None
        self._balances: Dict[str, int] = {}

    def balance_of(self, account: str) -> int:
        return self._balances.get(account, 0)

    def deposit(self, account: str, amount: int, referral_code: int = 0) -> None:
        _require_amount(amount)
        # Pulls from the depositor; the depositor must have approved this market
        self.asset.transfer_from(self.address, account, self.address, amount)
        credited = max(0, amount - self.deposit_haircut)
        self._balances[account] = self.balance_of(account) + credited
        self.last_referral_code = referral_code

    def withdraw(self, account: str, amount: int) -> int:
        _require_amount(amount)
        have = self.balance_of(account)
        if amount > have:
            raise InsufficientFunds(f"{account} has {have} deposited, requested {amount}")
        self._balances[account] = have - amount
        self.asset.transfer(self.address, account, amount)
        return amount

    def credit(self, account: str, amount: int) -> None:
        """Grow ``account``'s balance by ``amount`` of interest."""
        _require_amount(amount)
        self.asset.mint(self.address, amount)
        self._balances[account] = self.balance_of(account) + amount

    def accrue_bps(self, bps: int) -> Dict[str, int]:
        """Apply ``bps`` basis points of interest to every depositor (rounded down)."""
        credited: Dict[str, int] = {}
        for account, bal in list(self._balances.items()):
            interest = bal * int(bps) // 10_000
            if interest:
                self.credit(account, interest)
                credited[account] = interest
        logger.debug(f"accrued {bps} bps: {credited}")
        return credited

    def slash(self, account: str, amount: int) -> None:
        """Reduce a balance without a withdrawal, as a faulty market would."""
        _require_amount(amount)
        self._balances[account] = max(0, self.balance_of(account) - amount)

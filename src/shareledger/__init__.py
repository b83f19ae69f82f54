"""shareledger: share accounting over an external interest-bearing position.

Depositors' claims are shares; yield raises the share exchange rate instead
of the share count. See :class:`shareledger.ledger.ShareLedger`.
"""

from .errors import (
    AuthorizationError,
    CollaboratorError,
    ConfigurationError,
    InvalidAmountError,
    InvariantViolation,
    LedgerError,
    OverflowViolation,
    UnderflowError,
)
from .ledger import LedgerState, ShareLedger, accrue

__all__ = [
    "AuthorizationError",
    "CollaboratorError",
    "ConfigurationError",
    "InvalidAmountError",
    "InvariantViolation",
    "LedgerError",
    "OverflowViolation",
    "UnderflowError",
    "LedgerState",
    "ShareLedger",
    "accrue",
]

"""Error taxonomy for the share ledger.

Every failure aborts the operation that raised it. Nothing here is ever
clamped or retried by the ledger itself.
"""
from __future__ import annotations


class LedgerError(Exception):
    """Base class for all share ledger failures."""
    kind = "ledger_error"


class ConfigurationError(LedgerError, ValueError):
    """Raised when the ledger is constructed with missing or invalid collaborators."""
    kind = "configuration"


class AuthorizationError(LedgerError, PermissionError):
    """Raised when a privileged operation is invoked by a non-administrator."""
    kind = "authorization"


class InvalidAmountError(LedgerError, ValueError):
    """Raised for non-positive or non-integer amounts."""
    kind = "invalid_amount"


class InvariantViolation(LedgerError, ArithmeticError):
    """Raised when accounting would become inconsistent.

    Covers a yield source balance that shrank between checkpoints and
    deposit/withdraw deltas that disagree with the requested amount.
    """
    kind = "invariant_violation"


class UnderflowError(InvariantViolation):
    kind = "underflow"


class OverflowViolation(InvariantViolation):
    kind = "overflow"


class CollaboratorError(LedgerError, RuntimeError):
    """Raised when the yield source or asset transfer fails."""
    kind = "collaborator"

from __future__ import annotations

import json
import logging

from .errors import AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)


class Ownership:
    """Single-administrator capability guard.

    Privileged ledger operations call :meth:`require_owner` before touching
    any state, so a rejected caller never observes a partial change.
    """

    def __init__(self, owner: str):
        if not owner:
            raise ConfigurationError("owner identity is required")
        self._owner = str(owner)

    @property
    def owner(self) -> str:
        return self._owner

    def is_owner(self, caller: str | None) -> bool:
        return caller is not None and str(caller) == self._owner

    def require_owner(self, caller: str | None, operation: str = "") -> None:
        if self.is_owner(caller):
            return
        logger.warning(json.dumps({
            "event": "ledger_access_denied",
            "operation": operation,
            "caller": caller,
        }, separators=(",", ":")))
        raise AuthorizationError(f"caller {caller!r} is not the administrator")

    def transfer_ownership(self, caller: str, new_owner: str) -> str:
        """Hand the administrator role to ``new_owner``; return the previous owner."""
        self.require_owner(caller, "transfer_ownership")
        if not new_owner:
            raise ConfigurationError("new owner identity is required")
        previous = self._owner
        self._owner = str(new_owner)
        return previous

"""Ledger package.

Public API:
- ShareLedger: share accounting over one external yield source.
- LedgerState: immutable snapshot of the pool's accounting state.
- accrue: pure interest-folding step used by every ledger operation.
"""

from .model import LedgerState, accrue  # re-export
from .ledger import ShareLedger  # re-export

from __future__ import annotations

import os
import sqlite3
from contextlib import closing
from typing import Optional

from ..ledger.model import LedgerState


# Integers are stored as TEXT: SQLite INTEGER tops out at 2**63 - 1.
DDL = """
CREATE TABLE IF NOT EXISTS ledger_state (
  pool TEXT PRIMARY KEY,
  total_shares TEXT NOT NULL,
  last_recorded_balance TEXT NOT NULL,
  last_exchange_rate TEXT NOT NULL,
  scale TEXT NOT NULL,
  updated_ms INTEGER
);
"""


class SQLiteStateStore:
    """Keeps the latest checkpoint per pool; saving overwrites the previous one."""

    def __init__(self, path: str = "data/ledger_state.sqlite"):
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.path = path
        with closing(sqlite3.connect(self.path)) as con, con:
            con.execute(DDL)

    def save(self, pool: str, state: LedgerState, updated_ms: int = 0) -> None:
        with closing(sqlite3.connect(self.path)) as con, con:
            con.execute(
                "INSERT INTO ledger_state(pool,total_shares,last_recorded_balance,last_exchange_rate,scale,updated_ms) "
                "VALUES (?,?,?,?,?,?) "
                "ON CONFLICT(pool) DO UPDATE SET total_shares=excluded.total_shares, "
                "last_recorded_balance=excluded.last_recorded_balance, "
                "last_exchange_rate=excluded.last_exchange_rate, scale=excluded.scale, "
                "updated_ms=excluded.updated_ms",
                (
                    pool,
                    str(state.total_shares),
                    str(state.last_recorded_balance),
                    str(state.last_exchange_rate),
                    str(state.scale),
                    int(updated_ms),
                ),
            )

    def load(self, pool: str) -> Optional[LedgerState]:
        with closing(sqlite3.connect(self.path)) as con, con:
            row = con.execute(
                "SELECT total_shares,last_recorded_balance,last_exchange_rate,scale FROM ledger_state WHERE pool=?",
                (pool,),
            ).fetchone()
        if row is None:
            return None
        total_shares, recorded, rate, scale = (int(v) for v in row)
        return LedgerState(
            total_shares=total_shares,
            last_recorded_balance=recorded,
            last_exchange_rate=rate,
            scale=scale,
        )

from __future__ import annotations

import os
from typing import Optional

from prometheus_client import Counter, Gauge, REGISTRY

_operations_total: Optional[Counter] = None
_violations_total: Optional[Counter] = None
_interest_accrued_total: Optional[Counter] = None
_exchange_rate: Optional[Gauge] = None
_total_shares: Optional[Gauge] = None
_recorded_balance: Optional[Gauge] = None


class _NoOp:
    def labels(self, *args, **kwargs):
        return self

    def inc(self, *args, **kwargs):
        return None

    def set(self, *args, **kwargs):
        return None


def _disabled() -> bool:
    return os.getenv("DISABLE_PROMETHEUS", "0") == "1"


def _registered(name: str):
    # Counters register as both `name` and `name_total`; look up either.
    names = getattr(REGISTRY, "_names_to_collectors", {})
    return names.get(name) or names.get(f"{name}_total")


def _safe_counter(name: str, doc: str, labelnames):
    if _disabled():
        return _NoOp()
    try:
        return Counter(name, doc, labelnames)
    except ValueError:
        # Already registered (e.g. module imported twice under different paths)
        return _registered(name) or _NoOp()


def _safe_gauge(name: str, doc: str, labelnames):
    if _disabled():
        return _NoOp()
    try:
        return Gauge(name, doc, labelnames)
    except ValueError:
        return _registered(name) or _NoOp()


def get_operations_total():
    """Counter: ledger_operations_total{pool,operation,outcome}"""
    global _operations_total
    if _operations_total is None:
        _operations_total = _safe_counter(
            "ledger_operations_total", "Share ledger operations", ["pool", "operation", "outcome"]
        )
    return _operations_total


def get_violations_total():
    """Counter: ledger_violations_total{pool,kind}"""
    global _violations_total
    if _violations_total is None:
        _violations_total = _safe_counter(
            "ledger_violations_total", "Accounting failures by kind", ["pool", "kind"]
        )
    return _violations_total


def get_interest_accrued_total():
    """Counter: interest folded into the exchange rate, in underlying units."""
    global _interest_accrued_total
    if _interest_accrued_total is None:
        _interest_accrued_total = _safe_counter(
            "ledger_interest_accrued_total", "Interest attributed to shareholders", ["pool"]
        )
    return _interest_accrued_total


def get_exchange_rate_gauge():
    global _exchange_rate
    if _exchange_rate is None:
        _exchange_rate = _safe_gauge("ledger_exchange_rate", "Scaled value of one share", ["pool"])
    return _exchange_rate


def get_total_shares_gauge():
    global _total_shares
    if _total_shares is None:
        _total_shares = _safe_gauge("ledger_total_shares", "Outstanding shares", ["pool"])
    return _total_shares


def get_recorded_balance_gauge():
    global _recorded_balance
    if _recorded_balance is None:
        _recorded_balance = _safe_gauge(
            "ledger_recorded_balance", "Yield source balance at the last checkpoint", ["pool"]
        )
    return _recorded_balance


def record_state(pool: str, exchange_rate: int, total_shares: int, recorded_balance: int) -> None:
    """Set the three state gauges for ``pool`` after a committed operation."""
    get_exchange_rate_gauge().labels(pool=pool).set(exchange_rate)
    get_total_shares_gauge().labels(pool=pool).set(total_shares)
    get_recorded_balance_gauge().labels(pool=pool).set(recorded_balance)

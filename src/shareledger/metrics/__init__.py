"""Prometheus metrics for the share ledger."""

from .core import start_server_safe
from .ledger import (
    get_operations_total,
    get_violations_total,
    get_interest_accrued_total,
    get_exchange_rate_gauge,
    get_total_shares_gauge,
    get_recorded_balance_gauge,
    record_state,
)

__all__ = [
    "start_server_safe",
    "get_operations_total",
    "get_violations_total",
    "get_interest_accrued_total",
    "get_exchange_rate_gauge",
    "get_total_shares_gauge",
    "get_recorded_balance_gauge",
    "record_state",
]

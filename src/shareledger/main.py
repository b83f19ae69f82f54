"""
Main entrypoint for shareledger.

What it does:
- Loads settings from `config/config.yaml` (defaults when absent) with the
  administrator resolved from `SHARELEDGER_ADMIN` or the YAML file.
- Starts the Prometheus exporter.
- Builds an in-memory token and lending market, resumes the ledger from the
  last checkpoint when one exists, and runs a demo: invest, accrue yield,
  read the rate, redeem half the value, redeem everything.
- Saves the final checkpoint and exits.

Where it is used:
- Invoked by `python -m shareledger.main` or the `shareledger-demo` script.

Key related modules:
- `shareledger.config.loader.Settings` and `load_settings`
- `shareledger.ledger.ShareLedger`
- `shareledger.collaborators.memory` (offline yield source and token)
- `shareledger.store.SQLiteStateStore`
"""
import logging
import os
import time
from typing import Optional

from shareledger.collaborators.memory import InMemoryLendingMarket, InMemoryToken
from shareledger.config.loader import Settings, apply_event_env, load_settings
from shareledger.ledger import ShareLedger
from shareledger.metrics.core import start_server_safe
from shareledger.store import SQLiteStateStore


def run_demo(settings: Settings, store: Optional[SQLiteStateStore] = None) -> ShareLedger:
    """Run the reference scenario against in-memory collaborators."""
    token = InMemoryToken(settings.asset.symbol, settings.asset.decimals)
    market = InMemoryLendingMarket(token, address=settings.yield_source_address)
    # A fresh in-memory market starts empty, so only a drained checkpoint can resume
    state = store.load(settings.pool_address) if store is not None else None
    if state is not None and state.total_shares != 0:
        logging.warning(f"checkpoint for {settings.pool_address} has open shares; starting fresh")
        state = None
    ledger = ShareLedger(
        token,
        market,
        owner=settings.admin,
        address=settings.pool_address,
        referral_code=settings.referral_code,
        state=state,
    )
    admin = settings.admin
    one_unit = ledger.scale
    logging.info(f"ledger {ledger.address} for {ledger.underlying()} (scale {ledger.scale}, rate {ledger.last_exchange_rate})")

    deposit = 1 * one_unit
    token.mint(admin, deposit)
    token.approve(admin, ledger.address, deposit)
    minted = ledger.invest_underlying(admin, deposit)
    logging.info(f"invested {deposit}: minted {minted}, total shares {ledger.total_staked}")

    credited = market.accrue_bps(1_000)
    logging.info(f"yield source accrued: {credited}")
    rate = ledger.exchange_rate_stored()
    logging.info(f"exchange rate: {rate}")

    half_value = ledger.state.total_shares * rate // ledger.scale // 2
    burned = ledger.redeem_underlying(admin, half_value)
    logging.info(f"redeemed {half_value}: burned {burned}, total shares {ledger.total_staked}")

    shares_burned, underlying_amount = ledger.redeem_all(admin)
    logging.info(f"redeemed all: burned {shares_burned}, paid out {underlying_amount}")

    if store is not None:
        store.save(ledger.address, ledger.state, int(time.time() * 1000))
        logging.info(f"checkpoint saved to {store.path}")
    return ledger


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    config_path = os.getenv("SHARELEDGER_CONFIG", "config/config.yaml")
    settings = load_settings(config_path, require_file=False)
    apply_event_env(settings)
    logging.info(f"Pool: {settings.pool_address}, asset: {settings.asset.symbol}, admin: {settings.admin}")

    if settings.metrics.enabled:
        prom_port = int(os.getenv("PROMETHEUS_PORT", str(settings.metrics.port)))
        start_server_safe(prom_port)

    store = SQLiteStateStore(settings.state_path)
    run_demo(settings, store)
    logging.info("ledger demo complete")

    # Optional: keep the metrics server alive for inspection
    hold = int(os.getenv("HOLD_METRICS_SECONDS", "0"))
    if hold > 0:
        logging.info(f"holding metrics server for {hold}s before exit")
        time.sleep(hold)


if __name__ == "__main__":
    main()

import json
import logging
import uuid

import pytest

from shareledger.collaborators.memory import InMemoryLendingMarket, InMemoryToken
from shareledger.errors import (
    AuthorizationError,
    CollaboratorError,
    ConfigurationError,
    InvalidAmountError,
    InvariantViolation,
    UnderflowError,
)
from shareledger.events.schema import LedgerViolation
from shareledger.ledger import LedgerState, ShareLedger

ADMIN = "admin"


def make_pool(decimals: int = 6, **market_kwargs):
    token = InMemoryToken("USDC", decimals)
    market = InMemoryLendingMarket(token, address="mkt", **market_kwargs)
    published = []
    ledger = ShareLedger(
        token, market, owner=ADMIN, address=f"pool-{uuid.uuid4().hex[:8]}", publisher=published.append
    )
    return token, market, ledger, published


def fund(token, ledger, amount: int) -> None:
    token.mint(ADMIN, amount)
    token.approve(ADMIN, ledger.address, token.allowance(ADMIN, ledger.address) + amount)


def invested_pool(amount: int = 1_000_000, **kwargs):
    token, market, led, published = make_pool(**kwargs)
    fund(token, led, amount)
    led.invest_underlying(ADMIN, amount)
    return token, market, led, published


def test_construction_requires_collaborators():
    token = InMemoryToken()
    market = InMemoryLendingMarket(token)
    with pytest.raises(ConfigurationError):
        ShareLedger(None, market, owner=ADMIN)  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError):
        ShareLedger(token, None, owner=ADMIN)  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError):
        ShareLedger(token, market, owner="")
    with pytest.raises(ConfigurationError):
        ShareLedger(token, market, owner=ADMIN, referral_code=70_000)


def test_construction_rejects_checkpoint_with_other_scale():
    token = InMemoryToken("USDC", 6)
    market = InMemoryLendingMarket(token)
    foreign = LedgerState.initial(18)
    with pytest.raises(ConfigurationError):
        ShareLedger(token, market, owner=ADMIN, state=foreign)


def test_non_admin_cannot_touch_privileged_operations(caplog):
    token, market, led, _ = invested_pool()
    token.mint("mallory", 100)
    token.approve("mallory", led.address, 100)
    state = led.state
    with caplog.at_level(logging.WARNING):
        with pytest.raises(AuthorizationError):
            led.invest_underlying("mallory", 100)
        with pytest.raises(AuthorizationError):
            led.redeem_underlying("mallory", 100)
        with pytest.raises(AuthorizationError):
            led.redeem_all("mallory")
        with pytest.raises(AuthorizationError):
            led.set_referral_code("mallory", 1)
        with pytest.raises(AuthorizationError):
            led.transfer_ownership("mallory", "mallory")
    assert led.state == state
    assert led.owner == ADMIN
    assert token.balance_of("mallory") == 100
    denied = [json.loads(r.message) for r in caplog.records if "ledger_access_denied" in r.message]
    assert {d["operation"] for d in denied} >= {"invest_underlying", "redeem_all"}


@pytest.mark.parametrize("amount", [0, -5, 1.5, True])
def test_invalid_amounts_are_rejected(amount):
    token, market, led, _ = invested_pool()
    with pytest.raises(InvalidAmountError):
        led.invest_underlying(ADMIN, amount)
    with pytest.raises(InvalidAmountError):
        led.redeem_underlying(ADMIN, amount)


def test_negative_interest_aborts_every_operation(caplog):
    token, market, led, published = invested_pool()
    fund(token, led, 500)
    market.slash(led.address, 1)
    state = led.state
    with caplog.at_level(logging.ERROR):
        with pytest.raises(InvariantViolation):
            led.exchange_rate_stored()
        with pytest.raises(InvariantViolation):
            led.invest_underlying(ADMIN, 500)
        with pytest.raises(InvariantViolation):
            led.redeem_underlying(ADMIN, 10)
        with pytest.raises(InvariantViolation):
            led.redeem_all(ADMIN)
    assert led.state == state
    # nothing was pulled or paid out
    assert token.balance_of(ADMIN) == 500
    assert market.balance_of(led.address) == 999_999
    violations = [env.event for env in published if isinstance(env.event, LedgerViolation)]
    assert len(violations) == 4
    assert {v.operation for v in violations} == {
        "exchange_rate_stored", "invest_underlying", "redeem_underlying", "redeem_all",
    }
    entries = [json.loads(r.message) for r in caplog.records if r.levelname == "ERROR"]
    assert all(e["kind"] == "invariant_violation" for e in entries)


def test_redeem_more_than_deployed_underflows():
    token, market, led, _ = invested_pool()
    with pytest.raises(UnderflowError):
        led.redeem_underlying(ADMIN, 1_000_001)
    assert market.balance_of(led.address) == 1_000_000


def test_redeem_more_shares_than_outstanding_underflows():
    # scale 10: one unit of interest over 30 shares truncates to no rate change
    token, market, led, _ = invested_pool(amount=30, decimals=1)
    market.credit(led.address, 1)
    with pytest.raises(UnderflowError):
        led.redeem_underlying(ADMIN, 31)
    assert market.balance_of(led.address) == 31
    assert led.total_staked == 30


def test_short_credited_deposit_is_an_invariant_violation():
    token, market, led, _ = make_pool(deposit_haircut=1)
    fund(token, led, 1_000_000)
    with pytest.raises(InvariantViolation):
        led.invest_underlying(ADMIN, 1_000_000)
    assert led.state == LedgerState.initial(6)
    # the credited part is handed back; the haircut is the market's loss
    assert token.balance_of(ADMIN) == 999_999
    assert market.balance_of(led.address) == 0


def test_short_credited_deposit_is_not_accrued_as_interest():
    token, market, led, _ = invested_pool()
    market.deposit_haircut = 1
    fund(token, led, 1_000)
    state = led.state
    with pytest.raises(InvariantViolation):
        led.invest_underlying(ADMIN, 1_000)
    assert led.state == state
    assert token.balance_of(ADMIN) == 999
    assert market.balance_of(led.address) == 1_000_000
    assert led.exchange_rate_stored() == 1_000_000

    market.deposit_haircut = 0
    token.approve(ADMIN, led.address, 999)
    assert led.invest_underlying(ADMIN, 999) == 999
    assert led.exchange_rate_stored() == 1_000_000


def test_short_credited_deposit_stuck_in_source_is_checkpointed(monkeypatch):
    token, market, led, _ = invested_pool()
    market.deposit_haircut = 1

    def frozen(account, amount):
        raise RuntimeError("withdrawals paused")

    monkeypatch.setattr(market, "withdraw", frozen)
    fund(token, led, 1_000)
    with pytest.raises(InvariantViolation):
        led.invest_underlying(ADMIN, 1_000)
    assert led.total_staked == 1_000_000
    assert led.last_recorded_balance == 1_000_999
    assert led.exchange_rate_stored() == 1_000_000


def test_short_withdrawal_is_an_invariant_violation(monkeypatch):
    token, market, led, _ = invested_pool()
    original = market.withdraw

    def short(account, amount):
        return original(account, amount - 1)

    monkeypatch.setattr(market, "withdraw", short)
    state = led.state
    with pytest.raises(InvariantViolation):
        led.redeem_underlying(ADMIN, 1_000)
    with pytest.raises(InvariantViolation):
        led.redeem_all(ADMIN)
    assert led.state == state
    assert token.balance_of(ADMIN) == 0
    # released funds went back to the yield source
    assert token.balance_of(led.address) == 0
    assert market.balance_of(led.address) == 1_000_000

    monkeypatch.setattr(market, "withdraw", original)
    assert led.exchange_rate_stored() == 1_000_000
    assert led.redeem_underlying(ADMIN, 1_000) == 1_000
    assert led.redeem_all(ADMIN) == (999_000, 999_000)


def test_short_withdrawal_that_cannot_be_returned_is_checkpointed(monkeypatch):
    token, market, led, _ = invested_pool()
    original = market.withdraw

    def short(account, amount):
        return original(account, amount - 1)

    def paused(account, amount, referral_code=0):
        raise RuntimeError("market paused")

    monkeypatch.setattr(market, "withdraw", short)
    monkeypatch.setattr(market, "deposit", paused)
    with pytest.raises(InvariantViolation):
        led.redeem_underlying(ADMIN, 1_000)
    assert led.last_recorded_balance == 999_001
    assert led.total_staked == 1_000_000
    assert token.balance_of(led.address) == 999
    assert led.exchange_rate_stored() == 1_000_000


def test_failed_deposit_refunds_caller(monkeypatch):
    token, market, led, _ = make_pool()
    fund(token, led, 1_000)

    def paused(account, amount, referral_code=0):
        raise RuntimeError("market paused")

    monkeypatch.setattr(market, "deposit", paused)
    with pytest.raises(CollaboratorError) as info:
        led.invest_underlying(ADMIN, 1_000)
    assert isinstance(info.value.__cause__, RuntimeError)
    assert token.balance_of(ADMIN) == 1_000
    assert token.balance_of(led.address) == 0
    assert led.state == LedgerState.initial(6)


def test_failed_payout_returns_funds_to_yield_source(monkeypatch):
    token, market, led, _ = invested_pool()
    market.credit(led.address, 100_000)
    original = token.transfer

    def flaky(src, dst, amount):
        if dst == ADMIN:
            raise RuntimeError("recipient frozen")
        return original(src, dst, amount)

    monkeypatch.setattr(token, "transfer", flaky)
    state = led.state
    with pytest.raises(CollaboratorError):
        led.redeem_underlying(ADMIN, 550_000)
    with pytest.raises(CollaboratorError):
        led.redeem_all(ADMIN)
    assert led.state == state
    assert market.balance_of(led.address) == 1_100_000
    assert token.balance_of(led.address) == 0

    monkeypatch.setattr(token, "transfer", original)
    assert led.redeem_underlying(ADMIN, 550_000) == 500_000
    assert token.balance_of(ADMIN) == 550_000


def test_unreachable_yield_source_is_a_collaborator_error(monkeypatch):
    token, market, led, _ = invested_pool()

    def down(account):
        raise ConnectionError("rpc down")

    monkeypatch.setattr(market, "balance_of", down)
    with pytest.raises(CollaboratorError):
        led.exchange_rate_stored()
    with pytest.raises(CollaboratorError):
        led.redeem_underlying(ADMIN, 1)


def test_broken_publisher_does_not_undo_committed_state(caplog):
    token = InMemoryToken()
    market = InMemoryLendingMarket(token, address="mkt")

    def broken(env):
        raise RuntimeError("bus down")

    led = ShareLedger(token, market, owner=ADMIN, address=f"pool-{uuid.uuid4().hex[:8]}", publisher=broken)
    fund(token, led, 100)
    with caplog.at_level(logging.ERROR):
        assert led.invest_underlying(ADMIN, 100) == 100
    assert led.total_staked == 100
    assert any("failed to publish invested" in r.message for r in caplog.records)

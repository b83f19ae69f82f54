import pytest

from shareledger.collaborators import (
    InMemoryLendingMarket,
    InMemoryToken,
    InsufficientAllowance,
    InsufficientFunds,
    UnderlyingAsset,
    YieldSource,
)
from shareledger.errors import CollaboratorError, InvalidAmountError


def test_in_memory_types_satisfy_protocols():
    token = InMemoryToken("DAI", 18)
    market = InMemoryLendingMarket(token)
    assert isinstance(token, UnderlyingAsset)
    assert isinstance(market, YieldSource)


def test_token_transfer_and_allowance():
    token = InMemoryToken()
    token.mint("alice", 100)
    with pytest.raises(InsufficientAllowance):
        token.transfer_from("bob", "alice", "bob", 10)
    token.approve("alice", "bob", 30)
    token.transfer_from("bob", "alice", "carol", 30)
    assert token.balance_of("carol") == 30
    assert token.allowance("alice", "bob") == 0
    with pytest.raises(InsufficientFunds):
        token.transfer("alice", "bob", 71)
    assert issubclass(InsufficientFunds, CollaboratorError)
    with pytest.raises(InvalidAmountError):
        token.mint("alice", -1)


def test_market_deposit_pulls_tokens_and_withdraw_pays_out():
    token = InMemoryToken()
    market = InMemoryLendingMarket(token, address="mkt")
    token.mint("pool", 1_000)
    token.approve("pool", "mkt", 1_000)
    market.deposit("pool", 1_000, referral_code=7)
    assert market.balance_of("pool") == 1_000
    assert token.balance_of("mkt") == 1_000
    assert market.last_referral_code == 7
    assert market.withdraw("pool", 400) == 400
    assert token.balance_of("pool") == 400
    with pytest.raises(InsufficientFunds):
        market.withdraw("pool", 601)


def test_market_accrue_bps_mints_backing_tokens():
    token = InMemoryToken()
    market = InMemoryLendingMarket(token, address="mkt")
    token.mint("pool", 10_000)
    token.approve("pool", "mkt", 10_000)
    market.deposit("pool", 10_000)
    credited = market.accrue_bps(250)
    assert credited == {"pool": 250}
    assert market.balance_of("pool") == 10_250
    assert token.balance_of("mkt") == 10_250


def test_market_faults_haircut_and_slash():
    token = InMemoryToken()
    market = InMemoryLendingMarket(token, address="mkt", deposit_haircut=5)
    token.mint("pool", 100)
    token.approve("pool", "mkt", 100)
    market.deposit("pool", 100)
    assert market.balance_of("pool") == 95
    market.slash("pool", 10)
    assert market.balance_of("pool") == 85


def test_protocol_module_is_documented():
    from shareledger.collaborators import base

    assert base.__doc__ and "yield source" in base.__doc__

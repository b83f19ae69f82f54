from __future__ import annotations

from typing import Literal, Union
from pydantic import BaseModel, Field


# ---- Base + envelope ----
# Amounts are ints in underlying base units; rates are scaled by 10**decimals.

class BaseEvent(BaseModel):
    event_type: str
    ts: int
    pool: str
    asset: str
    caller: str | None = None


class EventEnvelope(BaseModel):
    schema_version: str = "v1"
    correlation_id: str
    sequence: int = 0
    event: BaseEvent


# ---- Event types ----

class Invested(BaseEvent):
    event_type: Literal["invested"] = "invested"
    amount: int = Field(gt=0)
    shares_minted: int = Field(ge=0)
    exchange_rate: int
    total_shares: int


class Redeemed(BaseEvent):
    event_type: Literal["redeemed"] = "redeemed"
    amount: int = Field(gt=0)
    shares_burned: int = Field(ge=0)
    exchange_rate: int
    total_shares: int


class RedeemedAll(BaseEvent):
    event_type: Literal["redeemed_all"] = "redeemed_all"
    shares_burned: int = Field(ge=0)
    underlying_amount: int = Field(ge=0)
    exchange_rate: int


class InterestAccrued(BaseEvent):
    event_type: Literal["interest_accrued"] = "interest_accrued"
    interest: int = Field(ge=0)
    previous_rate: int
    exchange_rate: int
    total_shares: int


class ReferralCodeSet(BaseEvent):
    event_type: Literal["referral_code_set"] = "referral_code_set"
    referral_code: int


class OwnershipTransferred(BaseEvent):
    event_type: Literal["ownership_transferred"] = "ownership_transferred"
    previous_owner: str
    new_owner: str


class LedgerViolation(BaseEvent):
    event_type: Literal["ledger_violation"] = "ledger_violation"
    operation: str
    kind: str
    detail: str


AnyEvent = Union[
    Invested,
    Redeemed,
    RedeemedAll,
    InterestAccrued,
    ReferralCodeSet,
    OwnershipTransferred,
    LedgerViolation,
]

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple

from ..access import Ownership
from ..collaborators.base import UnderlyingAsset, YieldSource
from ..errors import (
    CollaboratorError,
    ConfigurationError,
    InvalidAmountError,
    InvariantViolation,
    LedgerError,
)
from ..events.bus import publish as publish_event
from ..events.schema import (
    BaseEvent,
    EventEnvelope,
    InterestAccrued,
    Invested,
    LedgerViolation,
    OwnershipTransferred,
    Redeemed,
    RedeemedAll,
    ReferralCodeSet,
)
from ..fixedpoint import checked_add, checked_sub, mul_div, underlying_to_shares
from ..metrics.ledger import (
    get_interest_accrued_total,
    get_operations_total,
    get_violations_total,
    record_state,
)
from .model import LedgerState, accrue

logger = logging.getLogger(__name__)

MAX_REFERRAL_CODE = 0xFFFF


def _require_positive(amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"amount must be an int, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmountError(f"amount must be positive, got {amount}")
    return amount


def _now_ms() -> int:
    return int(time.time() * 1000)


class ShareLedger:
    """Share accounting over a single external yield source.

    Depositor claims are tracked as shares whose count never grows with
    yield; the exchange rate between shares and underlying rises instead.
    Interest is found lazily by diffing the yield source balance against the
    last recorded balance at the start of every operation.

    Every public operation holds one re-entrant lock for its whole duration
    and commits the new :class:`LedgerState` in a single assignment at the
    end, so a failed operation leaves the state untouched. Effects already
    made on collaborators are compensated (a pulled deposit is refunded, a
    withdrawn amount is re-deposited) before the error propagates. Events
    are collected under the lock and handed to the publisher once it is
    released.
    """

    def __init__(
        self,
        asset: UnderlyingAsset,
        yield_source: YieldSource,
        owner: str,
        address: str = "share-ledger",
        referral_code: int = 0,
        state: Optional[LedgerState] = None,
        publisher: Optional[Callable[[EventEnvelope], None]] = None,
    ):
        if asset is None:
            raise ConfigurationError("underlying asset is required")
        if yield_source is None:
            raise ConfigurationError("yield source is required")
        if not getattr(yield_source, "address", None):
            raise ConfigurationError("yield source must expose an address")
        if not address:
            raise ConfigurationError("ledger address is required")
        self.asset = asset
        self.yield_source = yield_source
        self.address = str(address)
        self._access = Ownership(owner)
        self._referral_code = self._validate_referral_code(referral_code)
        initial = LedgerState.initial(getattr(asset, "decimals", None))
        if state is not None and state.scale != initial.scale:
            raise ConfigurationError(
                f"checkpoint scale {state.scale} does not match asset scale {initial.scale}"
            )
        self._state = state or initial
        self._decimals = int(asset.decimals)
        self._publisher = publisher or publish_event
        self._lock = threading.RLock()
        self._sequence = 0
        self._outbox: List[EventEnvelope] = []
        # Metrics
        self.operations = get_operations_total()
        self.violations = get_violations_total()
        self.interest_accrued = get_interest_accrued_total()
        record_state(self.address, self._state.last_exchange_rate, self._state.total_shares, self._state.last_recorded_balance)

    # ---- read-only accessors ----

    def underlying(self) -> str:
        return self.asset.symbol

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def total_staked(self) -> int:
        return self._state.total_shares

    @property
    def decimals(self) -> int:
        return self._decimals

    @property
    def scale(self) -> int:
        return self._state.scale

    @property
    def last_recorded_balance(self) -> int:
        return self._state.last_recorded_balance

    @property
    def last_exchange_rate(self) -> int:
        return self._state.last_exchange_rate

    @property
    def referral_code(self) -> int:
        return self._referral_code

    @property
    def owner(self) -> str:
        return self._access.owner

    # ---- public operations ----

    def exchange_rate_stored(self) -> int:
        """Return the current exchange rate without persisting the accrual.

        Open to any caller. Still raises :class:`InvariantViolation` if the
        yield source balance has shrunk, since no truthful rate exists then.
        """
        outbox: List[EventEnvelope] = []
        try:
            with self._lock:
                try:
                    accrued, _ = accrue(self._state, self._yield_balance())
                except LedgerError as exc:
                    self._report_failure("exchange_rate_stored", exc, None)
                    raise
                finally:
                    outbox = self._take_outbox()
                return accrued.last_exchange_rate
        finally:
            self._publish(outbox)

    def accrue_interest(self) -> bool:
        """No-op kept for compatibility with strategies that call it.

        Accrual happens lazily inside every other operation, so there is
        nothing to do here and the call always succeeds.
        """
        return True

    def invest_underlying(self, caller: str, amount: int) -> int:
        """Pull ``amount`` from ``caller`` into the yield source; return shares minted."""
        return self._run("invest_underlying", self._invest, caller, amount)

    def redeem_underlying(self, caller: str, amount: int) -> int:
        """Withdraw ``amount`` from the yield source to ``caller``; return shares burned."""
        return self._run("redeem_underlying", self._redeem, caller, amount)

    def redeem_all(self, caller: str) -> Tuple[int, int]:
        """Liquidate the whole position to ``caller``.

        Returns ``(shares_burned, underlying_amount)`` where the amount is
        everything the pool holds after the withdrawal, rounding dust included.
        """
        return self._run("redeem_all", self._redeem_all, caller)

    def set_referral_code(self, caller: str, code: int) -> None:
        self._run("set_referral_code", self._set_referral_code, caller, code)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self._run("transfer_ownership", self._transfer_ownership, caller, new_owner)

    # ---- operation bodies (called with the lock held) ----

    def _invest(self, caller: str, amount: int, cid: str) -> int:
        self._access.require_owner(caller, "invest_underlying")
        _require_positive(amount)
        before = self._yield_balance()
        accrued, interest = accrue(self._state, before)
        # Overflow check on the checkpoint the deposit should produce
        checked_add(before, amount)

        self._collab(self.asset.transfer_from, self.address, caller, self.address, amount)
        try:
            self._collab(self.asset.approve, self.address, self.yield_source.address, amount)
            self._collab(self.yield_source.deposit, self.address, amount, self._referral_code)
        except LedgerError:
            logger.warning(f"deposit into yield source failed; refunding {amount} to {caller}")
            self._collab(self.asset.transfer, self.address, caller, amount)
            raise

        after = self._yield_balance()
        if after < before:
            raise InvariantViolation(f"deposit reduced yield source balance: {before} -> {after}")
        delta = after - before
        if delta < amount:
            self._unwind_short_deposit(caller, delta, after, accrued, interest, cid)
            raise InvariantViolation(f"yield source credited {delta} for a deposit of {amount}")
        rate = accrued.last_exchange_rate
        minted = underlying_to_shares(delta, rate, accrued.scale)
        new_state = replace(
            accrued,
            total_shares=checked_add(accrued.total_shares, minted),
            last_recorded_balance=after,
        )
        self._commit(new_state, "invest_underlying", cid, interest, caller)
        self._emit(cid, Invested(
            ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller,
            amount=amount, shares_minted=minted, exchange_rate=rate, total_shares=new_state.total_shares,
        ))
        self._log("ledger_invested", cid, caller=caller, amount=amount, shares_minted=minted, exchange_rate=rate)
        return minted

    def _redeem(self, caller: str, amount: int, cid: str) -> int:
        self._access.require_owner(caller, "redeem_underlying")
        _require_positive(amount)
        before = self._yield_balance()
        accrued, interest = accrue(self._state, before)
        rate = accrued.last_exchange_rate
        # Both checks run before any funds move
        checked_sub(before, amount)
        checked_sub(accrued.total_shares, underlying_to_shares(amount, rate, accrued.scale))

        self._collab(self.yield_source.withdraw, self.address, amount)
        after = self._yield_balance()
        if after > before:
            raise InvariantViolation(f"withdrawal increased yield source balance: {before} -> {after}")
        delta = before - after
        if delta != amount:
            self._restore_released(delta, after, accrued, "redeem_underlying", cid, interest, caller)
            raise InvariantViolation(f"yield source released {delta} for a withdrawal of {amount}")
        burned = underlying_to_shares(delta, rate, accrued.scale)
        new_state = replace(
            accrued,
            total_shares=checked_sub(accrued.total_shares, burned),
            last_recorded_balance=after,
        )
        try:
            self._collab(self.asset.transfer, self.address, caller, amount)
        except LedgerError:
            logger.warning(f"payout to {caller} failed; returning {amount} to yield source")
            self._redeposit(amount)
            raise
        self._commit(new_state, "redeem_underlying", cid, interest, caller)
        self._emit(cid, Redeemed(
            ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller,
            amount=amount, shares_burned=burned, exchange_rate=rate, total_shares=new_state.total_shares,
        ))
        self._log("ledger_redeemed", cid, caller=caller, amount=amount, shares_burned=burned, exchange_rate=rate)
        return burned

    def _redeem_all(self, caller: str, cid: str) -> Tuple[int, int]:
        self._access.require_owner(caller, "redeem_all")
        before = self._yield_balance()
        accrued, interest = accrue(self._state, before)
        rate = accrued.last_exchange_rate

        if before > 0:
            self._collab(self.yield_source.withdraw, self.address, before)
        after = self._yield_balance()
        if after != 0:
            if after < before:
                self._restore_released(before - after, after, accrued, "redeem_all", cid, interest, caller)
            raise InvariantViolation(f"yield source kept {after} after a full withdrawal of {before}")
        shares_burned = mul_div(before, accrued.scale, rate)
        if shares_burned != accrued.total_shares:
            # Rounding dust or idle-period yield; the computed figure is reported
            self._log(
                "ledger_redeem_all_share_mismatch", cid, level=logging.WARNING,
                computed=shares_burned, total_shares=accrued.total_shares,
            )
        underlying_amount = self._collab(self.asset.balance_of, self.address)
        if underlying_amount > 0:
            try:
                self._collab(self.asset.transfer, self.address, caller, underlying_amount)
            except LedgerError:
                logger.warning(f"payout to {caller} failed; returning {before} to yield source")
                self._redeposit(before)
                raise
        # Rate stays frozen at its last value
        new_state = replace(accrued, total_shares=0, last_recorded_balance=0)
        self._commit(new_state, "redeem_all", cid, interest, caller)
        self._emit(cid, RedeemedAll(
            ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller,
            shares_burned=shares_burned, underlying_amount=underlying_amount, exchange_rate=rate,
        ))
        self._log(
            "ledger_redeemed_all", cid, caller=caller, shares_burned=shares_burned,
            underlying_amount=underlying_amount, exchange_rate=rate,
        )
        return shares_burned, underlying_amount

    def _set_referral_code(self, caller: str, code: int, cid: str) -> None:
        self._access.require_owner(caller, "set_referral_code")
        self._referral_code = self._validate_referral_code(code)
        self._emit(cid, ReferralCodeSet(
            ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller, referral_code=code,
        ))

    def _transfer_ownership(self, caller: str, new_owner: str, cid: str) -> None:
        previous = self._access.transfer_ownership(caller, new_owner)
        self._emit(cid, OwnershipTransferred(
            ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller,
            previous_owner=previous, new_owner=self._access.owner,
        ))

    # ---- helpers ----

    @staticmethod
    def _validate_referral_code(code: int) -> int:
        if isinstance(code, bool) or not isinstance(code, int) or not 0 <= code <= MAX_REFERRAL_CODE:
            raise ConfigurationError(f"referral code must be an int in 0..{MAX_REFERRAL_CODE}, got {code!r}")
        return code

    def _run(self, operation: str, body: Callable[..., Any], *args: Any) -> Any:
        outbox: List[EventEnvelope] = []
        try:
            with self._lock:
                self._sequence += 1
                cid = f"{self.address}:{operation}:{self._sequence}"
                try:
                    result = body(*args, cid)
                except LedgerError as exc:
                    self._report_failure(operation, exc, cid)
                    raise
                finally:
                    outbox = self._take_outbox()
                self.operations.labels(self.address, operation, "ok").inc()
                return result
        finally:
            self._publish(outbox)

    def _collab(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Call a collaborator, mapping foreign exceptions to CollaboratorError."""
        try:
            return fn(*args)
        except LedgerError:
            raise
        except Exception as exc:
            name = getattr(fn, "__qualname__", repr(fn))
            raise CollaboratorError(f"{name} failed: {exc}") from exc

    def _yield_balance(self) -> int:
        return self._collab(self.yield_source.balance_of, self.address)

    def _redeposit(self, amount: int) -> None:
        self._collab(self.asset.approve, self.address, self.yield_source.address, amount)
        self._collab(self.yield_source.deposit, self.address, amount, self._referral_code)

    def _unwind_short_deposit(
        self, caller: str, credited: int, after: int, accrued: LedgerState, interest: int, cid: str
    ) -> None:
        """Hand a short-credited deposit back to ``caller``.

        If the credited amount cannot be withdrawn it stays in the yield
        source, and the checkpoint moves to ``after`` so that principal is
        never accrued as interest.
        """
        if credited == 0:
            return
        try:
            self._collab(self.yield_source.withdraw, self.address, credited)
        except LedgerError as exc:
            logger.warning(f"could not withdraw short-credited deposit of {credited}: {exc}")
            self._commit(replace(accrued, last_recorded_balance=after), "invest_underlying", cid, interest, caller)
            return
        try:
            self._collab(self.asset.transfer, self.address, caller, credited)
        except LedgerError as exc:
            logger.warning(f"refund of {credited} to {caller} failed; pool holds it until redeem_all: {exc}")

    def _restore_released(
        self, released: int, after: int, accrued: LedgerState, operation: str, cid: str, interest: int, caller: str
    ) -> None:
        """Re-deposit what a rejected withdrawal released."""
        if released <= 0:
            return
        try:
            self._redeposit(released)
        except LedgerError as exc:
            logger.warning(f"could not return {released} to yield source; pool holds it until redeem_all: {exc}")
            # Checkpoint the lower balance so later accruals do not see a loss
            self._commit(replace(accrued, last_recorded_balance=after), operation, cid, interest, caller)

    def _commit(self, new_state: LedgerState, operation: str, cid: str, interest: int, caller: str) -> None:
        previous = self._state
        self._state = new_state
        record_state(self.address, new_state.last_exchange_rate, new_state.total_shares, new_state.last_recorded_balance)
        if interest > 0:
            self.interest_accrued.labels(self.address).inc(interest)
            self._emit(cid, InterestAccrued(
                ts=_now_ms(), pool=self.address, asset=self.underlying(), caller=caller,
                interest=interest, previous_rate=previous.last_exchange_rate,
                exchange_rate=new_state.last_exchange_rate, total_shares=previous.total_shares,
            ))

    def _emit(self, cid: str, event: BaseEvent) -> None:
        self._outbox.append(EventEnvelope(correlation_id=cid, sequence=self._sequence, event=event))

    def _take_outbox(self) -> List[EventEnvelope]:
        outbox, self._outbox = self._outbox, []
        return outbox

    def _publish(self, outbox: List[EventEnvelope]) -> None:
        # Runs without the lock held
        for env in outbox:
            try:
                self._publisher(env)
            except Exception:
                # State is already committed; a broken publisher must not undo it
                logger.exception(f"failed to publish {env.event.event_type} for {env.correlation_id}")

    def _log(self, event: str, cid: str, level: int = logging.INFO, **fields: Any) -> None:
        payload = {"event": event, "pool": self.address, "correlation_id": cid}
        payload.update(fields)
        logger.log(level, json.dumps(payload, separators=(",", ":")))

    def _report_failure(self, operation: str, exc: LedgerError, cid: Optional[str]) -> None:
        self.operations.labels(self.address, operation, "error").inc()
        self.violations.labels(self.address, exc.kind).inc()
        payload = {
            "event": "ledger_operation_failed",
            "pool": self.address,
            "operation": operation,
            "kind": exc.kind,
            "detail": str(exc),
            "correlation_id": cid,
        }
        if isinstance(exc, (InvariantViolation, CollaboratorError)):
            logger.error(json.dumps(payload, separators=(",", ":")))
        else:
            logger.warning(json.dumps(payload, separators=(",", ":")))
        if isinstance(exc, InvariantViolation):
            self._emit(cid or f"{self.address}:{operation}", LedgerViolation(
                ts=_now_ms(), pool=self.address, asset=self.underlying(),
                operation=operation, kind=exc.kind, detail=str(exc),
            ))

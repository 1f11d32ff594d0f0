"""Forced withdrawal timelock state machine."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Union

from .actions import CompactActions, PendingTransaction
from .exceptions import ProtocolError, UserRejectedError, ValidationError
from .formatting import format_time_remaining, parse_units
from .models import Balance, LockKey, WithdrawalState, is_address
from .notifications import NetworkSwitcher
from .scheduler import Ticker

LOG = logging.getLogger("compact_client.withdrawal")

# Assumed timelock when a pending lock has no withdrawableAt yet.
DEFAULT_PENDING_SECONDS = 600


def can_execute(status: int, withdrawable_at: int, now: int) -> bool:
    """True once a forced withdrawal may be executed."""
    return status != 0 and withdrawable_at <= now


@dataclass(frozen=True)
class WithdrawalStatus:
    state: WithdrawalState
    can_execute: bool = False
    time_remaining: Optional[str] = None
    label: Optional[str] = None


def withdrawal_status(
    status: int, withdrawable_at: Optional[int], now: int, executed: bool = False
) -> WithdrawalStatus:
    """Derive the timelock state of one lock at ``now``.

    A ``withdrawable_at`` of None (not reported yet) is assumed to be
    :data:`DEFAULT_PENDING_SECONDS` away.
    """
    if status == 0:
        return WithdrawalStatus(WithdrawalState.INACTIVE)
    if executed:
        return WithdrawalStatus(WithdrawalState.EXECUTED, label="Forced Withdrawal Submitted")

    effective = now + DEFAULT_PENDING_SECONDS if withdrawable_at is None else withdrawable_at
    if can_execute(status, effective, now):
        return WithdrawalStatus(
            WithdrawalState.READY,
            can_execute=True,
            time_remaining="Ready",
            label="Forced Withdrawal Ready",
        )
    remaining = format_time_remaining(effective, now)
    return WithdrawalStatus(
        WithdrawalState.PENDING,
        time_remaining=remaining,
        label=f"Forced Withdrawal Ready in {remaining}",
    )


def balance_withdrawal_status(balance: Balance, now: int, executed: bool = False) -> WithdrawalStatus:
    return withdrawal_status(balance.withdrawal_status, balance.withdrawable_at, now, executed)


class WithdrawalTracker:
    """Keeps the timelock display state of every reconciled lock.

    States are recomputed from each new set of balances. While some lock is
    pending, a one second ticker refreshes the countdown; it does not
    change any state on its own beyond PENDING becoming READY.
    """

    def __init__(self, clock: Callable[[], float] = time.time, tick_interval: float = 1.0):
        self.clock = clock
        self._balances: Dict[LockKey, Balance] = {}
        self._statuses: Dict[LockKey, WithdrawalStatus] = {}
        # lock -> allocatable balance when a forced withdrawal was submitted
        self._executed: Dict[LockKey, int] = {}
        # lock -> assumed withdrawableAt while the sources do not report one
        self._assumed: Dict[LockKey, int] = {}
        self._started = False
        self._ticker = Ticker(tick_interval, self._on_tick, name="withdrawal-countdown")

    @property
    def statuses(self) -> Dict[LockKey, WithdrawalStatus]:
        return dict(self._statuses)

    @property
    def has_pending(self) -> bool:
        return any(s.state == WithdrawalState.PENDING for s in self._statuses.values())

    def status(self, chain_id: Union[str, int], lock_id: Union[str, int]) -> WithdrawalStatus:
        return self._statuses.get((int(chain_id), int(lock_id)), WithdrawalStatus(WithdrawalState.INACTIVE))

    def _now(self) -> int:
        return int(self.clock())

    def update_balances(self, balances: Iterable[Balance]) -> Dict[LockKey, WithdrawalStatus]:
        """Recompute every state from freshly polled balances."""
        self._balances = {balance.key: balance for balance in balances}
        self._assumed = {key: at for key, at in self._assumed.items() if key in self._balances}
        for key, submitted_balance in list(self._executed.items()):
            balance = self._balances.get(key)
            if balance is None or balance.withdrawal_status == 0 or balance.allocatable_balance != submitted_balance:
                del self._executed[key]
        self.refresh()
        if self._started and self.has_pending and not self._ticker.running:
            self._ticker.start()
        return self.statuses

    def mark_executed(self, balance: Balance) -> None:
        self._executed[balance.key] = balance.allocatable_balance
        self._balances.setdefault(balance.key, balance)
        self.refresh()

    def refresh(self, now: Optional[int] = None) -> Dict[LockKey, WithdrawalStatus]:
        now = self._now() if now is None else now
        statuses: Dict[LockKey, WithdrawalStatus] = {}
        for key, balance in self._balances.items():
            withdrawable_at = balance.withdrawable_at
            if balance.withdrawal_status != 0 and withdrawable_at is None:
                # pinned on first sight so the countdown advances
                withdrawable_at = self._assumed.setdefault(key, now + DEFAULT_PENDING_SECONDS)
            else:
                self._assumed.pop(key, None)
            statuses[key] = withdrawal_status(balance.withdrawal_status, withdrawable_at, now, key in self._executed)
        self._statuses = statuses
        return self.statuses

    async def _on_tick(self) -> None:
        self.refresh()
        if not self.has_pending:
            await self._ticker.stop()

    def start(self) -> None:
        self._started = True
        if self.has_pending:
            self._ticker.start()

    async def stop(self) -> None:
        self._started = False
        await self._ticker.stop()


class ForcedWithdrawalController:
    """Initiate, cancel and execute forced withdrawals of a lock.

    Each call switches the wallet to the lock's chain first and returns
    None when the switch failed or the holder declined the transaction.
    """

    def __init__(
        self,
        actions: CompactActions,
        network: NetworkSwitcher,
        tracker: Optional[WithdrawalTracker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.actions = actions
        self.network = network
        self.tracker = tracker
        self.clock = clock

    async def initiate(self, balance: Balance) -> Optional[PendingTransaction]:
        """Start the timelock (INACTIVE -> PENDING)."""
        if balance.withdrawal_status != 0:
            raise ProtocolError("Forced withdrawal already initiated for this resource lock")
        if not await self.network.ensure_chain(balance.chain_id):
            return None
        try:
            return await self.actions.enable_forced_withdrawal(balance.lock_id)
        except UserRejectedError:
            return None

    async def reactivate(self, balance: Balance) -> Optional[PendingTransaction]:
        """Cancel a pending or ready forced withdrawal (-> INACTIVE)."""
        if balance.withdrawal_status == 0:
            raise ProtocolError("Resource lock has no forced withdrawal to cancel")
        if not await self.network.ensure_chain(balance.chain_id):
            return None
        try:
            return await self.actions.disable_forced_withdrawal(balance.lock_id)
        except UserRejectedError:
            return None

    async def execute(
        self,
        balance: Balance,
        amount: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> Optional[PendingTransaction]:
        """Withdraw from a lock whose timelock has elapsed.

        Args:
            balance: Reconciled balance of the lock
            amount: Human-readable amount; the full balance when omitted
            recipient: Receiving address; the wallet address when omitted

        Raises:
            ProtocolError: if the timelock has not elapsed or its end is
                not reported yet
            ValidationError: for a bad amount or recipient
        """
        if balance.withdrawable_at is None or not can_execute(
            balance.withdrawal_status, balance.withdrawable_at, int(self.clock())
        ):
            raise ProtocolError("Forced withdrawal is not ready to execute")

        errors: Dict[str, str] = {}
        decimals = balance.decimals
        value = balance.allocatable_balance
        if amount is not None:
            try:
                value = parse_units(amount, decimals)
            except ValueError:
                if "." in amount and len(amount.split(".", 1)[1]) > decimals:
                    errors["amount"] = f"Invalid amount (greater than {decimals} decimals)"
                else:
                    errors["amount"] = "Invalid amount format"
            else:
                if value <= 0:
                    errors["amount"] = "Amount must be greater than zero"
                elif value > balance.allocatable_balance:
                    errors["amount"] = "Amount exceeds available balance"

        target = recipient if recipient is not None else self.actions.wallet.address
        if not is_address(target):
            errors["recipient"] = "Invalid address format"
        if errors:
            raise ValidationError(errors)

        if not await self.network.ensure_chain(balance.chain_id):
            return None
        symbol = balance.token.symbol if balance.token else ""
        try:
            pending = await self.actions.forced_withdrawal(balance.lock_id, target, value, decimals, symbol)
        except UserRejectedError:
            return None
        if self.tracker is not None:
            self.tracker.mark_executed(balance)
        return pending

import asyncio

import pytest

from compact_client.actions import CompactActions
from compact_client.exceptions import ProtocolError, ValidationError
from compact_client.models import Balance, Token, WithdrawalState
from compact_client.notifications import NetworkSwitcher
from compact_client.withdrawal import (
    DEFAULT_PENDING_SECONDS,
    ForcedWithdrawalController,
    WithdrawalTracker,
    can_execute,
    withdrawal_status,
)

from tests.fakes import ADDRESS, LOCK_ID, NOW, RECIPIENT, WalletRejection


def make_balance(status=0, withdrawable_at=None, allocatable=1000, chain_id=1):
    return Balance(
        chain_id=chain_id,
        lock_id=LOCK_ID,
        allocatable_balance=allocatable,
        allocated_balance=0,
        balance_available_to_allocate=allocatable,
        withdrawal_status=status,
        withdrawable_at=withdrawable_at,
        token=Token(token_address="0x" + "0" * 40, name="USD Coin", symbol="USDC", decimals=6),
    )


def test_scenario_c_ready():
    status = withdrawal_status(1, NOW - 1, NOW)
    assert status.state == WithdrawalState.READY
    assert status.can_execute
    assert status.label == "Forced Withdrawal Ready"


def test_scenario_d_pending():
    status = withdrawal_status(1, NOW + 3600, NOW)
    assert status.state == WithdrawalState.PENDING
    assert not status.can_execute
    assert status.time_remaining == "1h 0m 0s"
    assert status.label == "Forced Withdrawal Ready in 1h 0m 0s"


def test_inactive():
    status = withdrawal_status(0, NOW - 100, NOW)
    assert status.state == WithdrawalState.INACTIVE
    assert not status.can_execute
    assert status.label is None


def test_missing_withdrawable_at_counts_as_pending():
    status = withdrawal_status(1, None, NOW)
    assert status.state == WithdrawalState.PENDING
    assert status.time_remaining == "10m 0s"
    assert DEFAULT_PENDING_SECONDS == 600


@pytest.mark.parametrize("withdrawable_at", [0, 5, 300])
def test_reported_timestamp_agrees_with_can_execute(withdrawable_at):
    status = withdrawal_status(1, withdrawable_at, NOW)
    assert status.can_execute == can_execute(1, withdrawable_at, NOW)
    assert status.state == WithdrawalState.READY


def test_assumed_deadline_counts_down():
    clock = {"now": NOW}
    tracker = WithdrawalTracker(clock=lambda: clock["now"])
    tracker.update_balances([make_balance(status=1)])
    assert tracker.status(1, LOCK_ID).time_remaining == "10m 0s"

    clock["now"] = NOW + 60
    tracker.update_balances([make_balance(status=1)])
    assert tracker.status(1, LOCK_ID).time_remaining == "9m 0s"

    clock["now"] = NOW + DEFAULT_PENDING_SECONDS
    tracker.refresh()
    assert tracker.status(1, LOCK_ID).state == WithdrawalState.READY


def test_execute_refused_without_reported_timestamp(controller, wallet):
    with pytest.raises(ProtocolError):
        asyncio.run(controller.execute(make_balance(status=1)))
    assert wallet.calls == []


@pytest.mark.parametrize("status,withdrawable_at", [(0, NOW), (1, NOW), (1, NOW + 3600), (2, NOW - 10)])
def test_can_execute_is_monotonic_in_time(status, withdrawable_at):
    ready = False
    for now in range(NOW - 20, NOW + 4000, 7):
        result = can_execute(status, withdrawable_at, now)
        if ready:
            assert result
        ready = ready or result


def test_tracker_recomputes_from_balances():
    clock = {"now": NOW}
    tracker = WithdrawalTracker(clock=lambda: clock["now"])
    tracker.update_balances([make_balance(status=1, withdrawable_at=NOW + 2)])

    assert tracker.status(1, LOCK_ID).state == WithdrawalState.PENDING
    assert tracker.has_pending

    clock["now"] = NOW + 2
    tracker.refresh()
    assert tracker.status(1, LOCK_ID).state == WithdrawalState.READY
    assert not tracker.has_pending


def test_tracker_executed_until_poll_reports_inactive():
    tracker = WithdrawalTracker(clock=lambda: NOW)
    ready = make_balance(status=1, withdrawable_at=NOW - 1)
    tracker.update_balances([ready])
    tracker.mark_executed(ready)
    assert tracker.status(1, LOCK_ID).state == WithdrawalState.EXECUTED

    tracker.update_balances([ready])
    assert tracker.status(1, LOCK_ID).state == WithdrawalState.EXECUTED

    tracker.update_balances([make_balance(status=0)])
    assert tracker.status(1, LOCK_ID).state == WithdrawalState.INACTIVE


def test_tracker_ticker_runs_only_while_pending():
    clock = {"now": NOW}
    tracker = WithdrawalTracker(clock=lambda: clock["now"], tick_interval=0.01)

    async def scenario():
        tracker.start()
        tracker.update_balances([make_balance(status=1, withdrawable_at=NOW + 1)])
        running_while_pending = tracker._ticker.running
        clock["now"] = NOW + 1
        await asyncio.sleep(0.05)
        state = tracker.status(1, LOCK_ID).state
        running_after = tracker._ticker.running
        await tracker.stop()
        return running_while_pending, state, running_after

    running_while_pending, state, running_after = asyncio.run(scenario())
    assert running_while_pending
    assert state == WithdrawalState.READY
    assert not running_after


@pytest.fixture
def controller(wallet, notifier):
    actions = CompactActions(wallet, notifier)
    network = NetworkSwitcher(wallet, notifier, settle_seconds=0)
    return ForcedWithdrawalController(actions, network, WithdrawalTracker(clock=lambda: NOW), clock=lambda: NOW)


def test_initiate_enables_forced_withdrawal(controller, wallet, notifier):
    async def scenario():
        pending = await controller.initiate(make_balance())
        return await pending.wait()

    receipt = asyncio.run(scenario())
    assert receipt.succeeded
    assert wallet.calls[0].function_name == "enableForcedWithdrawal"
    assert wallet.calls[0].args == (LOCK_ID,)
    assert [n.title for n in notifier.history] == [
        "Initiating Forced Withdrawal",
        "Transaction Submitted",
        "Forced Withdrawal Initiated",
    ]


def test_initiate_refused_when_already_pending(controller, wallet):
    with pytest.raises(ProtocolError):
        asyncio.run(controller.initiate(make_balance(status=1, withdrawable_at=NOW + 10)))
    assert wallet.calls == []


def test_reactivate_requires_active_timelock(controller, wallet):
    with pytest.raises(ProtocolError):
        asyncio.run(controller.reactivate(make_balance()))

    async def scenario():
        pending = await controller.reactivate(make_balance(status=1, withdrawable_at=NOW + 10))
        await pending.wait()

    asyncio.run(scenario())
    assert wallet.calls[0].function_name == "disableForcedWithdrawal"


def test_execute_only_when_ready(controller, wallet):
    with pytest.raises(ProtocolError):
        asyncio.run(controller.execute(make_balance(status=1, withdrawable_at=NOW + 10)))
    assert wallet.calls == []


def test_execute_defaults_to_full_balance_and_own_address(controller, wallet):
    balance = make_balance(status=1, withdrawable_at=NOW - 1)

    async def scenario():
        pending = await controller.execute(balance)
        await pending.wait()

    asyncio.run(scenario())
    call = wallet.calls[0]
    assert call.function_name == "forcedWithdrawal"
    assert call.args == (LOCK_ID, ADDRESS, 1000)
    assert controller.tracker.status(1, LOCK_ID).state == WithdrawalState.EXECUTED


def test_execute_custom_amount(controller, wallet):
    balance = make_balance(status=1, withdrawable_at=NOW - 1)

    async def scenario():
        pending = await controller.execute(balance, amount="0.0005", recipient=RECIPIENT)
        await pending.wait()

    asyncio.run(scenario())
    assert wallet.calls[0].args == (LOCK_ID, RECIPIENT, 500)


@pytest.mark.parametrize("amount,message", [
    ("0", "Amount must be greater than zero"),
    ("0.0000001", "Invalid amount (greater than 6 decimals)"),
    ("0.002", "Amount exceeds available balance"),
    ("abc", "Invalid amount format"),
])
def test_execute_validates_amount(controller, wallet, amount, message):
    balance = make_balance(status=1, withdrawable_at=NOW - 1)
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(controller.execute(balance, amount=amount))
    assert exc_info.value.errors["amount"] == message
    assert wallet.calls == []


def test_execute_validates_recipient(controller):
    balance = make_balance(status=1, withdrawable_at=NOW - 1)
    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(controller.execute(balance, recipient="0x123"))
    assert exc_info.value.errors == {"recipient": "Invalid address format"}


def test_declined_transaction_is_silent(controller, wallet, notifier):
    wallet.write_error = WalletRejection()
    result = asyncio.run(controller.initiate(make_balance()))
    assert result is None
    assert all(n.type != "error" for n in notifier.history)


def test_switches_chain_first(controller, wallet, notifier):
    async def scenario():
        pending = await controller.initiate(make_balance(chain_id=10))
        await pending.wait()

    asyncio.run(scenario())
    assert wallet.switches == [10]
    assert wallet.calls[0].chain_id == 10
    assert notifier.history[0].title == "Switching Network"
    assert notifier.history[1].title == "Network Switched"

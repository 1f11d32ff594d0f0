import asyncio

import pytest

from compact_client.actions import CompactActions
from compact_client.chains import COMPACT_ADDRESS, MAX_UINT256
from compact_client.exceptions import UserRejectedError
from compact_client.notifications import NotificationStage

from tests.fakes import ALLOCATOR_ADDRESS, ADDRESS, TOKEN_ADDRESS, WalletRejection


@pytest.fixture
def actions(wallet, notifier):
    return CompactActions(wallet, notifier)


def test_native_deposit_notification_contract(actions, wallet, notifier):
    async def scenario():
        pending = await actions.deposit_native(ALLOCATOR_ADDRESS, 5 * 10 ** 17)
        return pending, await pending.wait()

    pending, receipt = asyncio.run(scenario())

    call = wallet.calls[0]
    assert call.address == COMPACT_ADDRESS
    assert call.function_name == "deposit"
    assert call.args == (ALLOCATOR_ADDRESS,)
    assert call.value == 5 * 10 ** 17
    assert receipt.succeeded

    stages = [n.stage for n in notifier.history]
    assert stages == [NotificationStage.INITIATED, NotificationStage.SUBMITTED, NotificationStage.CONFIRMED]
    assert notifier.history[0].tx_hash.startswith("pending-")
    assert notifier.history[1].tx_hash == pending.tx_hash
    assert notifier.history[2].message == "Successfully deposited 0.5 ETH"
    assert notifier.history[2].explorer_url == f"https://etherscan.io/tx/{pending.tx_hash}"


def test_token_deposit_and_approval(actions, wallet, notifier):
    wallet.allowance = 10

    async def scenario():
        needs = await actions.needs_approval(TOKEN_ADDRESS, ADDRESS, 1_000_000)
        approval = await actions.approve(TOKEN_ADDRESS, "USDC")
        await approval.wait()
        deposit = await actions.deposit_token(TOKEN_ADDRESS, ALLOCATOR_ADDRESS, 1_500_000, decimals=6, symbol="USDC")
        await deposit.wait()
        return needs

    assert asyncio.run(scenario())
    approve, deposit = wallet.calls
    assert approve.address == TOKEN_ADDRESS
    assert approve.args == (COMPACT_ADDRESS, MAX_UINT256)
    assert wallet.reads[0].args == (ADDRESS, COMPACT_ADDRESS)
    assert deposit.args == (TOKEN_ADDRESS, ALLOCATOR_ADDRESS, 1_500_000)
    assert notifier.history[-1].message == "Successfully deposited 1.5 USDC"


def test_rejection_raises_without_error_notification(actions, wallet, notifier):
    wallet.write_error = WalletRejection()
    with pytest.raises(UserRejectedError):
        asyncio.run(actions.enable_forced_withdrawal(1))
    assert [n.type for n in notifier.history] == ["info"]


def test_failure_is_notified_and_raised(actions, wallet, notifier):
    wallet.write_error = RuntimeError("execution reverted")
    with pytest.raises(RuntimeError):
        asyncio.run(actions.disable_forced_withdrawal(1))
    assert notifier.history[-1].type == "error"
    assert notifier.history[-1].title == "Transaction Failed"


def test_reverted_receipt_is_notified(actions, wallet, notifier):
    wallet.receipt_status = "reverted"

    async def scenario():
        pending = await actions.forced_withdrawal(1, ADDRESS, 10, decimals=0, symbol="TKN")
        return await pending.wait()

    receipt = asyncio.run(scenario())
    assert not receipt.succeeded
    assert notifier.history[-1].title == "Transaction Reverted"

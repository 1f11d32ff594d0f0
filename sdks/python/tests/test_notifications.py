import asyncio

import pytest

from compact_client.exceptions import NetworkSwitchError
from compact_client.notifications import NetworkSwitcher, Notification, Notifier

from tests.fakes import FakeWallet


class ChainNotAdded(Exception):
    code = 4902


def test_subscribe_and_unsubscribe():
    notifier = Notifier()
    seen = []
    unsubscribe = notifier.subscribe(seen.append)

    notifier.info("Hello", "world")
    unsubscribe()
    notifier.error("Bye", "world")

    assert [n.title for n in seen] == ["Hello"]
    assert [n.type for n in notifier.history] == ["info", "error"]


def test_failing_listener_does_not_break_others():
    notifier = Notifier()
    seen = []

    def broken(notification):
        raise RuntimeError("listener bug")

    notifier.subscribe(broken)
    notifier.subscribe(seen.append)
    notifier.success("Done", "ok")

    assert len(seen) == 1


def test_explorer_url_only_for_real_hashes():
    tx_hash = "0x" + "ab" * 32
    assert Notification("success", "t", "m", tx_hash=tx_hash, chain_id=10).explorer_url == (
        f"https://optimistic.etherscan.io/tx/{tx_hash}"
    )
    assert Notification("info", "t", "m", tx_hash="pending-1", chain_id=1).explorer_url is None
    assert Notification("info", "t", "m", tx_hash=tx_hash).explorer_url is None


def test_already_on_chain_needs_no_switch():
    wallet = FakeWallet(chain_id=10)
    notifier = Notifier()
    assert asyncio.run(NetworkSwitcher(wallet, notifier, settle_seconds=0).ensure_chain(10))
    assert wallet.switches == []
    assert notifier.history == []


def test_successful_switch():
    wallet = FakeWallet(chain_id=1)
    notifier = Notifier()
    assert asyncio.run(NetworkSwitcher(wallet, notifier, settle_seconds=0).ensure_chain(8453))
    assert wallet.chain_id == 8453
    assert notifier.history[-1].message == "Successfully switched to Base"


def test_unknown_network():
    wallet = FakeWallet(chain_id=1)
    wallet.switch_error = ChainNotAdded("Unrecognized chain ID")
    notifier = Notifier()
    assert not asyncio.run(NetworkSwitcher(wallet, notifier, settle_seconds=0).ensure_chain(130))
    assert notifier.history[-1].title == "Network Not Found"
    assert notifier.history[-1].message == "Please add this network to your wallet first."


def test_other_switch_failure():
    wallet = FakeWallet(chain_id=1)
    wallet.switch_error = RuntimeError("request already pending")
    notifier = Notifier()
    assert not asyncio.run(NetworkSwitcher(wallet, notifier, settle_seconds=0).ensure_chain(10))
    assert notifier.history[-1].title == "Network Switch Failed"
    assert wallet.chain_id == 1


def test_switch_raises_with_wallet_code():
    wallet = FakeWallet(chain_id=1)
    wallet.switch_error = ChainNotAdded("Unrecognized chain ID")
    with pytest.raises(NetworkSwitchError) as exc_info:
        asyncio.run(NetworkSwitcher(wallet, Notifier(), settle_seconds=0).switch(130))
    assert exc_info.value.code == 4902

import asyncio

import pytest

from compact_client.app import CompactClient
from compact_client.config import ClientConfig
from compact_client.models import ActionKind, ProtocolStage, SessionState, WithdrawalState

from tests.fakes import (
    ADDRESS,
    ALLOCATOR_URL,
    INDEXER_URL,
    LOCK_ID,
    NOW,
    OTHER_ADDRESS,
    SESSION_ID,
    balance_entry,
    indexer_body,
    lock_item,
)


@pytest.fixture
def config():
    return ClientConfig(
        allocator_url=ALLOCATOR_URL,
        indexer_url=INDEXER_URL,
        network_switch_settle_seconds=0,
        max_expiry_seconds=3600,
        default_expiry_seconds=300,
        session_revalidate_interval=30.0,
    )


@pytest.fixture
def client(config, wallet, notifier, stub, indexer_stub):
    return CompactClient(
        config,
        wallet,
        notifier=notifier,
        clock=lambda: NOW,
        allocator_transport=stub.transport(),
        indexer_transport=indexer_stub.transport(),
    )


def test_components_follow_config(client, config):
    assert client.allocator.base_url == ALLOCATOR_URL
    assert client.indexer.url == INDEXER_URL
    assert client.network.settle_seconds == 0
    assert client.sessions.store.path is None
    assert client.sessions.address == ADDRESS


def test_snapshots_drive_withdrawal_countdown(client, stub, indexer_stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    indexer_stub.add("POST", "/graphql", json=indexer_body(lock_item(withdrawal_status=1, withdrawable_at=NOW + 90)))

    async def scenario():
        client.sessions.store.set(ADDRESS, SESSION_ID)
        state = await client.sessions.validate()
        await client.reconciler.poll_indexer()
        await client.reconciler.poll()
        await client.close()
        return state

    assert asyncio.run(scenario()) == SessionState.AUTHENTICATED
    status = client.tracker.status(1, LOCK_ID)
    assert status.state == WithdrawalState.PENDING
    assert status.time_remaining == "1m 30s"


def test_address_change_drops_previous_view(client, stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})

    async def scenario():
        client.sessions.store.set(ADDRESS, SESSION_ID)
        await client.sessions.validate()
        await client.reconciler.poll()
        before = len(client.balances)
        await client.set_address(OTHER_ADDRESS)
        await client.close()
        return before

    assert asyncio.run(scenario()) == 1
    assert client.balances == ()
    assert client.tracker.statuses == {}
    assert client.sessions.state == SessionState.ANONYMOUS
    assert client.sessions.address == OTHER_ADDRESS


def test_allocation_engine_uses_config_limits(client, stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry(allocatable=1000, allocated=400)]})

    async def scenario():
        client.sessions.store.set(ADDRESS, SESSION_ID)
        await client.sessions.validate()
        await client.reconciler.poll()
        await client.close()

    asyncio.run(scenario())
    engine = client.allocation_engine("withdrawal", client.balances[0])

    assert engine.kind == ActionKind.WITHDRAWAL
    assert engine.stage == ProtocolStage.IDLE
    assert engine.context.lock_id == LOCK_ID
    assert engine.context.available_to_allocate == 600
    assert engine.max_expiry_seconds == 3600
    assert engine.form.expires == NOW + 300

import asyncio

from compact_client.balances import BalanceReconciler, reconcile_balances
from compact_client.models import Balance, IndexedLockBalance, SessionState

from tests.fakes import (
    ADDRESS,
    LOCK_ID,
    NOW,
    SESSION_ID,
    balance_entry,
    indexer_body,
    lock_item,
)


def _balances(*entries):
    return [Balance.from_dict(e) for e in entries]


def _locks(*items):
    return [IndexedLockBalance.from_dict(i) for i in items]


def test_reconcile_overwrites_withdrawal_fields_from_indexer():
    entries = _balances(balance_entry(withdrawal_status=0, withdrawable_at=0))
    locks = _locks(lock_item(withdrawal_status=1, withdrawable_at=NOW + 60, decimals=6, symbol="USDC"))

    result = reconcile_balances(entries, locks)

    (balance,) = result.balances
    assert result.changed
    assert balance.withdrawal_status == 1
    assert balance.withdrawable_at == NOW + 60
    assert balance.token.symbol == "USDC"
    assert balance.resource_lock.reset_period == 600
    assert balance.formatted_available_balance == "0.0006"


def test_reconcile_matches_on_chain_and_lock():
    entries = _balances(balance_entry(chain_id=10))
    locks = _locks(lock_item(chain_id=1, withdrawal_status=1, withdrawable_at=NOW))

    (balance,) = reconcile_balances(entries, locks).balances

    assert balance.token is None
    assert balance.withdrawal_status == 0
    assert balance.formatted_allocatable_balance is None


def test_reconcile_is_idempotent():
    entries = _balances(balance_entry(), balance_entry(chain_id=10))
    locks = _locks(lock_item(), lock_item(chain_id=10))

    first = reconcile_balances(entries, locks)
    second = reconcile_balances(_balances(balance_entry(), balance_entry(chain_id=10)), locks, first.balances)

    assert not second.changed
    assert second.balances is first.balances


def test_reconcile_reuses_unchanged_entries():
    locks = _locks(lock_item(), lock_item(chain_id=10))
    first = reconcile_balances(_balances(balance_entry(), balance_entry(chain_id=10)), locks)
    second = reconcile_balances(
        _balances(balance_entry(), balance_entry(chain_id=10, allocated=500)), locks, first.balances
    )

    assert second.changed
    assert second.balances[0] is first.balances[0]
    assert second.balances[1] is not first.balances[1]
    assert second.balances[1].allocated_balance == 500


def test_reconcile_detects_removed_lock():
    first = reconcile_balances(_balances(balance_entry(), balance_entry(chain_id=10)), None)
    second = reconcile_balances(_balances(balance_entry()), None, first.balances)
    assert second.changed
    assert len(second.balances) == 1


def test_scenario_a_available_balance(sessions, allocator, indexer, stub, indexer_stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry(allocatable=1000, allocated=400)]})
    indexer_stub.add("POST", "/graphql", json=indexer_body(lock_item()))
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    async def scenario():
        await sessions.validate()
        await reconciler.poll_indexer()
        return await reconciler.poll()

    snapshot = asyncio.run(scenario())
    (balance,) = snapshot.balances
    assert balance.balance_available_to_allocate == 600
    assert 0 <= balance.balance_available_to_allocate <= balance.allocatable_balance
    assert snapshot.error is None
    assert snapshot.find(1, LOCK_ID) is balance


def test_poll_without_session_is_empty(sessions, allocator, indexer, stub, store):
    store.remove(ADDRESS)
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    snapshot = asyncio.run(reconciler.poll())

    assert snapshot.balances == ()
    assert snapshot.error is None
    assert stub.calls("GET", "/balances") == []


def test_failed_fetch_keeps_last_balances(sessions, allocator, indexer, stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    async def scenario():
        await sessions.validate()
        good = await reconciler.poll()
        stub.add("GET", "/balances", status=500, json={"error": "Failed to fetch balances."})
        bad = await reconciler.poll()
        return good, bad

    good, bad = asyncio.run(scenario())
    assert bad.error == "Failed to fetch balances."
    assert bad.balances is good.balances
    assert not bad.changed


def test_indexer_failure_surfaces_error_and_keeps_enrichment(sessions, allocator, indexer, stub, indexer_stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    indexer_stub.add("POST", "/graphql", json=indexer_body(lock_item(withdrawal_status=1, withdrawable_at=NOW)))
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    async def scenario():
        await sessions.validate()
        await reconciler.poll_indexer()
        await reconciler.poll()
        indexer_stub.add("POST", "/graphql", status=500, json={})
        await reconciler.poll_indexer()
        return await reconciler.poll()

    snapshot = asyncio.run(scenario())
    assert snapshot.error == "Network response was not ok"
    assert snapshot.balances[0].withdrawal_status == 1


def test_unauthorized_balances_tear_down_session(sessions, allocator, indexer, stub, store):
    stub.add("GET", "/balances", status=401, json={"error": "Invalid session"})
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    async def scenario():
        await sessions.validate()
        return await reconciler.poll()

    snapshot = asyncio.run(scenario())
    assert snapshot.error == "Invalid session"
    assert sessions.state == SessionState.ANONYMOUS
    assert store.get(ADDRESS) is None


class GatedAllocator:
    """Allocator whose responses are released by the test."""

    def __init__(self):
        self.pending = []

    async def get_balances(self, session_id):
        gate = asyncio.Event()
        slot = {"gate": gate, "result": None}
        self.pending.append(slot)
        await gate.wait()
        return slot["result"]

    def release(self, index, balances):
        slot = self.pending[index]
        slot["result"] = balances
        slot["gate"].set()


def test_stale_response_is_discarded(sessions, indexer):
    gated = GatedAllocator()
    reconciler = BalanceReconciler(gated, indexer, sessions)

    async def scenario():
        await sessions.validate()
        slow = asyncio.create_task(reconciler.poll())
        fast = asyncio.create_task(reconciler.poll())
        await asyncio.sleep(0)
        gated.release(1, _balances(balance_entry(allocated=100)))
        await fast
        gated.release(0, _balances(balance_entry(allocated=900)))
        await slow

    asyncio.run(scenario())
    assert reconciler.balances[0].allocated_balance == 100


def test_results_after_stop_are_dropped(sessions, indexer):
    gated = GatedAllocator()
    reconciler = BalanceReconciler(gated, indexer, sessions)

    async def scenario():
        await sessions.validate()
        inflight = asyncio.create_task(reconciler.poll())
        await asyncio.sleep(0)
        await reconciler.stop()
        gated.release(0, _balances(balance_entry()))
        await inflight

    asyncio.run(scenario())
    assert reconciler.balances == ()


def test_listeners_only_see_changes(sessions, allocator, indexer, stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    reconciler = BalanceReconciler(allocator, indexer, sessions)
    seen = []
    reconciler.subscribe(seen.append)

    async def scenario():
        await sessions.validate()
        for _ in range(3):
            await reconciler.poll()

    asyncio.run(scenario())
    assert len(seen) == 1
    assert seen[0].changed


def test_tickers_poll_both_sources(sessions, allocator, indexer, stub, indexer_stub):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    indexer_stub.add("POST", "/graphql", json=indexer_body(lock_item()))
    reconciler = BalanceReconciler(allocator, indexer, sessions, balance_interval=0.01, indexer_interval=0.0101)

    async def scenario():
        await sessions.validate()
        reconciler.start()
        await asyncio.sleep(0.05)
        await reconciler.stop()

    asyncio.run(scenario())
    assert len(stub.calls("GET", "/balances")) >= 2
    assert len(indexer_stub.calls("POST", "/graphql")) >= 2
    assert reconciler.balances[0].token is not None


def test_transient_validation_failure_keeps_polling(sessions, allocator, indexer, stub, store):
    stub.add("GET", "/balances", json={"balances": [balance_entry()]})
    reconciler = BalanceReconciler(allocator, indexer, sessions)

    async def scenario():
        await sessions.validate()
        await reconciler.poll()
        stub.add("GET", "/session", status=500, json={"error": "Internal server error"})
        state = await sessions.validate()
        return state, await reconciler.poll()

    state, snapshot = asyncio.run(scenario())
    assert state == SessionState.UNKNOWN
    assert len(snapshot.balances) == 1
    assert snapshot.error is None
    requests = stub.calls("GET", "/balances")
    assert len(requests) == 2
    assert requests[-1].headers["x-session-id"] == SESSION_ID
    assert store.get(ADDRESS) == SESSION_ID

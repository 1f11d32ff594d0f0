"""Balance reconciliation between the allocator feed and the indexer."""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .client import AsyncAllocatorClient
from .exceptions import AuthenticationError, CompactClientError
from .indexer import IndexerClient
from .models import Balance, IndexedLockBalance, LockKey
from .scheduler import Ticker
from .session import SessionManager

LOG = logging.getLogger("compact_client.balances")


@dataclass(frozen=True)
class ReconcileResult:
    balances: Tuple[Balance, ...]
    changed: bool


@dataclass(frozen=True)
class BalanceSnapshot:
    """What consumers of the reconciler see after a poll."""
    balances: Tuple[Balance, ...] = ()
    error: Optional[str] = None
    changed: bool = False

    def find(self, chain_id: Union[str, int], lock_id: Union[str, int]) -> Optional[Balance]:
        key = (int(chain_id), int(lock_id))
        for balance in self.balances:
            if balance.key == key:
                return balance
        return None


def _enrich(entry: Balance, indexed: Optional[IndexedLockBalance]) -> Balance:
    if indexed is None:
        return entry
    return replace(
        entry,
        withdrawal_status=indexed.withdrawal_status,
        withdrawable_at=indexed.withdrawable_at,
        token=indexed.resource_lock.token,
        resource_lock=indexed.resource_lock,
    )


def _same(previous: Balance, current: Balance) -> bool:
    return (
        previous.render_values() == current.render_values()
        and (previous.token is None) == (current.token is None)
    )


def reconcile_balances(
    entries: Sequence[Balance],
    locks: Optional[Sequence[IndexedLockBalance]],
    previous: Tuple[Balance, ...] = (),
) -> ReconcileResult:
    """Merge allocator balances with indexer lock records.

    Entries are matched to indexer records by ``(chain_id, lock_id)``; the
    indexer wins for the withdrawal fields and contributes token and lock
    metadata. Entries whose rendered values did not change keep their
    previous object, and when nothing changed ``previous`` itself is
    returned.
    """
    indexed: Dict[LockKey, IndexedLockBalance] = {lock.key: lock for lock in locks or ()}
    by_key: Dict[LockKey, Balance] = {balance.key: balance for balance in previous}

    merged: List[Balance] = []
    for entry in entries:
        current = _enrich(entry, indexed.get(entry.key))
        prior = by_key.get(current.key)
        merged.append(prior if prior is not None and _same(prior, current) else current)

    changed = len(merged) != len(previous) or any(a is not b for a, b in zip(merged, previous))
    if not changed:
        return ReconcileResult(previous, False)
    return ReconcileResult(tuple(merged), True)


SnapshotListener = Callable[[BalanceSnapshot], None]


class BalanceReconciler:
    """Polls both balance sources and keeps the reconciled view.

    The allocator feed and the indexer are polled on independent tickers.
    Every fetch is stamped with a per-source sequence number so a slow
    response never overwrites a newer one, and results arriving after
    :meth:`stop` or :meth:`reset` are dropped.
    """

    def __init__(
        self,
        allocator: AsyncAllocatorClient,
        indexer: IndexerClient,
        sessions: SessionManager,
        balance_interval: float = 1.0,
        indexer_interval: float = 1.01,
    ):
        self.allocator = allocator
        self.indexer = indexer
        self.sessions = sessions
        self._balances: Tuple[Balance, ...] = ()
        self._entries: Optional[List[Balance]] = None
        self._locks: Optional[List[IndexedLockBalance]] = None
        self._error: Optional[str] = None
        self._indexer_error: Optional[str] = None
        self._generation = 0
        self._issued = {"balances": 0, "indexer": 0}
        self._applied = {"balances": 0, "indexer": 0}
        self._listeners: List[SnapshotListener] = []
        self._balance_ticker = Ticker(balance_interval, self.poll, name="balances")
        self._indexer_ticker = Ticker(indexer_interval, self.poll_indexer, name="indexer")

    @property
    def balances(self) -> Tuple[Balance, ...]:
        return self._balances

    @property
    def error(self) -> Optional[str]:
        return self._error or self._indexer_error

    def snapshot(self, changed: bool = False) -> BalanceSnapshot:
        return BalanceSnapshot(balances=self._balances, error=self.error, changed=changed)

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Call ``listener`` with every snapshot whose balances changed."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _next_seq(self, source: str) -> int:
        self._issued[source] += 1
        return self._issued[source]

    def _superseded(self, source: str, generation: int, seq: int) -> bool:
        if generation != self._generation:
            LOG.debug("dropping %s response #%s from a stopped poller", source, seq)
            return True
        if seq < self._applied[source]:
            LOG.debug("dropping stale %s response #%s", source, seq)
            return True
        self._applied[source] = seq
        return False

    def _publish(self) -> BalanceSnapshot:
        if self._entries is None:
            return self.snapshot()
        result = reconcile_balances(self._entries, self._locks, self._balances)
        self._balances = result.balances
        snapshot = self.snapshot(result.changed)
        if result.changed:
            LOG.debug("balances changed (%d locks)", len(result.balances))
            for listener in list(self._listeners):
                listener(snapshot)
        return snapshot

    async def poll(self) -> BalanceSnapshot:
        """Fetch ``/balances`` and reconcile with the latest indexer data.

        Keeps polling with the stored session id while its validity is
        unknown, so a transient validation failure does not blank the view.
        """
        session_id = self.sessions.persisted_session_id
        if not session_id:
            changed = bool(self._balances)
            self._balances = ()
            self._entries = None
            self._error = None
            return self.snapshot(changed)

        generation = self._generation
        seq = self._next_seq("balances")
        try:
            entries = await self.allocator.get_balances(session_id)
        except AuthenticationError as exc:
            if self._superseded("balances", generation, seq):
                return self.snapshot()
            self._error = str(exc)
            LOG.info("balances rejected session: %s", exc)
            self.sessions.invalidate(session_id)
            return self.snapshot()
        except CompactClientError as exc:
            if self._superseded("balances", generation, seq):
                return self.snapshot()
            self._error = str(exc)
            LOG.warning("failed to fetch balances: %s", exc)
            return self.snapshot()

        if self._superseded("balances", generation, seq):
            return self.snapshot()
        self._entries = entries
        self._error = None
        return self._publish()

    async def poll_indexer(self) -> BalanceSnapshot:
        """Refresh the indexer's resource locks for the current address."""
        address = self.sessions.address
        if not address:
            self._locks = None
            self._indexer_error = None
            return self.snapshot()

        generation = self._generation
        seq = self._next_seq("indexer")
        try:
            locks = await self.indexer.fetch_resource_locks(address)
        except CompactClientError as exc:
            if self._superseded("indexer", generation, seq):
                return self.snapshot()
            self._indexer_error = str(exc)
            LOG.warning("failed to fetch resource locks: %s", exc)
            return self.snapshot()

        if self._superseded("indexer", generation, seq):
            return self.snapshot()
        self._locks = locks
        self._indexer_error = None
        return self._publish()

    def reset(self) -> None:
        """Forget everything, e.g. after the wallet address changed."""
        self._generation += 1
        self._balances = ()
        self._entries = None
        self._locks = None
        self._error = None
        self._indexer_error = None

    def start(self) -> None:
        self._balance_ticker.start()
        self._indexer_ticker.start()

    async def stop(self) -> None:
        self._generation += 1
        await self._balance_ticker.stop()
        await self._indexer_ticker.stop()

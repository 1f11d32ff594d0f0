"""Wiring of every component from a :class:`ClientConfig`."""

import logging
import time
from typing import Callable, Optional, Union

import httpx

from .actions import CompactActions
from .allocation import AllocationContext, AllocationEngine
from .balances import BalanceReconciler, BalanceSnapshot
from .cache import QueryCache
from .client import AsyncAllocatorClient
from .config import ClientConfig
from .indexer import IndexerClient
from .models import ActionKind, Balance
from .notifications import NetworkSwitcher, Notifier
from .session import SessionManager
from .store import SessionStore
from .wallet import Wallet
from .withdrawal import ForcedWithdrawalController, WithdrawalTracker

LOG = logging.getLogger("compact_client.app")


class CompactClient:
    """One wallet's view of The Compact.

    Owns the session, the reconciled balances and the withdrawal countdown,
    and hands out allocation engines bound to a reconciled balance.
    """

    def __init__(
        self,
        config: ClientConfig,
        wallet: Wallet,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
        allocator_transport: Optional[httpx.AsyncBaseTransport] = None,
        indexer_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.wallet = wallet
        self.clock = clock
        self.notifier = notifier if notifier is not None else Notifier()

        self.allocator = AsyncAllocatorClient(
            config.allocator_url, timeout=config.request_timeout, transport=allocator_transport
        )
        self.indexer = IndexerClient(
            config.indexer_url,
            cache=QueryCache(max_entries=config.query_cache_max_entries),
            timeout=config.request_timeout,
            transport=indexer_transport,
        )
        self.sessions = SessionManager(
            self.allocator,
            wallet,
            store=SessionStore(config.session_store_path_abs),
            notifier=self.notifier,
            clock=clock,
            revalidate_interval=config.session_revalidate_interval,
        )
        self.reconciler = BalanceReconciler(
            self.allocator,
            self.indexer,
            self.sessions,
            balance_interval=config.balance_poll_interval,
            indexer_interval=config.indexer_poll_interval,
        )
        self.tracker = WithdrawalTracker(clock=clock, tick_interval=config.withdrawal_tick_interval)
        self.network = NetworkSwitcher(wallet, self.notifier, settle_seconds=config.network_switch_settle_seconds)
        self.actions = CompactActions(wallet, self.notifier)
        self.withdrawals = ForcedWithdrawalController(self.actions, self.network, self.tracker, clock=clock)

        self.reconciler.subscribe(self._on_snapshot)

    @property
    def balances(self):
        return self.reconciler.balances

    def _on_snapshot(self, snapshot: BalanceSnapshot) -> None:
        self.tracker.update_balances(snapshot.balances)

    def allocation_engine(self, kind: Union[ActionKind, str], balance: Balance) -> AllocationEngine:
        """Build an engine for an allocated transfer or withdrawal from ``balance``."""
        return AllocationEngine(
            ActionKind(kind),
            AllocationContext.from_balance(balance),
            self.allocator,
            self.sessions,
            self.wallet,
            self.actions,
            self.network,
            self.notifier,
            clock=self.clock,
            max_expiry_seconds=self.config.max_expiry_seconds,
            default_expiry_seconds=self.config.default_expiry_seconds,
        )

    async def set_address(self, address: Optional[str]) -> None:
        """Switch to another wallet address, dropping everything of the old one."""
        LOG.info("wallet address changed to %s", address)
        self.reconciler.reset()
        self.tracker.update_balances(())
        await self.sessions.set_address(address)

    async def start(self) -> None:
        await self.sessions.validate()
        self.sessions.start()
        self.reconciler.start()
        self.tracker.start()

    async def stop(self) -> None:
        await self.reconciler.stop()
        await self.tracker.stop()
        await self.sessions.stop()
        await self.actions.drain()

    async def close(self) -> None:
        await self.stop()
        await self.allocator.close()
        await self.indexer.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

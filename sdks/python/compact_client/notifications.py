"""User-visible notifications and the chain-switch precondition."""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from .chains import get_block_explorer_tx_url, get_chain_name
from .exceptions import NetworkSwitchError
from .wallet import UNRECOGNIZED_CHAIN_CODE, Wallet

LOG = logging.getLogger("compact_client.notifications")


class NotificationStage(str, Enum):
    """Stage of a transaction a notification belongs to."""
    INITIATED = "initiated"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class Notification:
    """A user-visible status message.

    Notifications that share ``tx_hash`` describe the same transaction; the
    temporary ``pending-<ms>`` id links the initiated stage to the later
    ones before a real hash exists.
    """
    type: str
    title: str
    message: str
    stage: Optional[NotificationStage] = None
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    auto_hide: bool = True

    @property
    def explorer_url(self) -> Optional[str]:
        if not self.tx_hash or self.chain_id is None or not self.tx_hash.startswith("0x"):
            return None
        return get_block_explorer_tx_url(self.chain_id, self.tx_hash)


Listener = Callable[[Notification], None]


def temporary_tx_id(prefix: str = "pending") -> str:
    return f"{prefix}-{int(time.time() * 1000)}"


class Notifier:
    """Fan-out of notifications to subscribed listeners."""

    def __init__(self):
        self._listeners: List[Listener] = []
        self.history: List[Notification] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, notification: Notification) -> None:
        level = logging.WARNING if notification.type == "error" else logging.INFO
        LOG.log(level, "%s: %s", notification.title, notification.message)
        self.history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as exc:
                LOG.exception("notification listener failed: %s", exc)

    def info(self, title: str, message: str, **kwargs) -> None:
        self.notify(Notification(type="info", title=title, message=message, **kwargs))

    def success(self, title: str, message: str, **kwargs) -> None:
        self.notify(Notification(type="success", title=title, message=message, **kwargs))

    def error(self, title: str, message: str, **kwargs) -> None:
        self.notify(Notification(type="error", title=title, message=message, **kwargs))


class NetworkSwitcher:
    """Make sure the wallet is on the right chain before a submission."""

    def __init__(self, wallet: Wallet, notifier: Notifier, settle_seconds: float = 1.0):
        self.wallet = wallet
        self.notifier = notifier
        self.settle_seconds = settle_seconds

    async def switch(self, target_chain_id: int) -> None:
        """Ask the wallet to switch chains, without notifying.

        Raises:
            NetworkSwitchError: carrying the wallet's error code
        """
        try:
            await self.wallet.switch_chain(int(target_chain_id))
        except Exception as exc:
            raise NetworkSwitchError(str(exc), code=getattr(exc, "code", None)) from exc
        if self.settle_seconds > 0:
            await asyncio.sleep(self.settle_seconds)

    async def ensure_chain(self, target_chain_id: int) -> bool:
        """Switch the wallet to ``target_chain_id`` if needed.

        Returns:
            True when the wallet is on the target chain, False when the
            switch failed (the failure has been notified)
        """
        target = int(target_chain_id)
        if self.wallet.chain_id == target:
            return True

        temp_id = temporary_tx_id("network-switch")
        self.notifier.info(
            "Switching Network",
            "Please confirm the network switch in your wallet...",
            stage=NotificationStage.INITIATED,
            tx_hash=temp_id,
            chain_id=target,
            auto_hide=False,
        )
        try:
            await self.switch(target)
        except NetworkSwitchError as exc:
            if exc.code == UNRECOGNIZED_CHAIN_CODE:
                self.notifier.error(
                    "Network Not Found",
                    "Please add this network to your wallet first.",
                    stage=NotificationStage.CONFIRMED,
                    tx_hash=temp_id,
                    chain_id=target,
                )
            else:
                LOG.warning("error switching network to %s: %s", target, exc)
                self.notifier.error(
                    "Network Switch Failed",
                    str(exc) or "Failed to switch network. Please switch manually.",
                    stage=NotificationStage.CONFIRMED,
                    tx_hash=temp_id,
                    chain_id=target,
                )
            return False

        self.notifier.success(
            "Network Switched",
            f"Successfully switched to {get_chain_name(target)}",
            stage=NotificationStage.CONFIRMED,
            tx_hash=temp_id,
            chain_id=target,
        )
        return True

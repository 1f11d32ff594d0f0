"""On-chain calls against The Compact and ERC-20 tokens."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Set

from .chains import COMPACT_ADDRESS, MAX_UINT256
from .exceptions import UserRejectedError
from .formatting import format_units
from .models import AllocationCertificate, ActionKind, TransactionReceipt
from .notifications import NotificationStage, Notifier, temporary_tx_id
from .wallet import ContractCall, Wallet, is_user_rejection

LOG = logging.getLogger("compact_client.actions")


@dataclass
class PendingTransaction:
    """A submitted transaction whose receipt is awaited in the background.

    ``confirmation`` resolves to the receipt, or None when waiting for it
    failed; it never raises.
    """
    tx_hash: str
    chain_id: int
    confirmation: "asyncio.Task[Optional[TransactionReceipt]]"

    async def wait(self) -> Optional[TransactionReceipt]:
        return await self.confirmation


class CompactActions:
    """Submit contract calls with the initiated/submitted/confirmed contract.

    Every call notifies ``initiated`` before the wallet prompt,
    ``submitted`` as soon as a hash is known and ``confirmed`` once the
    receipt reports success. A declined prompt raises
    :class:`UserRejectedError` without any error notification.
    """

    def __init__(self, wallet: Wallet, notifier: Notifier, compact_address: str = COMPACT_ADDRESS):
        self.wallet = wallet
        self.notifier = notifier
        self.compact_address = compact_address
        self._watchers: Set[asyncio.Task] = set()

    async def _submit(
        self,
        call: ContractCall,
        initiated_title: str,
        confirmed_title: str,
        confirmed_message: str,
        initiated_message: str = "Please confirm the transaction in your wallet...",
        submitted_title: str = "Transaction Submitted",
    ) -> PendingTransaction:
        chain_id = self.wallet.chain_id
        temp_id = temporary_tx_id()
        self.notifier.info(
            initiated_title,
            initiated_message,
            stage=NotificationStage.INITIATED,
            tx_hash=temp_id,
            chain_id=chain_id,
            auto_hide=False,
        )

        try:
            tx_hash = await self.wallet.write_contract(call)
        except Exception as exc:
            if is_user_rejection(exc):
                LOG.info("%s declined in wallet", call.function_name)
                if isinstance(exc, UserRejectedError):
                    raise
                raise UserRejectedError(str(exc)) from exc
            self.notifier.error("Transaction Failed", str(exc), chain_id=chain_id)
            raise

        self.notifier.success(
            submitted_title,
            "Waiting for confirmation...",
            stage=NotificationStage.SUBMITTED,
            tx_hash=tx_hash,
            chain_id=chain_id,
        )

        task = asyncio.get_running_loop().create_task(
            self._await_confirmation(tx_hash, chain_id, confirmed_title, confirmed_message)
        )
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return PendingTransaction(tx_hash=tx_hash, chain_id=chain_id, confirmation=task)

    async def _await_confirmation(
        self, tx_hash: str, chain_id: int, title: str, message: str
    ) -> Optional[TransactionReceipt]:
        try:
            receipt = await self.wallet.wait_for_transaction_receipt(tx_hash)
        except Exception as exc:
            LOG.warning("failed waiting for receipt of %s: %s", tx_hash, exc)
            self.notifier.error(
                "Confirmation Unknown",
                f"Could not confirm transaction: {exc}",
                tx_hash=tx_hash,
                chain_id=chain_id,
            )
            return None

        if receipt.succeeded:
            self.notifier.success(
                title,
                message,
                stage=NotificationStage.CONFIRMED,
                tx_hash=tx_hash,
                chain_id=chain_id,
                auto_hide=False,
            )
        else:
            self.notifier.error(
                "Transaction Reverted",
                "The transaction was mined but did not succeed.",
                stage=NotificationStage.CONFIRMED,
                tx_hash=tx_hash,
                chain_id=chain_id,
            )
        return receipt

    async def drain(self) -> None:
        """Wait for every receipt still being watched."""
        if self._watchers:
            await asyncio.gather(*list(self._watchers), return_exceptions=True)

    # Deposits

    async def deposit_native(self, allocator: str, value: int, display_value: Optional[str] = None) -> PendingTransaction:
        """Deposit the native token into a resource lock."""
        shown = display_value or format_units(value, 18)
        return await self._submit(
            ContractCall(self.compact_address, "deposit", (allocator,), value=value, chain_id=self.wallet.chain_id),
            "Initiating Deposit",
            "Deposit Confirmed",
            f"Successfully deposited {shown} ETH",
        )

    async def deposit_token(
        self, token: str, allocator: str, amount: int, decimals: int = 18, symbol: str = ""
    ) -> PendingTransaction:
        """Deposit an ERC-20 token into a resource lock."""
        return await self._submit(
            ContractCall(self.compact_address, "deposit", (token, allocator, amount), chain_id=self.wallet.chain_id),
            "Initiating Deposit",
            "Deposit Confirmed",
            f"Successfully deposited {format_units(amount, decimals)} {symbol}".rstrip(),
        )

    async def token_allowance(self, token: str, owner: str) -> int:
        """ERC-20 allowance granted by ``owner`` to The Compact."""
        result = await self.wallet.read_contract(
            ContractCall(token, "allowance", (owner, self.compact_address), chain_id=self.wallet.chain_id)
        )
        return int(result)

    async def needs_approval(self, token: str, owner: str, amount: int) -> bool:
        return await self.token_allowance(token, owner) < amount

    async def approve(self, token: str, symbol: str = "", amount: int = MAX_UINT256) -> PendingTransaction:
        """Approve The Compact to pull ``token`` (unlimited by default)."""
        return await self._submit(
            ContractCall(token, "approve", (self.compact_address, amount), chain_id=self.wallet.chain_id),
            "Initiating Approval",
            "Approval Confirmed",
            f"Successfully approved {symbol or 'token'} for The Compact",
            submitted_title="Approval Submitted",
        )

    # Forced withdrawal

    async def enable_forced_withdrawal(self, lock_id: int) -> PendingTransaction:
        return await self._submit(
            ContractCall(self.compact_address, "enableForcedWithdrawal", (lock_id,), chain_id=self.wallet.chain_id),
            "Initiating Forced Withdrawal",
            "Forced Withdrawal Initiated",
            "The timelock period has started",
        )

    async def disable_forced_withdrawal(self, lock_id: int) -> PendingTransaction:
        return await self._submit(
            ContractCall(self.compact_address, "disableForcedWithdrawal", (lock_id,), chain_id=self.wallet.chain_id),
            "Initiating Reactivation",
            "Resource Lock Reactivated",
            "Your resource lock has been reactivated",
        )

    async def forced_withdrawal(
        self, lock_id: int, recipient: str, amount: int, decimals: int = 18, symbol: str = ""
    ) -> PendingTransaction:
        shown = f"{format_units(amount, decimals)} {symbol}".rstrip()
        return await self._submit(
            ContractCall(
                self.compact_address, "forcedWithdrawal", (lock_id, recipient, amount), chain_id=self.wallet.chain_id
            ),
            f"Initiating Forced Withdrawal of {shown}",
            "Withdrawal Confirmed",
            f"Successfully withdrew {shown}",
        )

    # Allocated actions

    async def has_consumed_allocator_nonce(self, nonce: int, allocator: str, chain_id: Optional[int] = None) -> bool:
        """Whether ``allocator`` has already consumed ``nonce`` on-chain."""
        result = await self.wallet.read_contract(
            ContractCall(
                self.compact_address,
                "hasConsumedAllocatorNonce",
                (nonce, allocator),
                chain_id=self.wallet.chain_id if chain_id is None else chain_id,
            )
        )
        return bool(result)

    async def submit_allocated(
        self, certificate: AllocationCertificate, decimals: int = 18, symbol: str = "ETH"
    ) -> PendingTransaction:
        """Submit an allocated transfer or withdrawal."""
        is_withdrawal = certificate.kind == ActionKind.WITHDRAWAL
        function_name = "allocatedWithdrawal" if is_withdrawal else "allocatedTransfer"
        shown = f"{format_units(certificate.amount, decimals)} {symbol}".rstrip()
        noun = "withdrawal" if is_withdrawal else "transfer"
        return await self._submit(
            ContractCall(
                self.compact_address,
                function_name,
                (certificate.to_transfer_args(),),
                chain_id=certificate.chain_id,
            ),
            f"Initiating {noun.capitalize()}",
            f"{noun.capitalize()} Confirmed",
            f"Successfully {'withdrew' if is_withdrawal else 'transferred'} {shown}",
            initiated_message=f"Waiting for transaction submission of {shown}...",
        )

"""Wallet-signing boundary.

The wallet itself (browser extension, hardware signer, web3 account) lives
outside this package. Anything implementing :class:`Wallet` can be plugged
into the session manager, the allocation engine and the on-chain actions.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from .exceptions import UserRejectedError
from .models import TransactionReceipt

# EIP-1193 "User Rejected Request"
USER_REJECTED_CODE = 4001
# wallet_switchEthereumChain: chain not added to the wallet
UNRECOGNIZED_CHAIN_CODE = 4902


@dataclass(frozen=True)
class ContractCall:
    """A contract function call to be signed and sent by the wallet."""
    address: str
    function_name: str
    args: Tuple[Any, ...] = ()
    value: int = 0
    chain_id: Optional[int] = None


@runtime_checkable
class Wallet(Protocol):
    """What the core needs from a connected wallet.

    Signing and submission methods raise :class:`UserRejectedError` (or any
    exception carrying EIP-1193 code 4001 / a "user rejected" message) when
    the holder declines the prompt.
    """

    @property
    def address(self) -> Optional[str]:
        ...

    @property
    def chain_id(self) -> int:
        ...

    async def sign_message(self, message: str) -> str:
        ...

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        ...

    async def write_contract(self, call: ContractCall) -> str:
        """Submit ``call`` and return the transaction hash."""
        ...

    async def read_contract(self, call: ContractCall) -> Any:
        ...

    async def wait_for_transaction_receipt(self, tx_hash: str) -> TransactionReceipt:
        ...

    async def switch_chain(self, chain_id: int) -> None:
        ...


def is_user_rejection(exc: BaseException) -> bool:
    """True if ``exc`` means the holder declined a wallet prompt."""
    if isinstance(exc, UserRejectedError):
        return True
    if getattr(exc, "code", None) == USER_REJECTED_CODE:
        return True
    return "user rejected" in str(exc).lower()

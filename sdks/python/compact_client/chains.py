"""Supported chains, contract constants and EIP-712 payloads."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

# The Compact is deployed at the same address on all networks
COMPACT_ADDRESS = "0x00000000000018DF021Ff2467dF97ff846E09f48"

MAX_UINT256 = 2 ** 256 - 1

COMPACT_DOMAIN_NAME = "The Compact"
COMPACT_DOMAIN_VERSION = "0"

COMPACT_TYPES = {
    "Compact": [
        {"name": "arbiter", "type": "address"},
        {"name": "sponsor", "type": "address"},
        {"name": "nonce", "type": "uint256"},
        {"name": "expires", "type": "uint256"},
        {"name": "id", "type": "uint256"},
        {"name": "amount", "type": "uint256"},
    ],
}


@dataclass(frozen=True)
class ChainInfo:
    """Static information about a supported chain."""
    chain_id: int
    name: str
    block_explorer: Optional[str]
    compact_address: str = COMPACT_ADDRESS


SUPPORTED_CHAINS: Dict[int, ChainInfo] = {
    info.chain_id: info
    for info in (
        ChainInfo(1, "Ethereum", "https://etherscan.io"),
        ChainInfo(10, "Optimism", "https://optimistic.etherscan.io"),
        ChainInfo(420, "Optimism Goerli", "https://goerli-optimism.etherscan.io"),
        ChainInfo(11155111, "Sepolia", "https://sepolia.etherscan.io"),
        ChainInfo(5, "Goerli", "https://goerli.etherscan.io"),
        ChainInfo(8453, "Base", "https://basescan.org"),
        ChainInfo(84532, "Base Sepolia", "https://sepolia.basescan.org"),
        ChainInfo(130, "Unichain", "https://uniscan.xyz"),
    )
}


def _as_chain_id(chain_id: Union[str, int]) -> int:
    return int(chain_id)


def is_supported_chain(chain_id: Union[str, int]) -> bool:
    try:
        return _as_chain_id(chain_id) in SUPPORTED_CHAINS
    except (TypeError, ValueError):
        return False


def get_chain(chain_id: Union[str, int]) -> Optional[ChainInfo]:
    try:
        return SUPPORTED_CHAINS.get(_as_chain_id(chain_id))
    except (TypeError, ValueError):
        return None


def get_chain_name(chain_id: Union[str, int]) -> str:
    """Chain name, or ``"Chain <id>"`` for chains we do not know."""
    chain = get_chain(chain_id)
    return chain.name if chain else f"Chain {chain_id}"


def get_block_explorer_tx_url(chain_id: Union[str, int], tx_hash: str) -> Optional[str]:
    chain = get_chain(chain_id)
    if chain is None or not chain.block_explorer:
        return None
    return f"{chain.block_explorer}/tx/{tx_hash}"


def build_compact_typed_data(chain_id: Union[str, int], compact: Dict[str, Any]) -> Dict[str, Any]:
    """Build the EIP-712 payload a sponsor signs for a compact.

    Args:
        chain_id: Chain the compact is bound to
        compact: Mapping with ``arbiter``, ``sponsor``, ``nonce``,
            ``expires``, ``id`` and ``amount``

    Returns:
        Dict with ``domain``, ``types``, ``primaryType`` and ``message`` keys,
        the shape wallets accept for ``eth_signTypedData_v4``.
    """
    chain = get_chain(chain_id)
    return {
        "domain": {
            "name": COMPACT_DOMAIN_NAME,
            "version": COMPACT_DOMAIN_VERSION,
            "chainId": _as_chain_id(chain_id),
            "verifyingContract": chain.compact_address if chain else COMPACT_ADDRESS,
        },
        "types": COMPACT_TYPES,
        "primaryType": "Compact",
        "message": {
            "arbiter": compact["arbiter"],
            "sponsor": compact["sponsor"],
            "nonce": int(compact["nonce"]),
            "expires": int(compact["expires"]),
            "id": int(compact["id"]),
            "amount": int(compact["amount"]),
        },
    }

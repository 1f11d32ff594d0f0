"""Compact client data models."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import ResponseSchemaError
from .formatting import format_units, parse_uint

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
SIGNATURE_RE = re.compile(r"^0x[a-fA-F0-9]+$")

LockKey = Tuple[int, int]


def is_address(value: Any) -> bool:
    """True if ``value`` is a well-formed 20 byte hex address."""
    return isinstance(value, str) and bool(ADDRESS_RE.match(value))


def _require(data: Mapping[str, Any], key: str, context: str) -> Any:
    if not isinstance(data, Mapping):
        raise ResponseSchemaError(f"{context}: expected an object, got {type(data).__name__}")
    if key not in data or data[key] is None:
        raise ResponseSchemaError(f"{context}: missing field '{key}'")
    return data[key]


def _uint(data: Mapping[str, Any], key: str, context: str, default: Optional[int] = None) -> int:
    if default is not None and (not isinstance(data, Mapping) or data.get(key) in (None, "")):
        return default
    raw = _require(data, key, context)
    try:
        return parse_uint(raw)
    except (TypeError, ValueError):
        raise ResponseSchemaError(f"{context}: field '{key}' is not an unsigned integer: {raw!r}")


def _optional_uint(data: Mapping[str, Any], key: str, context: str) -> Optional[int]:
    if not isinstance(data, Mapping) or data.get(key) in (None, ""):
        return None
    return _uint(data, key, context)


def _str(data: Mapping[str, Any], key: str, context: str) -> str:
    raw = _require(data, key, context)
    if not isinstance(raw, str):
        raise ResponseSchemaError(f"{context}: field '{key}' must be a string")
    return raw


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class WithdrawalState(str, Enum):
    """Forced withdrawal lifecycle state of a resource lock."""
    INACTIVE = "inactive"
    PENDING = "pending"
    READY = "ready"
    EXECUTED = "executed"


class SessionState(str, Enum):
    """Authentication state of the current wallet address."""
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    # validation could not reach a verdict, persisted credential kept
    UNKNOWN = "unknown"


class ProtocolStage(str, Enum):
    """Stage of an allocated transfer or withdrawal."""
    IDLE = "idle"
    REQUESTING_ALLOCATION = "requesting_allocation"
    HAS_ALLOCATION = "has_allocation"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class ActionKind(str, Enum):
    """Kind of allocated action."""
    TRANSFER = "transfer"
    WITHDRAWAL = "withdrawal"


@dataclass(frozen=True)
class Token:
    """Token held by a resource lock."""
    token_address: str
    name: str
    symbol: str
    decimals: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Token":
        return cls(
            token_address=_str(data, "tokenAddress", "token"),
            name=str(_require(data, "name", "token")),
            symbol=str(_require(data, "symbol", "token")),
            decimals=_uint(data, "decimals", "token"),
        )


@dataclass(frozen=True)
class ResourceLock:
    """Per-lock metadata owned by the indexer."""
    lock_id: int
    allocator_address: str
    token: Token
    reset_period: int
    is_multichain: bool
    total_supply: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceLock":
        allocator = _require(data, "allocator", "resourceLock")
        return cls(
            lock_id=_uint(data, "lockId", "resourceLock"),
            allocator_address=_str(allocator, "account", "resourceLock.allocator"),
            token=Token.from_dict(_require(data, "token", "resourceLock")),
            reset_period=_uint(data, "resetPeriod", "resourceLock"),
            is_multichain=bool(_require(data, "isMultichain", "resourceLock")),
            total_supply=_uint(data, "totalSupply", "resourceLock", default=0),
        )


@dataclass(frozen=True)
class IndexedLockBalance:
    """One resource lock of an account as reported by the indexer."""
    chain_id: int
    resource_lock: ResourceLock
    balance: int
    withdrawal_status: int
    withdrawable_at: Optional[int]

    @property
    def key(self) -> LockKey:
        return (self.chain_id, self.resource_lock.lock_id)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndexedLockBalance":
        return cls(
            chain_id=_uint(data, "chainId", "resourceLocks.items"),
            resource_lock=ResourceLock.from_dict(_require(data, "resourceLock", "resourceLocks.items")),
            balance=_uint(data, "balance", "resourceLocks.items", default=0),
            withdrawal_status=_uint(data, "withdrawalStatus", "resourceLocks.items", default=0),
            withdrawable_at=_optional_uint(data, "withdrawableAt", "resourceLocks.items"),
        )


@dataclass(frozen=True)
class Balance:
    """Reconciled balance of one resource lock.

    Numbers come from the allocator feed; ``withdrawal_status`` and
    ``withdrawable_at`` are overwritten from the indexer when the lock is
    known to it, together with the ``token`` and ``resource_lock`` metadata.
    ``withdrawable_at`` is None when neither source reported it.
    """
    chain_id: int
    lock_id: int
    allocatable_balance: int
    allocated_balance: int
    balance_available_to_allocate: int
    withdrawal_status: int = 0
    withdrawable_at: Optional[int] = None
    token: Optional[Token] = None
    resource_lock: Optional[ResourceLock] = None

    RENDER_FIELDS = (
        "allocatable_balance",
        "allocated_balance",
        "balance_available_to_allocate",
        "withdrawal_status",
        "withdrawable_at",
    )

    def __post_init__(self):
        if self.allocatable_balance < 0 or self.allocated_balance < 0:
            raise ResponseSchemaError("balance amounts must be non-negative")
        if not 0 <= self.balance_available_to_allocate <= self.allocatable_balance:
            raise ResponseSchemaError(
                "balanceAvailableToAllocate must be between 0 and allocatableBalance"
            )

    @property
    def key(self) -> LockKey:
        return (self.chain_id, self.lock_id)

    def render_values(self) -> Tuple[int, ...]:
        """Values whose change must be published to consumers."""
        return tuple(getattr(self, name) for name in self.RENDER_FIELDS)

    @property
    def decimals(self) -> int:
        return self.token.decimals if self.token else 18

    def _formatted(self, value: int) -> Optional[str]:
        return format_units(value, self.token.decimals) if self.token else None

    @property
    def formatted_allocatable_balance(self) -> Optional[str]:
        return self._formatted(self.allocatable_balance)

    @property
    def formatted_allocated_balance(self) -> Optional[str]:
        return self._formatted(self.allocated_balance)

    @property
    def formatted_available_balance(self) -> Optional[str]:
        return self._formatted(self.balance_available_to_allocate)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Balance":
        """Parse one entry of the allocator ``/balances`` feed."""
        allocatable = _uint(data, "allocatableBalance", "balances")
        allocated = _uint(data, "allocatedBalance", "balances")
        if data.get("balanceAvailableToAllocate") in (None, ""):
            available = max(allocatable - allocated, 0)
        else:
            available = _uint(data, "balanceAvailableToAllocate", "balances")
        return cls(
            chain_id=_uint(data, "chainId", "balances"),
            lock_id=_uint(data, "lockId", "balances"),
            allocatable_balance=allocatable,
            allocated_balance=allocated,
            balance_available_to_allocate=available,
            withdrawal_status=_uint(data, "withdrawalStatus", "balances", default=0),
            withdrawable_at=_optional_uint(data, "withdrawableAt", "balances"),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "chainId": str(self.chain_id),
            "lockId": str(self.lock_id),
            "allocatableBalance": str(self.allocatable_balance),
            "allocatedBalance": str(self.allocated_balance),
            "balanceAvailableToAllocate": str(self.balance_available_to_allocate),
            "withdrawalStatus": self.withdrawal_status,
            "withdrawableAt": None if self.withdrawable_at is None else str(self.withdrawable_at),
        }
        if self.token:
            data["token"] = {
                "tokenAddress": self.token.token_address,
                "name": self.token.name,
                "symbol": self.token.symbol,
                "decimals": self.token.decimals,
            }
            data["formattedAllocatableBalance"] = self.formatted_allocatable_balance
            data["formattedAllocatedBalance"] = self.formatted_allocated_balance
            data["formattedAvailableBalance"] = self.formatted_available_balance
        if self.resource_lock:
            data["resourceLock"] = {
                "resetPeriod": self.resource_lock.reset_period,
                "isMultichain": self.resource_lock.is_multichain,
            }
        return data


@dataclass(frozen=True)
class Session:
    """An authenticated allocator session."""
    id: str
    address: str
    expires_at: datetime

    def is_expired(self, now: float) -> bool:
        return self.expires_at.timestamp() < now

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        expires_raw = _require(data, "expiresAt", "session")
        try:
            expires_at = parse_timestamp(str(expires_raw))
        except ValueError:
            raise ResponseSchemaError(f"session: invalid expiresAt {expires_raw!r}")
        return cls(
            id=_str(data, "id", "session"),
            address=_str(data, "address", "session"),
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class SessionPayload:
    """Sign-in challenge issued by the allocator (EIP-4361 fields)."""
    domain: str
    address: str
    uri: str
    statement: str
    version: str
    chain_id: int
    nonce: str
    issued_at: str
    expiration_time: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionPayload":
        ctx = "session payload"
        return cls(
            domain=_str(data, "domain", ctx),
            address=_str(data, "address", ctx),
            uri=_str(data, "uri", ctx),
            statement=_str(data, "statement", ctx),
            version=str(_require(data, "version", ctx)),
            chain_id=_uint(data, "chainId", ctx),
            nonce=str(_require(data, "nonce", ctx)),
            issued_at=_str(data, "issuedAt", ctx),
            expiration_time=_str(data, "expirationTime", ctx),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "address": self.address,
            "uri": self.uri,
            "statement": self.statement,
            "version": self.version,
            "chainId": self.chain_id,
            "nonce": self.nonce,
            "issuedAt": self.issued_at,
            "expirationTime": self.expiration_time,
        }

    def to_message(self) -> str:
        """Render the human-readable message the wallet signs."""
        return "\n".join([
            f"{self.domain} wants you to sign in with your Ethereum account:",
            self.address,
            "",
            self.statement,
            "",
            f"URI: {self.uri}",
            f"Version: {self.version}",
            f"Chain ID: {self.chain_id}",
            f"Nonce: {self.nonce}",
            f"Issued At: {self.issued_at}",
            f"Expiration Time: {self.expiration_time}",
        ])


@dataclass(frozen=True)
class SupportedChain:
    """Allocator configuration for one chain."""
    chain_id: int
    allocator_id: str
    finalization_threshold_seconds: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SupportedChain":
        return cls(
            chain_id=_uint(data, "chainId", "supportedChains"),
            allocator_id=str(_require(data, "allocatorId", "supportedChains")),
            finalization_threshold_seconds=_uint(data, "finalizationThresholdSeconds", "supportedChains"),
        )


@dataclass(frozen=True)
class HealthStatus:
    """Allocator health check result."""
    status: str
    allocator_address: str
    signing_address: str
    timestamp: str
    supported_chains: List[SupportedChain] = field(default_factory=list)

    def chain(self, chain_id: int) -> Optional[SupportedChain]:
        for chain in self.supported_chains:
            if chain.chain_id == int(chain_id):
                return chain
        return None

    def finalization_threshold(self, chain_id: int) -> Optional[int]:
        chain = self.chain(chain_id)
        return chain.finalization_threshold_seconds if chain else None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HealthStatus":
        chains = data.get("supportedChains") if isinstance(data, Mapping) else None
        if not isinstance(chains, list):
            chains = []
        return cls(
            status=_str(data, "status", "health"),
            allocator_address=_str(data, "allocatorAddress", "health"),
            signing_address=_str(data, "signingAddress", "health"),
            timestamp=str(data.get("timestamp", "")),
            supported_chains=[SupportedChain.from_dict(c) for c in chains],
        )


@dataclass(frozen=True)
class CompactMessage:
    """The compact a sponsor asks the allocator to sign."""
    arbiter: str
    sponsor: str
    nonce: Optional[int]
    expires: int
    id: int
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "arbiter": self.arbiter,
            "sponsor": self.sponsor,
            "nonce": None if self.nonce is None else "0x" + format(self.nonce, "x").rjust(64, "0"),
            "expires": str(self.expires),
            "id": str(self.id),
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class CompactResponse:
    """Allocator answer to a compact request."""
    hash: str
    signature: str
    nonce: int

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompactResponse":
        ctx = "compact response"
        hash_ = _str(data, "hash", ctx)
        signature = _str(data, "signature", ctx)
        if not HASH_RE.match(hash_):
            raise ResponseSchemaError(f"{ctx}: malformed hash {hash_!r}")
        if not SIGNATURE_RE.match(signature):
            raise ResponseSchemaError(f"{ctx}: malformed signature")
        return cls(hash=hash_, signature=signature, nonce=_uint(data, "nonce", ctx))


@dataclass(frozen=True)
class CompactRecord:
    """A compact previously signed by the allocator."""
    chain_id: int
    compact: CompactMessage
    hash: str
    signature: str
    created_at: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompactRecord":
        ctx = "compact record"
        compact = _require(data, "compact", ctx)
        return cls(
            chain_id=_uint(data, "chainId", ctx),
            compact=CompactMessage(
                arbiter=_str(compact, "arbiter", ctx),
                sponsor=_str(compact, "sponsor", ctx),
                nonce=_uint(compact, "nonce", ctx),
                expires=_uint(compact, "expires", ctx),
                id=_uint(compact, "id", ctx),
                amount=_uint(compact, "amount", ctx),
            ),
            hash=_str(data, "hash", ctx),
            signature=_str(data, "signature", ctx),
            created_at=str(data.get("createdAt", "")),
        )


@dataclass(frozen=True)
class AllocationCertificate:
    """Allocator authorization for exactly one transfer or withdrawal.

    Bound to the exact nonce, expiry, lock, amount and recipient it was
    issued for; never mutated and consumed by at most one submission.
    """
    hash: str
    allocator_signature: str
    nonce: int
    expires: int
    lock_id: int
    amount: int
    recipient: str
    chain_id: int
    kind: ActionKind = ActionKind.TRANSFER

    def to_transfer_args(self) -> Dict[str, Any]:
        """The ``BasicTransfer`` struct passed to the contract."""
        return {
            "allocatorSignature": self.allocator_signature,
            "nonce": self.nonce,
            "expires": self.expires,
            "id": self.lock_id,
            "amount": self.amount,
            "recipient": self.recipient,
        }


@dataclass(frozen=True)
class TransactionReceipt:
    """Outcome of a mined transaction."""
    tx_hash: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

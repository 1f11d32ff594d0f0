"""Compact client - resource lock balances, forced withdrawals and allocations."""

from .actions import CompactActions, PendingTransaction
from .app import CompactClient
from .allocation import (
    EXPIRY_OPTIONS,
    AllocationContext,
    AllocationEngine,
    AllocationForm,
    expiry_from_option,
    validate_allocation_form,
)
from .balances import BalanceReconciler, BalanceSnapshot, ReconcileResult, reconcile_balances
from .cache import QueryCache, cache_key
from .client import AllocatorClient, AsyncAllocatorClient
from .config import ClientConfig, configure_logging, load_config
from .exceptions import (
    CompactClientError,
    AuthenticationError,
    SessionRequiredError,
    NetworkError,
    APIError,
    ResponseSchemaError,
    IndexerError,
    ValidationError,
    FormLockedError,
    ProtocolError,
    NonceConsumedError,
    UserRejectedError,
    NetworkSwitchError,
    TransactionFailedError,
)
from .indexer import IndexerClient
from .models import (
    ActionKind,
    AllocationCertificate,
    Balance,
    HealthStatus,
    IndexedLockBalance,
    ProtocolStage,
    ResourceLock,
    Session,
    SessionState,
    Token,
    WithdrawalState,
)
from .notifications import NetworkSwitcher, Notification, Notifier
from .session import SessionManager
from .store import SessionStore
from .wallet import ContractCall, Wallet
from .withdrawal import (
    ForcedWithdrawalController,
    WithdrawalStatus,
    WithdrawalTracker,
    can_execute,
    withdrawal_status,
)

__version__ = "0.1.0"
__all__ = [
    "CompactClient",
    "AllocatorClient",
    "AsyncAllocatorClient",
    "IndexerClient",
    "QueryCache",
    "cache_key",
    "SessionManager",
    "SessionStore",
    "BalanceReconciler",
    "BalanceSnapshot",
    "ReconcileResult",
    "reconcile_balances",
    "WithdrawalTracker",
    "WithdrawalStatus",
    "ForcedWithdrawalController",
    "can_execute",
    "withdrawal_status",
    "AllocationEngine",
    "AllocationForm",
    "AllocationContext",
    "EXPIRY_OPTIONS",
    "expiry_from_option",
    "validate_allocation_form",
    "CompactActions",
    "PendingTransaction",
    "Notifier",
    "Notification",
    "NetworkSwitcher",
    "Wallet",
    "ContractCall",
    "ClientConfig",
    "load_config",
    "configure_logging",
    "CompactClientError",
    "AuthenticationError",
    "SessionRequiredError",
    "NetworkError",
    "APIError",
    "ResponseSchemaError",
    "IndexerError",
    "ValidationError",
    "FormLockedError",
    "ProtocolError",
    "NonceConsumedError",
    "UserRejectedError",
    "NetworkSwitchError",
    "TransactionFailedError",
    "ActionKind",
    "AllocationCertificate",
    "Balance",
    "HealthStatus",
    "IndexedLockBalance",
    "ProtocolStage",
    "ResourceLock",
    "Session",
    "SessionState",
    "Token",
    "WithdrawalState",
]

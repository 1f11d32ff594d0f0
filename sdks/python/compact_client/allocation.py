"""Allocation protocol: request, sign and submit allocated actions."""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Callable, Dict, List, Optional, Set

from .actions import CompactActions, PendingTransaction
from .chains import build_compact_typed_data
from .client import AsyncAllocatorClient
from .exceptions import (
    AuthenticationError,
    FormLockedError,
    NonceConsumedError,
    ProtocolError,
    SessionRequiredError,
    TransactionFailedError,
    UserRejectedError,
    ValidationError,
)
from .formatting import decimal_places, parse_units
from .models import (
    ActionKind,
    AllocationCertificate,
    Balance,
    CompactMessage,
    HealthStatus,
    ProtocolStage,
    is_address,
)
from .notifications import NetworkSwitcher, Notifier
from .session import SessionManager
from .wallet import Wallet, is_user_rejection

LOG = logging.getLogger("compact_client.allocation")

MAX_EXPIRY_SECONDS = 2 * 60 * 60

EXPIRY_OPTIONS: Dict[str, int] = {
    "1min": 60,
    "5min": 5 * 60,
    "10min": 10 * 60,
    "1hour": 60 * 60,
}
DEFAULT_EXPIRY_OPTION = "10min"

# A new request or submission is refused while one of these is running.
BUSY_STAGES = (
    ProtocolStage.REQUESTING_ALLOCATION,
    ProtocolStage.SUBMITTING,
    ProtocolStage.SUBMITTED,
)
# The form is bound to the held certificate in these stages.
LOCKED_STAGES = (ProtocolStage.HAS_ALLOCATION,) + BUSY_STAGES[1:]


def expiry_from_option(option: str, now: float) -> int:
    """Absolute expiry for one of the :data:`EXPIRY_OPTIONS` presets."""
    try:
        return int(now) + EXPIRY_OPTIONS[option]
    except KeyError:
        raise ValueError(f"Unknown expiry option {option!r}")


@dataclass(frozen=True)
class AllocationForm:
    """User input for an allocated transfer or withdrawal."""
    amount: str = ""
    recipient: str = ""
    expires: int = 0


@dataclass(frozen=True)
class AllocationContext:
    """The resource lock an allocation draws from."""
    chain_id: int
    lock_id: int
    decimals: int
    total_balance: int
    available_to_allocate: int
    symbol: str = ""
    reset_period: Optional[int] = None

    @classmethod
    def from_balance(cls, balance: Balance) -> "AllocationContext":
        return cls(
            chain_id=balance.chain_id,
            lock_id=balance.lock_id,
            decimals=balance.decimals,
            total_balance=balance.allocatable_balance,
            available_to_allocate=balance.balance_available_to_allocate,
            symbol=balance.token.symbol if balance.token else "",
            reset_period=balance.resource_lock.reset_period if balance.resource_lock else None,
        )


def _duration_text(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{seconds // 60} minutes"


def _validate_amount(amount: str, ctx: AllocationContext) -> Optional[str]:
    text = amount.strip()
    if text.startswith("-"):
        return "Amount must be greater than zero."
    places = decimal_places(text)
    try:
        scaled = parse_units(text, max(places, ctx.decimals))
    except ValueError:
        return "Invalid amount format."
    if scaled == 0:
        return "Amount must be greater than zero."
    if places > ctx.decimals:
        return f"Invalid amount (greater than {ctx.decimals} decimals)."
    if scaled > ctx.total_balance:
        return "Amount exceeds available balance."
    if scaled > ctx.available_to_allocate:
        return (
            "Amount exceeds balance currently available to allocate. "
            "Wait for pending allocations to clear or initiate a forced withdrawal."
        )
    return None


def _validate_expiry(expires: int, now: int, reset_period: Optional[int], max_expiry: int) -> Optional[str]:
    if expires <= now:
        return "Expiry time must be in the future."
    duration = expires - now
    if duration > max_expiry:
        return f"Expiry cannot be more than {_duration_text(max_expiry)} in the future."
    limit = min(reset_period, max_expiry) if reset_period else max_expiry
    if duration > limit:
        return f"Expiry cannot exceed {limit // 60} minutes from now."
    return None


def validate_allocation_form(
    form: AllocationForm,
    ctx: AllocationContext,
    now: float,
    max_expiry: int = MAX_EXPIRY_SECONDS,
) -> Dict[str, str]:
    """Check a form locally.

    Returns:
        Field name -> message for every violated rule; empty when the form
        may be sent to the allocator
    """
    errors: Dict[str, str] = {}
    amount_error = _validate_amount(form.amount, ctx)
    if amount_error:
        errors["amount"] = amount_error
    if not is_address(form.recipient):
        errors["recipient"] = "Invalid address format."
    expiry_error = _validate_expiry(int(form.expires), int(now), ctx.reset_period, max_expiry)
    if expiry_error:
        errors["expires"] = expiry_error
    return errors


StageListener = Callable[[ProtocolStage], None]


class AllocationEngine:
    """Drives one allocated transfer or withdrawal from request to receipt.

    The engine holds at most one :class:`AllocationCertificate`. Requesting
    again while one is held replaces it, and a certificate is never
    submitted twice: its nonce is remembered once a submission starts and
    checked against the chain before every wallet prompt.
    """

    def __init__(
        self,
        kind: ActionKind,
        context: AllocationContext,
        client: AsyncAllocatorClient,
        sessions: SessionManager,
        wallet: Wallet,
        actions: CompactActions,
        network: NetworkSwitcher,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
        max_expiry_seconds: int = MAX_EXPIRY_SECONDS,
        default_expiry_seconds: int = EXPIRY_OPTIONS[DEFAULT_EXPIRY_OPTION],
    ):
        self.kind = kind
        self.context = context
        self.client = client
        self.sessions = sessions
        self.wallet = wallet
        self.actions = actions
        self.network = network
        self.notifier = notifier
        self.clock = clock
        self.max_expiry_seconds = max_expiry_seconds
        self.default_expiry_seconds = default_expiry_seconds

        self._stage = ProtocolStage.IDLE
        self._certificate: Optional[AllocationCertificate] = None
        self._form = AllocationForm(expires=int(clock()) + default_expiry_seconds)
        self._attempted_nonces: Set[int] = set()
        self._health: Optional[HealthStatus] = None
        self._pending: Optional[PendingTransaction] = None
        self._confirmation: Optional[asyncio.Task] = None
        self.history: List[ProtocolStage] = [ProtocolStage.IDLE]
        self.last_error: Optional[Exception] = None
        self._listeners: List[StageListener] = []

    @property
    def _noun(self) -> str:
        return "withdrawal" if self.kind == ActionKind.WITHDRAWAL else "transfer"

    @property
    def stage(self) -> ProtocolStage:
        return self._stage

    @property
    def certificate(self) -> Optional[AllocationCertificate]:
        return self._certificate

    @property
    def form(self) -> AllocationForm:
        return self._form

    @property
    def pending(self) -> Optional[PendingTransaction]:
        return self._pending

    def add_listener(self, listener: StageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _transition(self, stage: ProtocolStage) -> None:
        LOG.info("%s %s -> %s", self._noun, self._stage.value, stage.value)
        self._stage = stage
        self.history.append(stage)
        for listener in list(self._listeners):
            listener(stage)

    def _fail(self, exc: Exception) -> None:
        self.last_error = exc
        self._certificate = None
        self._transition(ProtocolStage.FAILED)
        self._transition(ProtocolStage.IDLE)

    def _discard_certificate(self) -> None:
        self._certificate = None
        if self._stage == ProtocolStage.HAS_ALLOCATION:
            self._transition(ProtocolStage.IDLE)

    # Form

    def update_form(self, **changes) -> AllocationForm:
        """Edit the form; refused while bound to a held certificate."""
        if self._stage in LOCKED_STAGES:
            raise FormLockedError(
                {name: "Field is locked while an allocation is held." for name in changes},
                message="Form is locked while an allocation is held",
            )
        self._form = replace(self._form, **changes)
        return self._form

    def set_expiry_option(self, option: str) -> AllocationForm:
        return self.update_form(expires=expiry_from_option(option, self.clock()))

    def update_context(self, context: AllocationContext) -> None:
        """Point the engine at fresher balance data for the same lock."""
        self.context = context

    def validate(self, form: Optional[AllocationForm] = None) -> Dict[str, str]:
        return validate_allocation_form(
            form or self._form, self.context, self.clock(), self.max_expiry_seconds
        )

    # Request

    async def request_allocation(self, form: Optional[AllocationForm] = None) -> Optional[AllocationCertificate]:
        """Obtain an allocator certificate for ``form``.

        Returns:
            The certificate, or None when the holder declined to sign

        Raises:
            ValidationError: when the form is invalid; nothing was sent
            SessionRequiredError: without an authenticated session
            ProtocolError: while another request or submission is running
        """
        if self._stage in BUSY_STAGES:
            raise ProtocolError(f"Cannot request an allocation while {self._stage.value}")
        form = form or self._form
        errors = self.validate(form)
        if errors:
            raise ValidationError(errors)

        session_id = self.sessions.session_id
        sponsor = self.wallet.address
        if not session_id or not sponsor:
            raise SessionRequiredError("Sign in before requesting an allocation")

        self._certificate = None
        self._form = form
        self._transition(ProtocolStage.REQUESTING_ALLOCATION)
        ctx = self.context
        try:
            nonce = await self.client.get_suggested_nonce(session_id, ctx.chain_id)
            compact = CompactMessage(
                arbiter=sponsor,
                sponsor=sponsor,
                nonce=nonce,
                expires=int(form.expires),
                id=ctx.lock_id,
                amount=parse_units(form.amount, ctx.decimals),
            )
            signature = await self.wallet.sign_typed_data(build_compact_typed_data(ctx.chain_id, asdict(compact)))
            response = await self.client.request_allocation(session_id, ctx.chain_id, compact, signature)
            if response.nonce != nonce:
                raise ProtocolError(
                    f"Allocator returned nonce {response.nonce}, requested {nonce}"
                )
        except Exception as exc:
            if is_user_rejection(exc):
                LOG.info("%s authorization declined in wallet", self._noun)
                self._fail(exc if isinstance(exc, UserRejectedError) else UserRejectedError(str(exc)))
                return None
            if isinstance(exc, AuthenticationError):
                self.sessions.invalidate(session_id)
            self.notifier.error(f"{self._noun.capitalize()} Authorization Failed", str(exc))
            self._fail(exc)
            raise

        self._certificate = AllocationCertificate(
            hash=response.hash,
            allocator_signature=response.signature,
            nonce=response.nonce,
            expires=compact.expires,
            lock_id=compact.id,
            amount=compact.amount,
            recipient=form.recipient,
            chain_id=ctx.chain_id,
            kind=self.kind,
        )
        self.last_error = None
        self._transition(ProtocolStage.HAS_ALLOCATION)
        self.notifier.success(
            f"{self._noun.capitalize()} Authorized",
            f"Successfully authorized {self._noun}. You can now submit the transaction.",
        )
        return self._certificate

    # Nonce discipline

    async def _allocator_address(self) -> str:
        if self._health is None:
            self._health = await self.client.health()
        return self._health.allocator_address

    async def _nonce_consumed(self, certificate: AllocationCertificate) -> bool:
        if certificate.nonce in self._attempted_nonces:
            return True
        allocator = await self._allocator_address()
        return await self.actions.has_consumed_allocator_nonce(certificate.nonce, allocator, certificate.chain_id)

    async def check_nonce(self) -> bool:
        """Whether the held certificate's nonce is already consumed.

        A consumed nonce discards the certificate.
        """
        certificate = self._certificate
        if certificate is None:
            return False
        consumed = await self._nonce_consumed(certificate)
        if consumed and self._certificate is certificate:
            LOG.info("nonce %s already consumed, discarding allocation", certificate.nonce)
            self._discard_certificate()
        return consumed

    # Submit

    async def submit(self, certificate: Optional[AllocationCertificate] = None) -> Optional[PendingTransaction]:
        """Submit the held (or given) certificate through the wallet.

        Returns:
            The pending transaction, or None when the chain switch failed
            or the holder declined the prompt

        Raises:
            NonceConsumedError: the certificate was already used; request a
                new allocation
        """
        if self._stage in BUSY_STAGES:
            raise ProtocolError(f"Cannot submit while {self._stage.value}")
        certificate = certificate or self._certificate
        if certificate is None:
            raise ProtocolError("No allocation to submit")

        if await self._nonce_consumed(certificate):
            if self._certificate is certificate:
                self._discard_certificate()
            raise NonceConsumedError(
                "Allocation nonce already consumed; request a new allocation", nonce=certificate.nonce
            )

        if not await self.network.ensure_chain(certificate.chain_id):
            return None

        self._transition(ProtocolStage.SUBMITTING)
        self._attempted_nonces.add(certificate.nonce)
        try:
            pending = await self.actions.submit_allocated(certificate, self.context.decimals, self.context.symbol)
        except UserRejectedError as exc:
            LOG.info("%s submission declined in wallet", self._noun)
            self._fail(exc)
            return None
        except Exception as exc:
            LOG.warning("%s submission failed: %s", self._noun, exc)
            self._fail(exc)
            raise

        self._certificate = None
        self._pending = pending
        self._transition(ProtocolStage.SUBMITTED)
        self._confirmation = asyncio.get_running_loop().create_task(self._await_confirmation(pending))
        return pending

    async def _await_confirmation(self, pending: PendingTransaction) -> bool:
        receipt = await pending.wait()
        self._pending = None
        if receipt is not None and receipt.succeeded:
            self.last_error = None
            self._transition(ProtocolStage.CONFIRMED)
            self._transition(ProtocolStage.IDLE)
            return True
        # the submission itself went through; only the receipt failed
        self.last_error = TransactionFailedError(
            f"{self._noun.capitalize()} was not confirmed", tx_hash=pending.tx_hash
        )
        self._transition(ProtocolStage.IDLE)
        return False

    async def wait_confirmed(self) -> bool:
        """Wait for the submitted transaction; True if it succeeded."""
        if self._confirmation is None:
            return False
        return await self._confirmation

    def reset(self) -> None:
        """Drop any held certificate and start over with a fresh form."""
        if self._stage in BUSY_STAGES:
            raise ProtocolError(f"Cannot reset while {self._stage.value}")
        self._certificate = None
        self.last_error = None
        self._form = AllocationForm(expires=int(self.clock()) + self.default_expiry_seconds)
        if self._stage != ProtocolStage.IDLE:
            self._transition(ProtocolStage.IDLE)

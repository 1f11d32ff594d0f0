"""Session lifecycle: sign-in, periodic validation, sign-out."""

import logging
import time
from typing import Callable, List, Optional

from .client import AsyncAllocatorClient
from .exceptions import AuthenticationError, CompactClientError, SessionRequiredError
from .models import Session, SessionState
from .notifications import Notifier
from .scheduler import Ticker
from .store import SessionStore
from .wallet import Wallet, is_user_rejection

LOG = logging.getLogger("compact_client.session")

StateListener = Callable[[SessionState], None]


class SessionManager:
    """Owns the allocator session of the connected wallet address.

    The persisted session id is only ever cleared when the allocator says
    the session is invalid (401/403 or an "Invalid session" body), when it
    belongs to another address, or when it has expired. Any other failure
    while validating moves the manager to ``UNKNOWN`` and keeps the stored
    id so the next successful validation restores ``AUTHENTICATED``.
    """

    def __init__(
        self,
        client: AsyncAllocatorClient,
        wallet: Wallet,
        store: Optional[SessionStore] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
        revalidate_interval: float = 60.0,
    ):
        self.client = client
        self.wallet = wallet
        self.store = store if store is not None else SessionStore()
        self.notifier = notifier
        self.clock = clock
        self._address: Optional[str] = wallet.address
        self._state = SessionState.ANONYMOUS
        self._session: Optional[Session] = None
        self._generation = 0
        self._listeners: List[StateListener] = []
        self._ticker = Ticker(revalidate_interval, self.validate, name="session")

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def session(self) -> Optional[Session]:
        return self._session if self._state == SessionState.AUTHENTICATED else None

    @property
    def session_id(self) -> Optional[str]:
        """Id to send as ``x-session-id``; None unless authenticated."""
        session = self.session
        return session.id if session else None

    @property
    def persisted_session_id(self) -> Optional[str]:
        """Stored id of the current address while it is not known to be invalid.

        Unlike :attr:`session_id` this stays available in ``UNKNOWN``, so
        background polling keeps going through a transient validation
        failure.
        """
        if self._state not in (SessionState.AUTHENTICATED, SessionState.UNKNOWN) or not self._address:
            return None
        return self.store.get(self._address)

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, state: SessionState) -> None:
        if state == self._state:
            return
        LOG.info("session %s -> %s (%s)", self._state.value, state.value, self._address)
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _stale(self, generation: int, address: Optional[str] = None, session_id: Optional[str] = None) -> bool:
        if generation != self._generation:
            return True
        return session_id is not None and self.store.get(address) != session_id

    async def set_address(self, address: Optional[str]) -> SessionState:
        """Switch to another wallet address and validate its stored session."""
        self._generation += 1
        self._address = address
        self._session = None
        self._set_state(SessionState.ANONYMOUS)
        return await self.validate()

    async def validate(self) -> SessionState:
        """Check the stored session of the current address with the allocator."""
        if self._state == SessionState.AUTHENTICATING:
            return self._state

        address = self._address
        session_id = self.store.get(address) if address else None
        if not address or not session_id:
            self._session = None
            self._set_state(SessionState.ANONYMOUS)
            return self._state

        generation = self._generation
        try:
            session = await self.client.get_session(session_id)
        except AuthenticationError as exc:
            if self._stale(generation, address, session_id):
                return self._state
            LOG.info("session rejected by allocator: %s", exc)
            self.invalidate(session_id)
            return self._state
        except CompactClientError as exc:
            if self._stale(generation, address, session_id):
                return self._state
            LOG.warning("could not validate session for %s: %s", address, exc)
            self._session = None
            self._set_state(SessionState.UNKNOWN)
            return self._state

        if self._stale(generation, address, session_id):
            LOG.debug("dropping validation of superseded session %s", session_id)
            return self._state

        if session.address.lower() != address.lower():
            LOG.info("session belongs to %s, not %s", session.address, address)
            self.invalidate(session_id)
        elif session.is_expired(self.clock()):
            LOG.info("session for %s expired at %s", address, session.expires_at.isoformat())
            self.invalidate(session_id)
        else:
            self._session = session
            self._set_state(SessionState.AUTHENTICATED)
        return self._state

    async def sign_in(self, chain_id: Optional[int] = None) -> Optional[Session]:
        """Sign the allocator challenge and open a session.

        Returns:
            The new session, or None when the holder declined to sign

        Raises:
            SessionRequiredError: when no wallet address is connected
        """
        address = self._address
        if not address:
            raise SessionRequiredError("No wallet address connected")
        chain = int(chain_id if chain_id is not None else self.wallet.chain_id)

        # validations still in flight refer to the session being replaced
        self._generation += 1
        generation = self._generation
        self._set_state(SessionState.AUTHENTICATING)
        try:
            payload = await self.client.get_session_payload(chain, address)
            signature = await self.wallet.sign_message(payload.to_message())
            session = await self.client.create_session(signature, payload)
        except Exception as exc:
            if not self._stale(generation):
                self._set_state(SessionState.ANONYMOUS)
            if is_user_rejection(exc):
                LOG.info("sign-in declined for %s", address)
                return None
            if self.notifier:
                self.notifier.error("Sign-in Failed", str(exc))
            raise

        if self._stale(generation):
            LOG.debug("dropping session created for previous address %s", address)
            return None

        self.store.set(address, session.id)
        self._session = session
        self._set_state(SessionState.AUTHENTICATED)
        return session

    async def sign_out(self) -> None:
        """Delete the session on the allocator and forget it locally."""
        self._generation += 1
        address = self._address
        session_id = self.store.get(address) if address else None
        if session_id:
            try:
                await self.client.delete_session(session_id)
            except CompactClientError as exc:
                LOG.warning("sign-out request failed: %s", exc)
        self.invalidate()

    def invalidate(self, session_id: Optional[str] = None) -> None:
        """Forget the session of the current address.

        With ``session_id`` only that session is forgotten: a rejection of
        an id that has since been replaced by a new sign-in is ignored.
        """
        if session_id is not None and self._address and self.store.get(self._address) != session_id:
            LOG.debug("ignoring rejection of replaced session %s", session_id)
            return
        if self._address:
            self.store.remove(self._address)
        self._session = None
        self._set_state(SessionState.ANONYMOUS)

    def start(self) -> None:
        self._ticker.start()

    async def stop(self) -> None:
        self._generation += 1
        await self._ticker.stop()

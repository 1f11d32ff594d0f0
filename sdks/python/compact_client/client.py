"""Allocator REST client."""

import logging
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

import httpx

from .exceptions import (
    APIError,
    AuthenticationError,
    NetworkError,
    ResponseSchemaError,
    SessionRequiredError,
    ValidationError,
)
from .formatting import parse_uint
from .models import (
    Balance,
    CompactMessage,
    CompactRecord,
    CompactResponse,
    HealthStatus,
    Session,
    SessionPayload,
    is_address,
)

LOG = logging.getLogger("compact_client.client")

SESSION_HEADER = "x-session-id"


class _AllocatorClientBase:
    """Request building and response handling shared by both clients."""

    def __init__(self, base_url: str = "http://localhost:3000"):
        self.base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def _validate_address(self, address: str) -> None:
        """Validate address format."""
        if not is_address(address):
            raise ValidationError({"address": "Invalid address format"})

    def _validate_chain_id(self, chain_id: Union[str, int]) -> int:
        """Validate chain id format."""
        try:
            value = int(chain_id)
        except (TypeError, ValueError):
            raise ValidationError({"chainId": "Invalid chain ID format"})
        if value <= 0:
            raise ValidationError({"chainId": "Invalid chain ID format"})
        return value

    def _auth_headers(self, session_id: Optional[str]) -> Dict[str, str]:
        if not session_id:
            raise SessionRequiredError("Session ID required")
        return {SESSION_HEADER: session_id}

    def _handle_response(self, response: httpx.Response) -> Any:
        """Handle HTTP response and raise appropriate exceptions."""
        if response.status_code in (401, 403):
            raise AuthenticationError(
                self._error_message(response, "Invalid or missing session"),
                status_code=response.status_code,
            )
        elif response.status_code >= 400:
            message = self._error_message(response, f"HTTP {response.status_code}")
            LOG.warning("allocator responded %s: %s", response.status_code, message)
            raise APIError(message, status_code=response.status_code)

        try:
            return response.json() if response.content else {}
        except ValueError as e:
            raise NetworkError(f"Failed to parse response: {e}")

    @staticmethod
    def _error_message(response: httpx.Response, default: str) -> str:
        try:
            error_data = response.json()
        except ValueError:
            return f"{default}: {response.text}" if response.text else default
        if isinstance(error_data, dict) and error_data.get("error"):
            return str(error_data["error"])
        return default

    @staticmethod
    def _parse_session(data: Any) -> Session:
        if isinstance(data, dict) and data.get("error") == "Invalid session":
            raise AuthenticationError("Invalid session")
        if not isinstance(data, dict) or not isinstance(data.get("session"), dict):
            raise ResponseSchemaError("session response missing 'session'")
        return Session.from_dict(data["session"])

    @staticmethod
    def _parse_payload(data: Any) -> SessionPayload:
        if not isinstance(data, dict) or not isinstance(data.get("session"), dict):
            raise ResponseSchemaError("session payload response missing 'session'")
        return SessionPayload.from_dict(data["session"])

    @staticmethod
    def _parse_balances(data: Any) -> List[Balance]:
        if not isinstance(data, dict) or not isinstance(data.get("balances"), list):
            raise ResponseSchemaError("balances response missing 'balances' list")
        return [Balance.from_dict(entry) for entry in data["balances"]]

    @staticmethod
    def _parse_nonce(data: Any) -> int:
        if not isinstance(data, dict) or data.get("nonce") in (None, ""):
            raise ResponseSchemaError("suggested nonce response missing 'nonce'")
        try:
            return parse_uint(data["nonce"])
        except (TypeError, ValueError):
            raise ResponseSchemaError(f"malformed nonce {data['nonce']!r}")

    @staticmethod
    def _compact_body(chain_id: int, compact: CompactMessage, sponsor_signature: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"chainId": str(chain_id), "compact": compact.to_dict()}
        if sponsor_signature:
            body["sponsorSignature"] = sponsor_signature
        return body

    @staticmethod
    def _parse_compacts(data: Any) -> List[CompactRecord]:
        if not isinstance(data, list):
            raise ResponseSchemaError("compacts response must be a list")
        return [CompactRecord.from_dict(item) for item in data]


class AllocatorClient(_AllocatorClientBase):
    """Allocator REST API client."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the allocator client.

        Args:
            base_url: The base URL of the allocator API
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        super().__init__(base_url)
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.client.request(method, self._url(path), **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error during {method} {path}: {e}")
        return self._handle_response(response)

    def health(self) -> HealthStatus:
        """Fetch allocator status, addresses and per-chain configuration."""
        return HealthStatus.from_dict(self._request("GET", "/health"))

    def get_session_payload(self, chain_id: Union[str, int], address: str) -> SessionPayload:
        """Fetch the sign-in challenge for ``address`` on ``chain_id``."""
        chain = self._validate_chain_id(chain_id)
        self._validate_address(address)
        return self._parse_payload(self._request("GET", f"/session/{chain}/{address}"))

    def create_session(self, signature: str, payload: SessionPayload) -> Session:
        """Exchange a signed challenge for a session."""
        data = self._request("POST", "/session", json={"signature": signature, "payload": payload.to_dict()})
        return self._parse_session(data)

    def get_session(self, session_id: str) -> Session:
        """Fetch the session behind ``session_id``."""
        return self._parse_session(self._request("GET", "/session", headers=self._auth_headers(session_id)))

    def delete_session(self, session_id: str) -> None:
        """Sign out."""
        self._request("DELETE", "/session", headers=self._auth_headers(session_id))

    def get_suggested_nonce(self, session_id: str, chain_id: Union[str, int]) -> int:
        """Ask the allocator for an unused nonce on ``chain_id``."""
        chain = self._validate_chain_id(chain_id)
        data = self._request("GET", f"/suggested-nonce/{chain}", headers=self._auth_headers(session_id))
        return self._parse_nonce(data)

    def request_allocation(
        self,
        session_id: str,
        chain_id: Union[str, int],
        compact: CompactMessage,
        sponsor_signature: Optional[str] = None,
    ) -> CompactResponse:
        """Request an allocator signature for ``compact``."""
        chain = self._validate_chain_id(chain_id)
        data = self._request(
            "POST",
            "/compact",
            json=self._compact_body(chain, compact, sponsor_signature),
            headers=self._auth_headers(session_id),
        )
        return CompactResponse.from_dict(data)

    def get_balances(self, session_id: str) -> List[Balance]:
        """Balances of every resource lock managed by the allocator."""
        return self._parse_balances(self._request("GET", "/balances", headers=self._auth_headers(session_id)))

    def get_balance(self, session_id: str, chain_id: Union[str, int], lock_id: Union[str, int]) -> Balance:
        """Balance of a single resource lock."""
        chain = self._validate_chain_id(chain_id)
        data = self._request("GET", f"/balance/{chain}/{lock_id}", headers=self._auth_headers(session_id))
        if not isinstance(data, dict):
            raise ResponseSchemaError("balance response must be an object")
        return Balance.from_dict({"chainId": chain, "lockId": lock_id, **data})

    def list_compacts(self, session_id: str) -> List[CompactRecord]:
        """Compacts previously signed for the session's address."""
        return self._parse_compacts(self._request("GET", "/compacts", headers=self._auth_headers(session_id)))

    def get_compact(self, session_id: str, chain_id: Union[str, int], claim_hash: str) -> CompactRecord:
        """A single compact by claim hash."""
        chain = self._validate_chain_id(chain_id)
        data = self._request("GET", f"/compact/{chain}/{claim_hash}", headers=self._auth_headers(session_id))
        return CompactRecord.from_dict(data)

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


class AsyncAllocatorClient(_AllocatorClientBase):
    """Async allocator REST API client."""

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the async allocator client.

        Args:
            base_url: The base URL of the allocator API
            timeout: Request timeout in seconds
            transport: Optional httpx transport, mainly for tests
        """
        super().__init__(base_url)
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, self._url(path), **kwargs)
        except httpx.RequestError as e:
            raise NetworkError(f"Network error during {method} {path}: {e}")
        return self._handle_response(response)

    async def health(self) -> HealthStatus:
        """Fetch allocator status, addresses and per-chain configuration."""
        return HealthStatus.from_dict(await self._request("GET", "/health"))

    async def get_session_payload(self, chain_id: Union[str, int], address: str) -> SessionPayload:
        """Fetch the sign-in challenge for ``address`` on ``chain_id``."""
        chain = self._validate_chain_id(chain_id)
        self._validate_address(address)
        return self._parse_payload(await self._request("GET", f"/session/{chain}/{address}"))

    async def create_session(self, signature: str, payload: SessionPayload) -> Session:
        """Exchange a signed challenge for a session."""
        data = await self._request(
            "POST", "/session", json={"signature": signature, "payload": payload.to_dict()}
        )
        return self._parse_session(data)

    async def get_session(self, session_id: str) -> Session:
        """Fetch the session behind ``session_id``.

        Raises:
            AuthenticationError: when the allocator rejects the session
        """
        data = await self._request("GET", "/session", headers=self._auth_headers(session_id))
        return self._parse_session(data)

    async def delete_session(self, session_id: str) -> None:
        """Sign out."""
        await self._request("DELETE", "/session", headers=self._auth_headers(session_id))

    async def get_suggested_nonce(self, session_id: str, chain_id: Union[str, int]) -> int:
        """Ask the allocator for an unused nonce on ``chain_id``."""
        chain = self._validate_chain_id(chain_id)
        data = await self._request("GET", f"/suggested-nonce/{chain}", headers=self._auth_headers(session_id))
        return self._parse_nonce(data)

    async def request_allocation(
        self,
        session_id: str,
        chain_id: Union[str, int],
        compact: CompactMessage,
        sponsor_signature: Optional[str] = None,
    ) -> CompactResponse:
        """Request an allocator signature for ``compact``.

        Args:
            session_id: Live session id
            chain_id: Chain the compact is bound to
            compact: The compact to sign; a ``None`` nonce lets the
                allocator pick one
            sponsor_signature: EIP-712 signature of the sponsor

        Returns:
            CompactResponse with the claim hash, allocator signature and nonce
        """
        chain = self._validate_chain_id(chain_id)
        data = await self._request(
            "POST",
            "/compact",
            json=self._compact_body(chain, compact, sponsor_signature),
            headers=self._auth_headers(session_id),
        )
        return CompactResponse.from_dict(data)

    async def get_balances(self, session_id: str) -> List[Balance]:
        """Balances of every resource lock managed by the allocator."""
        data = await self._request("GET", "/balances", headers=self._auth_headers(session_id))
        return self._parse_balances(data)

    async def get_balance(self, session_id: str, chain_id: Union[str, int], lock_id: Union[str, int]) -> Balance:
        """Balance of a single resource lock."""
        chain = self._validate_chain_id(chain_id)
        data = await self._request("GET", f"/balance/{chain}/{lock_id}", headers=self._auth_headers(session_id))
        if not isinstance(data, dict):
            raise ResponseSchemaError("balance response must be an object")
        return Balance.from_dict({"chainId": chain, "lockId": lock_id, **data})

    async def list_compacts(self, session_id: str) -> List[CompactRecord]:
        """Compacts previously signed for the session's address."""
        data = await self._request("GET", "/compacts", headers=self._auth_headers(session_id))
        return self._parse_compacts(data)

    async def get_compact(self, session_id: str, chain_id: Union[str, int], claim_hash: str) -> CompactRecord:
        """A single compact by claim hash."""
        chain = self._validate_chain_id(chain_id)
        data = await self._request(
            "GET", f"/compact/{chain}/{claim_hash}", headers=self._auth_headers(session_id)
        )
        return CompactRecord.from_dict(data)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

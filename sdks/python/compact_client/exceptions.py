"""Compact client exception classes."""

from typing import Dict, List, Optional


class CompactClientError(Exception):
    """Base exception for all compact client errors."""
    pass


class AuthenticationError(CompactClientError):
    """Raised when the allocator rejects the session (401/403)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionRequiredError(CompactClientError):
    """Raised when an authenticated call is attempted without a live session."""
    pass


class NetworkError(CompactClientError):
    """Raised when network operations fail."""
    pass


class APIError(CompactClientError):
    """Raised when the allocator answers with an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseSchemaError(CompactClientError):
    """Raised when a response does not have the expected shape."""
    pass


class IndexerError(CompactClientError):
    """Raised when the indexer query fails."""

    def __init__(
        self,
        message: str,
        errors: Optional[List[dict]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.errors = errors or []
        self.status_code = status_code


class ValidationError(CompactClientError):
    """Raised when input validation fails.

    ``errors`` maps a form field name to a human-readable message.
    """

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        self.errors = dict(errors)
        if message is None:
            message = "; ".join(f"{field}: {msg}" for field, msg in self.errors.items())
        super().__init__(message)


class FormLockedError(ValidationError):
    """Raised when the form is edited while an allocation is held."""
    pass


class ProtocolError(CompactClientError):
    """Raised when the current allocation can no longer be used."""
    pass


class NonceConsumedError(ProtocolError):
    """Raised when an allocation nonce has already been consumed."""

    def __init__(self, message: str, nonce: Optional[int] = None):
        super().__init__(message)
        self.nonce = nonce


class UserRejectedError(CompactClientError):
    """Raised when the wallet holder declines a signing prompt."""
    pass


class NetworkSwitchError(CompactClientError):
    """Raised when the wallet cannot switch to the target chain."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class TransactionFailedError(CompactClientError):
    """Raised when a submitted transaction does not succeed."""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash

import pytest

from compact_client.client import AsyncAllocatorClient
from compact_client.indexer import IndexerClient
from compact_client.notifications import Notifier
from compact_client.session import SessionManager
from compact_client.store import SessionStore

from tests.fakes import (
    ADDRESS,
    ALLOCATOR_URL,
    INDEXER_URL,
    NOW,
    SESSION_ID,
    FakeWallet,
    HttpStub,
    health_body,
    session_body,
)


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def stub():
    """Allocator stub that knows /health and a valid session."""
    allocator = HttpStub()
    allocator.add("GET", "/health", json=health_body())
    allocator.add("GET", "/session", json=session_body())
    return allocator


@pytest.fixture
def indexer_stub():
    return HttpStub()


@pytest.fixture
def allocator(stub):
    return AsyncAllocatorClient(base_url=ALLOCATOR_URL, transport=stub.transport())


@pytest.fixture
def indexer(indexer_stub):
    return IndexerClient(url=INDEXER_URL, transport=indexer_stub.transport())


@pytest.fixture
def store():
    s = SessionStore()
    s.set(ADDRESS, SESSION_ID)
    return s


@pytest.fixture
def sessions(allocator, wallet, store, notifier):
    """Session manager holding a stored, not yet validated, session id."""
    return SessionManager(allocator, wallet, store, notifier=notifier, clock=lambda: NOW)

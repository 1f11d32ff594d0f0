"""GraphQL indexer client."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .cache import CachedResponse, QueryCache, cache_key
from .config import DEFAULT_INDEXER_URL
from .exceptions import IndexerError, NetworkError, ResponseSchemaError
from .models import IndexedLockBalance

LOG = logging.getLogger("compact_client.indexer")

RESOURCE_LOCKS_QUERY = """
  query GetResourceLocks(
    $address: String!
  ) {
    account(address: $address) {
      resourceLocks(
        orderBy: "balance"
        orderDirection: "DESC"
      ) {
        items {
          chainId
          resourceLock {
            lockId
            allocator {
              account: allocatorAddress
            }
            token {
              tokenAddress
              name
              symbol
              decimals
            }
            resetPeriod
            isMultichain
            totalSupply
          }
          balance
          withdrawalStatus
          withdrawableAt
        }
      }
    }
  }
"""


class IndexerClient:
    """Async client for the public resource-lock indexer.

    Every query goes through a :class:`QueryCache`, so unchanged results
    cost a 304 round trip and come back as the same object.
    """

    def __init__(
        self,
        url: str = DEFAULT_INDEXER_URL,
        cache: Optional[QueryCache] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.cache = cache if cache is not None else QueryCache()
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._parsed: Dict[str, Tuple[Any, List[IndexedLockBalance]]] = {}

    async def query(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Any:
        """Run a GraphQL query and return its ``data`` member.

        Raises:
            IndexerError: on a non-2xx status or GraphQL errors
            NetworkError: on transport or decode failures
        """
        key = cache_key(query, variables)

        async def request(etag: Optional[str]) -> CachedResponse:
            headers = {"Content-Type": "application/json"}
            if etag:
                headers["If-None-Match"] = etag
            try:
                response = await self.client.post(
                    self.url,
                    json={"query": query, "variables": variables or {}},
                    headers=headers,
                )
            except httpx.RequestError as e:
                raise NetworkError(f"Network error querying indexer: {e}")

            if response.status_code == 304:
                return CachedResponse(not_modified=True)
            if response.status_code >= 400:
                LOG.warning("indexer responded %s %s", response.status_code, response.reason_phrase)
                raise IndexerError(
                    "Network response was not ok",
                    status_code=response.status_code,
                )
            try:
                body = response.json()
            except ValueError as e:
                raise NetworkError(f"Failed to parse indexer response: {e}")
            if not isinstance(body, dict):
                raise ResponseSchemaError("indexer: expected a JSON object")
            if body.get("errors"):
                raise IndexerError("GraphQL query failed", errors=body["errors"])
            return CachedResponse(value=body.get("data"), etag=response.headers.get("etag"))

        try:
            return await self.cache.query(key, request)
        except Exception:
            LOG.debug("indexer request failed for variables=%s endpoint=%s", variables, self.url)
            raise

    async def fetch_resource_locks(self, address: str) -> List[IndexedLockBalance]:
        """Resource locks held by ``address`` across all chains.

        Args:
            address: Account address; lower-cased for the query

        Returns:
            List of IndexedLockBalance, empty when the account is unknown
        """
        variables = {"address": address.lower()}
        data = await self.query(RESOURCE_LOCKS_QUERY, variables)

        key = cache_key(RESOURCE_LOCKS_QUERY, variables)
        previous = self._parsed.get(key)
        if previous is not None and previous[0] is data:
            return previous[1]

        locks = self._parse_resource_locks(data)
        self._parsed[key] = (data, locks)
        return locks

    @staticmethod
    def _parse_resource_locks(data: Any) -> List[IndexedLockBalance]:
        if data is None:
            return []
        if not isinstance(data, dict):
            raise ResponseSchemaError("indexer: data must be an object")
        account = data.get("account")
        if account is None:
            return []
        try:
            items = account["resourceLocks"]["items"]
        except (KeyError, TypeError):
            raise ResponseSchemaError("indexer: missing account.resourceLocks.items")
        if not isinstance(items, list):
            raise ResponseSchemaError("indexer: resourceLocks.items must be a list")
        return [IndexedLockBalance.from_dict(item) for item in items]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

"""
Height-Pinned Ledger Query Client - Cosmos SDK REST gateway over aiohttp.

Every state read carries the `x-cosmos-block-height` header so the node
answers from that height. A node that cannot serve the height (pruned,
not yet produced) answers with an error status, which is raised as
QueryError. Nothing here retries.
"""

import asyncio
import base64
import json
import logging
import time
from typing import Any, Optional

import aiohttp

from balance_sources.exceptions import QueryError


logger = logging.getLogger(__name__)


HEIGHT_HEADER = "x-cosmos-block-height"


class LedgerQueryClient:
    """
    Read-only client for height-pinned ledger queries.

    The aiohttp session is created on first use and reused until
    close(). Requests are independent, so one session is shared by all
    concurrent reads of a source.
    """

    DEFAULT_TIMEOUT = 30.0

    SMART_QUERY_PATH = "/cosmwasm/wasm/v1/contract/{contract}/smart/{query}"
    SUPPLY_PATH = "/cosmos/bank/v1beta1/supply/by_denom"
    DENOM_OWNERS_PATH = "/cosmos/bank/v1beta1/denom_owners_by_query"
    LATEST_BLOCK_PATH = "/cosmos/base/tendermint/v1beta1/blocks/latest"

    def __init__(
        self,
        endpoint: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
        source_name: str = "ledger",
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None
        self._source_name = source_name
        self._request_count = 0
        self._error_count = 0
        self._last_latency_ms: Optional[float] = None

    @property
    def endpoint(self) -> str:
        return self._endpoint

    # ─────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────

    async def query_contract(
        self,
        contract: str,
        height: int,
        payload: dict[str, Any],
    ) -> Any:
        """Run a CosmWasm smart query against `contract` at `height`."""
        encoded = base64.urlsafe_b64encode(
            json.dumps(payload, separators=(",", ":")).encode()
        ).decode()
        path = self.SMART_QUERY_PATH.format(contract=contract, query=encoded)
        data = await self._request(path, height=height)
        if "data" not in data:
            raise QueryError(
                message="Smart query response has no data field",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=self._endpoint + path,
                height=height,
            )
        return data["data"]

    async def total_supply(self, denom: str, height: int) -> int:
        """Chain-wide supply of `denom` at `height`."""
        data = await self._request(self.SUPPLY_PATH, params={"denom": denom}, height=height)
        try:
            return int(data["amount"]["amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise QueryError(
                message=f"Malformed supply response for {denom}",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=self._endpoint + self.SUPPLY_PATH,
                height=height,
                original_error=e,
            ) from e

    async def denom_owners(
        self,
        denom: str,
        height: int,
        limit: int,
        key: Optional[str] = None,
    ) -> tuple[list[tuple[str, str]], Optional[str]]:
        """
        One page of bank-module holders of `denom`.

        Returns ([(address, amount), ...], next_key). next_key is None
        on the last page.
        """
        params = {"denom": denom, "pagination.limit": str(limit)}
        if key:
            params["pagination.key"] = key
        data = await self._request(self.DENOM_OWNERS_PATH, params=params, height=height)
        try:
            owners = [
                (owner["address"], owner["balance"]["amount"])
                for owner in data.get("denom_owners", [])
            ]
        except (KeyError, TypeError) as e:
            raise QueryError(
                message=f"Malformed denom owners response for {denom}",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=self._endpoint + self.DENOM_OWNERS_PATH,
                height=height,
                original_error=e,
            ) from e
        next_key = (data.get("pagination") or {}).get("next_key") or None
        return owners, next_key

    async def latest_height(self) -> int:
        """Height of the latest block known to the node."""
        data = await self._request(self.LATEST_BLOCK_PATH)
        try:
            block = data.get("sdk_block") or data["block"]
            return int(block["header"]["height"])
        except (KeyError, TypeError, ValueError) as e:
            raise QueryError(
                message="Malformed latest block response",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=self._endpoint + self.LATEST_BLOCK_PATH,
                original_error=e,
            ) from e

    # ─────────────────────────────────────────────────────────────
    # HTTP Helpers
    # ─────────────────────────────────────────────────────────────

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        path: str,
        params: Optional[dict[str, str]] = None,
        height: Optional[int] = None,
    ) -> dict[str, Any]:
        """GET `path`; raises QueryError on any non-success."""
        session = await self._get_session()
        url = self._endpoint + path
        headers = {HEIGHT_HEADER: str(height)} if height is not None else None

        self._request_count += 1
        start_time = time.time()
        try:
            async with session.get(url, params=params, headers=headers) as response:
                self._last_latency_ms = (time.time() - start_time) * 1000

                if response.status >= 400:
                    body = await response.text()
                    self._error_count += 1
                    raise QueryError(
                        message=f"HTTP {response.status}",
                        source_name=self._source_name,
                        status_code=response.status,
                        response_body=body[:500],
                        request_url=url,
                        height=height,
                    )

                data = await response.json(content_type=None)

        except aiohttp.ClientError as e:
            self._error_count += 1
            raise QueryError(
                message=f"Connection error: {e}",
                source_name=self._source_name,
                request_url=url,
                height=height,
                original_error=e,
            ) from e
        except asyncio.TimeoutError as e:
            self._error_count += 1
            raise QueryError(
                message=f"Request timed out after {self._timeout}s",
                source_name=self._source_name,
                request_url=url,
                height=height,
                original_error=e,
            ) from e
        except json.JSONDecodeError as e:
            self._error_count += 1
            raise QueryError(
                message="Response is not valid JSON",
                source_name=self._source_name,
                request_url=url,
                height=height,
                original_error=e,
            ) from e

        if not isinstance(data, dict):
            self._error_count += 1
            raise QueryError(
                message="Unexpected response shape",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=url,
                height=height,
            )

        # gRPC-gateway errors can come back with a 200 and a code
        code = data.get("code")
        if code:
            self._error_count += 1
            raise QueryError(
                message=f"Query error: {data.get('message', '')} Code: {code}",
                source_name=self._source_name,
                response_body=str(data)[:500],
                request_url=url,
                height=height,
            )

        logger.debug(f"[{self._source_name}] GET {path} @ {height} OK")
        return data

    def get_stats(self) -> dict[str, Any]:
        """Request statistics."""
        return {
            "requests": self._request_count,
            "errors": self._error_count,
            "last_latency_ms": self._last_latency_ms,
        }

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    async def close(self) -> None:
        """Close resources."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "LedgerQueryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"<LedgerQueryClient(endpoint={self._endpoint})>"

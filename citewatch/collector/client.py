"""
SerpApi Client

Async HTTP client for the search-data provider with:
- Connection pooling
- Per-request timeouts (a hung query must never stall a scan)
- Provider-level error detection
- Request/response logging

No retry here: the scheduled trigger's cadence is the only retry mechanism.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


def safe_get(data: Any, *path, default=None) -> Any:
    """
    Safely walk nested dicts from a SerpApi response.

    Handles cases where an intermediate level is None, missing, or not a dict.

    Example:
        safe_get(response, "ai_overview", "references", default=[])
    """
    current = data
    for key in path:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current


class SerpApiError(Exception):
    """Custom exception for SerpApi errors."""
    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class SerpApiClient:
    """
    Async client for SerpApi.

    Usage:
        client = SerpApiClient(api_key="your_key")

        result = await client.search({
            "engine": "google",
            "q": "best crm software",
            "location": "United States",
        })

        await client.close()
    """

    BASE_URL = "https://serpapi.com"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        max_connections: int = 20,
        timeout: float = 7.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize SerpApi client.

        Args:
            api_key: SerpApi API key
            base_url: Override the API base URL
            max_connections: Maximum concurrent connections
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        if not api_key:
            raise ValueError("SERPAPI_KEY not provided")

        self.api_key = api_key
        self.timeout = timeout

        self._client = httpx.AsyncClient(
            base_url=base_url or self.BASE_URL,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

        self._closed = False

    async def search(
        self,
        params: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Run one search query.

        Args:
            params: Query parameters (engine, q, location, ...)
            timeout: Per-request timeout override in seconds

        Returns:
            Parsed JSON response

        Raises:
            SerpApiError: On timeout, non-success status or provider error
        """
        if self._closed:
            raise SerpApiError("Client is closed")

        query = {**params, "api_key": self.api_key, "output": "json"}
        engine = params.get("engine", "google")
        request_timeout = httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT

        logger.debug(f"GET /search.json engine={engine} q={params.get('q')!r}")

        try:
            response = await self._client.get("/search.json", params=query, timeout=request_timeout)
        except httpx.TimeoutException as e:
            raise SerpApiError(f"SerpApi {engine} request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise SerpApiError(f"SerpApi {engine} HTTP error: {e}") from e

        if response.status_code != 200:
            raise SerpApiError(
                f"SerpApi {engine} request failed: {response.status_code}",
                status_code=response.status_code,
                response=self._safe_json(response),
            )

        result = self._safe_json(response)
        if result is None:
            raise SerpApiError(f"SerpApi {engine} returned a non-JSON body", status_code=200)

        # Provider-level errors come back as 200 with an "error" field
        error_msg = result.get("error")
        if error_msg and not self._is_empty_result(error_msg):
            raise SerpApiError(f"SerpApi error: {error_msg}", status_code=200, response=result)

        return result

    @staticmethod
    def _safe_json(response: httpx.Response) -> Optional[Dict[str, Any]]:
        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _is_empty_result(message: str) -> bool:
        # "Google hasn't returned any results for this query." is a valid empty answer
        return "hasn't returned any results" in message

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# ============================================================================
# TESTING
# ============================================================================

async def test_client():
    """Test the client with a simple request."""
    import os
    from dotenv import load_dotenv

    load_dotenv()

    api_key = os.getenv("SERPAPI_KEY")
    if not api_key:
        print("Missing SERPAPI_KEY")
        return

    async with SerpApiClient(api_key=api_key) as client:
        result = await client.search({
            "engine": "google",
            "q": "best crm software",
            "location": "United States",
            "num": 10,
        })

        print(f"Organic results: {len(result.get('organic_results', []))}")
        print(f"AI overview present: {'ai_overview' in result}")


if __name__ == "__main__":
    asyncio.run(test_client())

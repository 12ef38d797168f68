"""SerpAPI web search provider.

API: https://serpapi.com/search-api
"""

import httpx

from polymind.infrastructure.search.base import SearchProvider, SearchResult
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

SERPAPI_BASE_URL = "https://serpapi.com"


class SerpApiSearchProvider(SearchProvider):
    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        engine: str = "google",
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = SERPAPI_BASE_URL
        self.timeout = timeout
        self.engine = engine
        self._client: httpx.AsyncClient | None = http_client

    @property
    def provider_name(self) -> str:
        return "serpapi"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str, top_k: int = 5) -> list[SearchResult]:
        """Run a search; any failure yields an empty list."""
        if not query.strip():
            return []
        try:
            client = await self._get_client()
            response = await client.get(
                f"{self.base_url}/search.json",
                params={
                    "engine": self.engine,
                    "q": query,
                    "num": top_k,
                    "api_key": self.api_key,
                },
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("search_http_error", provider=self.provider_name, status=e.response.status_code)
            return []
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("search_failed", provider=self.provider_name, error=type(e).__name__)
            return []

        results = []
        for item in data.get("organic_results", [])[:top_k]:
            title = item.get("title")
            link = item.get("link")
            if not title or not link:
                continue
            results.append(SearchResult(title=title, link=link, snippet=item.get("snippet", "")))
        return results

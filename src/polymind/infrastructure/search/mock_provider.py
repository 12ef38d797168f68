"""Mock search provider for development and testing."""

from urllib.parse import quote

from polymind.infrastructure.search.base import SearchProvider, SearchResult


class MockSearchProvider(SearchProvider):
    """Returns canned results derived from the query."""

    @property
    def provider_name(self) -> str:
        return "mock"

    async def search(self, query: str, top_k: int = 5) -> list[SearchResult]:
        if not query.strip():
            return []
        results = [
            SearchResult(
                title=f'Search results for "{query}"',
                link=f"https://www.bing.com/search?q={quote(query)}",
                snippet=(
                    f"Overview information about {query}. "
                    "This is mock data; configure a real search provider for live results."
                ),
            ),
            SearchResult(
                title=f"{query} - Wikipedia",
                link=f"https://en.wikipedia.org/wiki/{quote(query.replace(' ', '_'))}",
                snippet=f"Encyclopedia entry about {query}.",
            ),
            SearchResult(
                title="Configuring a search provider",
                link="https://github.com/polymind/polymind",
                snippet="Set SEARCH_PROVIDER=serpapi and SERPAPI_API_KEY to use live web search.",
            ),
        ]
        return results[:top_k]

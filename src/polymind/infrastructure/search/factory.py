"""Factory for the web search provider.

Providers hold an httpx client, so one instance is built at startup and
closed at shutdown.
"""

from polymind.config import Settings
from polymind.infrastructure.search.base import SearchProvider
from polymind.infrastructure.search.mock_provider import MockSearchProvider
from polymind.infrastructure.search.serpapi import SerpApiSearchProvider


def build_search_provider(settings: Settings) -> SearchProvider:
    if settings.search_provider == "serpapi" and settings.serpapi_api_key:
        return SerpApiSearchProvider(api_key=settings.serpapi_api_key)
    return MockSearchProvider()


async def close_search_provider(provider: SearchProvider | None) -> None:
    if provider is not None:
        await provider.close()

"""Web search providers for search-augmented chat."""

from polymind.infrastructure.search.base import SearchProvider, SearchResult
from polymind.infrastructure.search.factory import build_search_provider, close_search_provider
from polymind.infrastructure.search.mock_provider import MockSearchProvider
from polymind.infrastructure.search.serpapi import SerpApiSearchProvider

__all__ = [
    "SearchProvider",
    "SearchResult",
    "MockSearchProvider",
    "SerpApiSearchProvider",
    "build_search_provider",
    "close_search_provider",
]

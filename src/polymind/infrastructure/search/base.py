"""Base classes for web search providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SearchResult:
    """One web search hit."""

    title: str
    link: str
    snippet: str


class SearchProvider(ABC):
    """Web search used by the ``search`` chat mode.

    Implementations never raise for vendor trouble; a failed search is an
    empty result list and the chat continues without augmentation.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def search(self, query: str, top_k: int = 5) -> list[SearchResult]:
        pass

    async def close(self) -> None:
        return None

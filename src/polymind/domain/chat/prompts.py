"""Prompt text used when augmenting an agent turn."""

from collections.abc import Sequence

from polymind.infrastructure.search.base import SearchResult

# Written into an agent's placeholder message when its turn fails
FALLBACK_REPLY = "Sorry, I ran into a problem answering that. Please try again."

DEEP_THINK_DIRECTIVE = """Think this through carefully before answering.

1. Restate what is actually being asked.
2. Work through the problem step by step, checking each step.
3. Consider alternative interpretations and approaches, and say why you reject them.
4. Give a clear final answer, then briefly summarise the reasoning behind it.
"""

SEARCH_PROMPT_TEMPLATE = """User question: {query}

Answer the question using the following search results:
{results}

Base your answer on the information above. If the results are not relevant, answer from your own knowledge."""


def build_search_prompt(query: str, results: Sequence[SearchResult]) -> str:
    """Splice search results into the user's message.

    With no results the original message is returned unchanged.
    """
    if not results:
        return query
    formatted = "\n\n".join(
        f"[{i}] {result.title}\n{result.snippet}" for i, result in enumerate(results, start=1)
    )
    return SEARCH_PROMPT_TEMPLATE.format(query=query, results=formatted)

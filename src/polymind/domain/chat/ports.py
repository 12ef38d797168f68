"""Ports used by the chat domain.

Defined as Protocols so domain code can be tested without FastAPI, the
database or Redis.
"""

from typing import Any, Protocol
from uuid import UUID

from polymind.domain.chat.types import AgentProfile, HistoryMessage, NotificationTopic, StoredContext
from polymind.infrastructure.search.base import SearchResult


class ContextStore(Protocol):
    """Upsert-by-(room, agent) storage of conversation context."""

    async def get(self, room_id: UUID, agent_id: UUID) -> StoredContext | None: ...

    async def upsert(
        self,
        room_id: UUID,
        agent_id: UUID,
        messages: list[dict[str, Any]],
        token_count: int,
    ) -> None: ...

    async def delete(self, room_id: UUID, agent_id: UUID) -> bool: ...


class MessageStore(Protocol):
    async def recent_messages(self, room_id: UUID, limit: int) -> list[HistoryMessage]:
        """Most recent room messages, newest first."""
        ...

    async def create_agent_message(self, room_id: UUID, agent_id: UUID, content: str) -> UUID: ...

    async def update_content(self, message_id: UUID, content: str) -> None: ...


class RoomDirectory(Protocol):
    async def list_agent_members(self, room_id: UUID) -> list[AgentProfile]: ...


class Notifier(Protocol):
    async def notify(
        self, room_id: UUID, topic: NotificationTopic, payload: dict[str, Any]
    ) -> None: ...


class SearchPort(Protocol):
    async def search(self, query: str, top_k: int) -> list[SearchResult]: ...

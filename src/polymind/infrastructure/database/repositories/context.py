"""Conversation context store backed by PostgreSQL."""

from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert

from polymind.domain.chat.types import StoredContext
from polymind.infrastructure.database.models.context import AgentConversationContext
from polymind.infrastructure.database.repositories.base import BaseRepository


class SqlContextStore(BaseRepository):
    async def get(self, room_id: UUID, agent_id: UUID) -> StoredContext | None:
        async with self._session() as session:
            result = await session.execute(
                select(
                    AgentConversationContext.context_messages,
                    AgentConversationContext.token_count,
                ).where(
                    AgentConversationContext.room_id == room_id,
                    AgentConversationContext.agent_id == agent_id,
                )
            )
            row = result.one_or_none()
        if row is None:
            return None
        return StoredContext(messages=row.context_messages, token_count=row.token_count)

    async def upsert(
        self,
        room_id: UUID,
        agent_id: UUID,
        messages: list[dict[str, Any]],
        token_count: int,
    ) -> None:
        """Insert or replace the row for (room_id, agent_id) in one statement."""
        stmt = insert(AgentConversationContext).values(
            room_id=room_id,
            agent_id=agent_id,
            context_messages=messages,
            token_count=token_count,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_agent_context_room_agent",
            set_={
                "context_messages": stmt.excluded.context_messages,
                "token_count": stmt.excluded.token_count,
                "updated_at": func.now(),
            },
        )
        async with self._session() as session:
            await session.execute(stmt)

    async def delete(self, room_id: UUID, agent_id: UUID) -> bool:
        async with self._session() as session:
            result = await session.execute(
                delete(AgentConversationContext).where(
                    AgentConversationContext.room_id == room_id,
                    AgentConversationContext.agent_id == agent_id,
                )
            )
        return bool(result.rowcount)

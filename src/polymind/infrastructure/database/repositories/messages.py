"""Chat message store."""

from uuid import UUID

from sqlalchemy import select, update

from polymind.domain.chat.types import HistoryMessage, SenderType
from polymind.infrastructure.database.models.room import ChatMessage, MemberType
from polymind.infrastructure.database.repositories.base import BaseRepository


class SqlMessageStore(BaseRepository):
    async def recent_messages(self, room_id: UUID, limit: int) -> list[HistoryMessage]:
        """Newest first, soft-deleted messages excluded."""
        async with self._session() as session:
            result = await session.execute(
                select(ChatMessage)
                .where(ChatMessage.room_id == room_id, ChatMessage.deleted_at.is_(None))
                .order_by(ChatMessage.created_at.desc())
                .limit(limit)
            )
            rows = result.scalars().all()
        return [
            HistoryMessage(
                sender_type=SenderType(row.sender_type),
                content=row.content,
                created_at=row.created_at,
                sender_agent_id=row.sender_agent_id,
            )
            for row in rows
        ]

    async def create_agent_message(self, room_id: UUID, agent_id: UUID, content: str) -> UUID:
        message = ChatMessage(
            room_id=room_id,
            sender_type=MemberType.AI.value,
            sender_agent_id=agent_id,
            content=content,
            mentions=[],
        )
        async with self._session() as session:
            session.add(message)
            await session.flush()
            message_id = message.id
        return message_id

    async def update_content(self, message_id: UUID, content: str) -> None:
        async with self._session() as session:
            await session.execute(
                update(ChatMessage).where(ChatMessage.id == message_id).values(content=content)
            )

"""Room membership lookups."""

from uuid import UUID

from sqlalchemy import select

from polymind.domain.chat.types import AgentProfile
from polymind.infrastructure.database.models.agent import AIAgent
from polymind.infrastructure.database.models.room import MemberType, RoomMember
from polymind.infrastructure.database.repositories.base import BaseRepository
from polymind.shared.crypto import reveal_secret


def to_agent_profile(agent: AIAgent) -> AgentProfile:
    return AgentProfile(
        id=agent.id,
        display_name=agent.display_name,
        provider=agent.provider,
        model_name=agent.model_name,
        system_prompt=agent.system_prompt,
        temperature=agent.temperature,
        max_tokens=agent.max_tokens,
        api_key=reveal_secret(agent.api_key_encrypted) or None,
        api_endpoint=agent.api_endpoint,
    )


class SqlRoomDirectory(BaseRepository):
    async def list_agent_members(self, room_id: UUID) -> list[AgentProfile]:
        async with self._session() as session:
            result = await session.execute(
                select(AIAgent)
                .join(RoomMember, RoomMember.agent_id == AIAgent.id)
                .where(
                    RoomMember.room_id == room_id,
                    RoomMember.member_type == MemberType.AI.value,
                    AIAgent.deleted_at.is_(None),
                )
                .order_by(RoomMember.created_at)
            )
            agents = result.scalars().all()
        return [to_agent_profile(agent) for agent in agents]

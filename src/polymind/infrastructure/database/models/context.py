"""Persisted per-(room, agent) conversation context."""

from typing import Any
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from polymind.infrastructure.database.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AgentConversationContext(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Snapshot of what one agent remembers of one room.

    Written by upsert on (room_id, agent_id) after every completed turn.
    """

    __tablename__ = "agent_conversation_contexts"
    __table_args__ = (
        UniqueConstraint("room_id", "agent_id", name="uq_agent_context_room_agent"),
    )

    room_id: Mapped[UUID] = mapped_column(
        ForeignKey("chat_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    agent_id: Mapped[UUID] = mapped_column(
        ForeignKey("ai_agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # [{"role": "user", "content": "..."}, ...]
    context_messages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB,
        nullable=False,
        default=list,
    )
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

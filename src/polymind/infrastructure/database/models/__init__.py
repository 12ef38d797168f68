"""SQLAlchemy ORM models."""

from polymind.infrastructure.database.models.agent import AIAgent
from polymind.infrastructure.database.models.base import Base, TimestampMixin
from polymind.infrastructure.database.models.context import AgentConversationContext
from polymind.infrastructure.database.models.room import (
    ChatMessage,
    ChatRoom,
    MemberType,
    RoomMember,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "AIAgent",
    "AgentConversationContext",
    "ChatMessage",
    "ChatRoom",
    "MemberType",
    "RoomMember",
]

"""Chat room, membership and message models."""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from polymind.infrastructure.database.models.agent import AIAgent
from polymind.infrastructure.database.models.base import (
    Base,
    SoftDeleteMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)


class MemberType(str, Enum):
    HUMAN = "human"
    AI = "ai"


class ChatRoom(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "chat_rooms"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    members: Mapped[list["RoomMember"]] = relationship(
        "RoomMember",
        back_populates="room",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ChatRoom {self.name}>"


class RoomMember(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "room_members"

    room_id: Mapped[UUID] = mapped_column(
        ForeignKey("chat_rooms.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    member_type: Mapped[str] = mapped_column(String(10), nullable=False)
    # Users live in the auth service; only agents are referenced here
    user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    agent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("ai_agents.id", ondelete="CASCADE"),
        nullable=True,
    )

    room: Mapped[ChatRoom] = relationship("ChatRoom", back_populates="members")
    agent: Mapped[AIAgent | None] = relationship("AIAgent", lazy="joined")


class ChatMessage(Base, UUIDPrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_room_created", "room_id", "created_at"),)

    room_id: Mapped[UUID] = mapped_column(
        ForeignKey("chat_rooms.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_type: Mapped[str] = mapped_column(String(10), nullable=False)
    sender_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    sender_agent_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("ai_agents.id", ondelete="SET NULL"),
        nullable=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    mentions: Mapped[list[UUID]] = mapped_column(
        ARRAY(PG_UUID(as_uuid=True)),
        nullable=False,
        default=list,
    )

    def __repr__(self) -> str:
        return f"<ChatMessage {self.sender_type} in {self.room_id}>"

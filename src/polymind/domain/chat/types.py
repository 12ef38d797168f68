"""Chat domain types.

Plain dataclasses shared by the orchestrator, the context manager and the
persistence/notification adapters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from polymind.infrastructure.llm.types import CanonicalMessage, CredentialOverride


class ChatMode(str, Enum):
    NORMAL = "normal"
    SEARCH = "search"
    DEEP_THINK = "deep_think"


class SenderType(str, Enum):
    HUMAN = "human"
    AI = "ai"


class NotificationTopic(str, Enum):
    TYPING = "message:ai:typing"
    DELTA = "message:ai:delta"
    COMPLETE = "message:ai:complete"
    ERROR = "message:ai:error"


class AgentTurnState(str, Enum):
    IDLE = "idle"
    DISPATCHED = "dispatched"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AgentTurnState.COMPLETED, AgentTurnState.FAILED)


@dataclass(frozen=True)
class AgentProfile:
    """An AI member of a room, with its vendor settings."""

    id: UUID
    display_name: str
    provider: str
    model_name: str
    system_prompt: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2048
    api_key: str | None = None
    api_endpoint: str | None = None

    def credential_override(self) -> CredentialOverride:
        return CredentialOverride(api_key=self.api_key, endpoint=self.api_endpoint)


@dataclass(frozen=True)
class HistoryMessage:
    """A persisted room message as seen by the context manager."""

    sender_type: SenderType
    content: str
    created_at: datetime
    sender_agent_id: UUID | None = None


@dataclass
class ConversationContext:
    room_id: UUID
    agent_id: UUID
    messages: list[CanonicalMessage]
    system_prompt: str | None = None
    token_count: int = 0


@dataclass
class StoredContext:
    """Raw persisted context row; ``messages`` is untrusted JSON."""

    messages: Any
    token_count: int = 0


@dataclass
class AgentTurnTask:
    """One agent's attempt to answer one human message. Never persisted."""

    room_id: UUID
    agent_id: UUID
    agent_name: str
    provider: str
    id: UUID = field(default_factory=uuid4)
    state: AgentTurnState = AgentTurnState.IDLE
    message_id: UUID | None = None
    content: str = ""
    error: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def advance(self, state: AgentTurnState) -> None:
        if self.state.is_terminal:
            raise RuntimeError(f"turn already finished as {self.state.value}")
        self.state = state
        if state.is_terminal:
            self.finished_at = datetime.now(UTC)


@dataclass
class ChatDispatchResult:
    """Outcome of one fan-out.

    A dispatch where some turns failed and others completed is a partial
    failure; failed turns never abort their siblings.
    """

    room_id: UUID
    turns: list[AgentTurnTask] = field(default_factory=list)

    @property
    def completed(self) -> list[AgentTurnTask]:
        return [t for t in self.turns if t.state == AgentTurnState.COMPLETED]

    @property
    def failed(self) -> list[AgentTurnTask]:
        return [t for t in self.turns if t.state == AgentTurnState.FAILED]

    @property
    def partial_failure(self) -> bool:
        return bool(self.completed) and bool(self.failed)

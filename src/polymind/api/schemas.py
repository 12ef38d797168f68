"""Request and response schemas for the HTTP API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from polymind.domain.chat.types import AgentTurnTask, ChatMode


class ProviderInfoResponse(BaseModel):
    name: str
    display_name: str
    models: list[str]


class ValidateCredentialRequest(BaseModel):
    provider: str = Field(..., min_length=1, max_length=50)
    api_key: str | None = Field(default=None, max_length=500)
    api_endpoint: str | None = Field(default=None, max_length=500)


class ValidateCredentialResponse(BaseModel):
    provider: str
    valid: bool


class ModelListResponse(BaseModel):
    provider: str
    models: list[str]


class ChatDispatchRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)
    sender_id: UUID
    mentions: list[UUID] = Field(default_factory=list)
    mode: ChatMode = ChatMode.NORMAL


class ChatDispatchResponse(BaseModel):
    room_id: UUID
    accepted: bool
    agents: int


class AgentTurnResponse(BaseModel):
    id: UUID
    room_id: UUID
    agent_id: UUID
    agent_name: str
    provider: str
    state: str
    message_id: UUID | None
    started_at: datetime

    @classmethod
    def from_task(cls, task: AgentTurnTask) -> "AgentTurnResponse":
        return cls(
            id=task.id,
            room_id=task.room_id,
            agent_id=task.agent_id,
            agent_name=task.agent_name,
            provider=task.provider,
            state=task.state.value,
            message_id=task.message_id,
            started_at=task.started_at,
        )

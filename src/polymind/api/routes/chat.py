"""Chat dispatch endpoints.

Dispatch returns 202 immediately; agent output reaches clients through
room notifications while the fan-out runs in the background.
"""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Request, status

from polymind.api.deps import OrchestratorDep
from polymind.api.ratelimit import RATE_LIMIT_CHAT, limiter
from polymind.api.schemas import AgentTurnResponse, ChatDispatchRequest, ChatDispatchResponse

router = APIRouter(prefix="/rooms", tags=["Chat"])


@router.post(
    "/{room_id}/chat",
    response_model=ChatDispatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(RATE_LIMIT_CHAT)
async def dispatch_chat(
    request: Request,
    room_id: UUID,
    body: ChatDispatchRequest,
    background_tasks: BackgroundTasks,
    orchestrator: OrchestratorDep,
) -> ChatDispatchResponse:
    _ = request
    mentions = list(dict.fromkeys(body.mentions))
    if mentions:
        background_tasks.add_task(
            orchestrator.process_chat,
            room_id,
            body.content,
            body.sender_id,
            mentions,
            body.mode,
        )
    return ChatDispatchResponse(room_id=room_id, accepted=bool(mentions), agents=len(mentions))


@router.get("/{room_id}/turns", response_model=list[AgentTurnResponse])
async def list_active_turns(room_id: UUID, orchestrator: OrchestratorDep) -> list[AgentTurnResponse]:
    return [AgentTurnResponse.from_task(task) for task in orchestrator.active_turns(room_id)]

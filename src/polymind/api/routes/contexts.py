"""Conversation context management."""

from uuid import UUID

from fastapi import APIRouter, Response, status

from polymind.api.deps import ContextManagerDep

router = APIRouter(prefix="/rooms", tags=["Context"])


@router.delete(
    "/{room_id}/agents/{agent_id}/context",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def reset_context(
    room_id: UUID,
    agent_id: UUID,
    context_manager: ContextManagerDep,
) -> Response:
    """Make the agent forget the room; 404 if it remembers nothing."""
    await context_manager.reset_context(room_id, agent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

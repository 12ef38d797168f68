"""FastAPI dependencies for API routes.

Long-lived collaborators are built once in the application lifespan and
kept on ``app.state``; these helpers hand them to routes.
"""

from typing import Annotated

from fastapi import Depends, Request

from polymind.domain.chat.context_manager import ContextManager
from polymind.domain.chat.orchestrator import ChatOrchestrator
from polymind.infrastructure.llm.registry import ProviderRegistry


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


def get_context_manager(request: Request) -> ContextManager:
    return request.app.state.context_manager


RegistryDep = Annotated[ProviderRegistry, Depends(get_registry)]
OrchestratorDep = Annotated[ChatOrchestrator, Depends(get_orchestrator)]
ContextManagerDep = Annotated[ContextManager, Depends(get_context_manager)]

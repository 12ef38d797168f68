"""Chat domain module.

Modules:
- orchestrator: fans a human message out to the mentioned agents
- context_manager: bounded per-(room, agent) conversation history
- prompts: search and deep-think prompt augmentation
- ports: storage, notification and search interfaces
"""

from polymind.domain.chat.context_manager import ContextManager
from polymind.domain.chat.orchestrator import ChatOrchestrator
from polymind.domain.chat.types import (
    AgentProfile,
    AgentTurnState,
    AgentTurnTask,
    ChatDispatchResult,
    ChatMode,
    ConversationContext,
    NotificationTopic,
)

__all__ = [
    "AgentProfile",
    "AgentTurnState",
    "AgentTurnTask",
    "ChatDispatchResult",
    "ChatMode",
    "ChatOrchestrator",
    "ContextManager",
    "ConversationContext",
    "NotificationTopic",
]

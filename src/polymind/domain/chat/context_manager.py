"""Bounded per-(room, agent) conversation history."""

import json
from typing import Any
from uuid import UUID

from polymind.domain.chat.ports import ContextStore, MessageStore
from polymind.domain.chat.types import ConversationContext, SenderType
from polymind.infrastructure.llm.base import estimate_token_count
from polymind.infrastructure.llm.types import CanonicalMessage, ContentPart, Role, part_from_dict
from polymind.shared.concurrency import KeyedLock
from polymind.shared.exceptions import NotFoundError
from polymind.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_CONTEXT_MESSAGES = 20
DEFAULT_MAX_CONTEXT_TOKENS = 8000

_SENDER_ROLES = {
    SenderType.HUMAN: Role.USER,
    SenderType.AI: Role.ASSISTANT,
}


def _coerce_content(content: Any) -> str | list[ContentPart] | None:
    if isinstance(content, str):
        return content
    if isinstance(content, list) and content:
        parts = [part_from_dict(item) for item in content]
        if all(part is not None for part in parts):
            return [part for part in parts if part is not None]
    return None


def coerce_snapshot_entry(entry: Any) -> CanonicalMessage:
    """Turn one persisted entry into a message, never raising.

    Anything that is not a well-formed ``{"role", "content"}`` object is
    kept as user text so a corrupt row degrades the prompt instead of
    breaking the turn. Content may be a string or a list of serialized parts.
    """
    if isinstance(entry, dict):
        content = _coerce_content(entry.get("content"))
        role = entry.get("role")
        if content is not None:
            if role in (Role.USER.value, Role.ASSISTANT.value, Role.SYSTEM.value, Role.TOOL.value):
                return CanonicalMessage(role=Role(role), content=content)
            return CanonicalMessage(role=Role.USER, content=content)
    if isinstance(entry, str):
        return CanonicalMessage(role=Role.USER, content=entry)
    return CanonicalMessage(role=Role.USER, content=json.dumps(entry, ensure_ascii=False, default=str))


class ContextManager:
    """Loads, truncates and persists conversation context.

    Writes for one (room, agent) pair are serialized inside this process;
    across processes the stored row is last-writer-wins.
    """

    def __init__(
        self,
        context_store: ContextStore,
        message_store: MessageStore,
        *,
        max_messages: int = DEFAULT_MAX_CONTEXT_MESSAGES,
        max_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
        locks: KeyedLock | None = None,
    ) -> None:
        self.context_store = context_store
        self.message_store = message_store
        self.max_messages = max_messages
        self.max_tokens = max_tokens
        self._locks = locks or KeyedLock()

    def estimate_token_count(self, messages: list[CanonicalMessage]) -> int:
        return estimate_token_count(messages)

    async def get_context(
        self,
        room_id: UUID,
        agent_id: UUID,
        system_prompt: str | None = None,
    ) -> ConversationContext:
        """Saved snapshot if there is one, else the room's recent history.

        Messages are always in chronological order.
        """
        stored = await self.context_store.get(room_id, agent_id)
        if stored is not None:
            raw = stored.messages if isinstance(stored.messages, list) else [stored.messages]
            messages = [coerce_snapshot_entry(entry) for entry in raw]
            return ConversationContext(
                room_id=room_id,
                agent_id=agent_id,
                messages=messages,
                system_prompt=system_prompt,
                token_count=stored.token_count or estimate_token_count(messages),
            )

        history = await self.message_store.recent_messages(room_id, self.max_messages)
        # Stores return newest first
        messages = [
            CanonicalMessage(role=_SENDER_ROLES[item.sender_type], content=item.content)
            for item in reversed(history)
            if item.content
        ]
        return ConversationContext(
            room_id=room_id,
            agent_id=agent_id,
            messages=messages,
            system_prompt=system_prompt,
            token_count=estimate_token_count(messages),
        )

    def truncate(self, messages: list[CanonicalMessage]) -> list[CanonicalMessage]:
        """Drop the oldest messages when the estimate exceeds the budget."""
        if estimate_token_count(messages) <= self.max_tokens:
            return messages
        return messages[-self.max_messages :]

    async def save_context(
        self,
        room_id: UUID,
        agent_id: UUID,
        messages: list[CanonicalMessage],
        latest_reply: str,
    ) -> ConversationContext:
        """Append the agent's reply and upsert the (room, agent) row."""
        updated = [*messages, CanonicalMessage(role=Role.ASSISTANT, content=latest_reply)]
        before = len(updated)
        updated = self.truncate(updated)
        token_count = estimate_token_count(updated)

        async with self._locks.hold((room_id, agent_id)):
            await self.context_store.upsert(
                room_id,
                agent_id,
                [message.to_dict() for message in updated],
                token_count,
            )

        if len(updated) < before:
            logger.info(
                "context_truncated",
                room_id=str(room_id),
                agent_id=str(agent_id),
                dropped=before - len(updated),
                token_count=token_count,
            )
        return ConversationContext(
            room_id=room_id,
            agent_id=agent_id,
            messages=updated,
            token_count=token_count,
        )

    async def reset_context(self, room_id: UUID, agent_id: UUID) -> None:
        """Forget the saved context.

        Raises:
            NotFoundError: no context is stored for the pair
        """
        async with self._locks.hold((room_id, agent_id)):
            deleted = await self.context_store.delete(room_id, agent_id)
        if not deleted:
            raise NotFoundError("Conversation context", f"{room_id}/{agent_id}")
        logger.info("context_reset", room_id=str(room_id), agent_id=str(agent_id))

"""Multi-agent chat orchestration.

One human message fans out into one independent streamed generation per
mentioned agent. Turns run concurrently; a failing turn is converted into a
fallback message plus an error notification and never cancels its siblings.

Per-turn lifecycle::

    IDLE -> DISPATCHED (placeholder saved, typing notified)
         -> STREAMING (deltas forwarded as they arrive)
         -> COMPLETED | FAILED

There are no automatic retries; a user retries by resending the message.
"""

import asyncio
import copy
import time
from collections.abc import Iterable
from uuid import UUID

import structlog

from polymind.domain.chat.context_manager import ContextManager
from polymind.domain.chat.ports import MessageStore, Notifier, RoomDirectory, SearchPort
from polymind.domain.chat.prompts import DEEP_THINK_DIRECTIVE, FALLBACK_REPLY, build_search_prompt
from polymind.domain.chat.types import (
    AgentProfile,
    AgentTurnState,
    AgentTurnTask,
    ChatDispatchResult,
    ChatMode,
    NotificationTopic,
)
from polymind.infrastructure.llm.base import BaseProviderAdapter
from polymind.infrastructure.llm.registry import ProviderRegistry
from polymind.infrastructure.llm.types import (
    CanonicalMessage,
    GenerationRequest,
    Role,
    StreamCallbacks,
    StreamDelta,
)
from polymind.infrastructure.search.base import SearchResult
from polymind.observability.metrics import AGENT_TURNS_IN_PROGRESS, record_agent_turn
from polymind.shared.exceptions import ConfigurationError, PolymindError
from polymind.shared.logging import get_logger, scrub

logger = get_logger(__name__)

MESSAGE_PREVIEW_CHARS = 50


class ChatOrchestrator:
    """Fans a human message out to the agents it mentions."""

    def __init__(
        self,
        registry: ProviderRegistry,
        context_manager: ContextManager,
        message_store: MessageStore,
        room_directory: RoomDirectory,
        notifier: Notifier,
        search: SearchPort | None = None,
        *,
        search_top_k: int = 5,
    ) -> None:
        self.registry = registry
        self.context_manager = context_manager
        self.message_store = message_store
        self.room_directory = room_directory
        self.notifier = notifier
        self.search = search
        self.search_top_k = search_top_k
        self._active: dict[UUID, AgentTurnTask] = {}

    def active_turns(self, room_id: UUID | None = None) -> list[AgentTurnTask]:
        """Snapshots of turns that have not reached a terminal state."""
        return [
            copy.copy(task)
            for task in self._active.values()
            if room_id is None or task.room_id == room_id
        ]

    async def process_chat(
        self,
        room_id: UUID,
        human_message: str,
        sender_id: UUID,
        mentions: Iterable[UUID],
        mode: ChatMode = ChatMode.NORMAL,
        cancellation: asyncio.Event | None = None,
    ) -> ChatDispatchResult:
        """Run one turn per mentioned agent and wait for all of them.

        Without explicit mentions no agent answers. ``cancellation`` is
        handed to the adapters, which currently run streams to completion.
        """
        result = ChatDispatchResult(room_id=room_id)
        wanted = set(mentions)
        if not wanted:
            logger.debug("chat_no_mentions", room_id=str(room_id))
            return result

        members = await self.room_directory.list_agent_members(room_id)
        agents = [agent for agent in members if agent.id in wanted]
        if not agents:
            logger.info(
                "chat_mentions_unmatched",
                room_id=str(room_id),
                mentioned=len(wanted),
            )
            return result

        mode = ChatMode(mode)
        logger.info(
            "chat_dispatched",
            room_id=str(room_id),
            sender_id=str(sender_id),
            agents=len(agents),
            mode=mode.value,
            message_preview=human_message[:MESSAGE_PREVIEW_CHARS],
        )

        for agent in agents:
            result.turns.append(
                AgentTurnTask(
                    room_id=room_id,
                    agent_id=agent.id,
                    agent_name=agent.display_name,
                    provider=agent.provider,
                )
            )

        outcomes = await asyncio.gather(
            *(
                self._run_turn(task, agent, human_message, mode, cancellation)
                for task, agent in zip(result.turns, agents, strict=True)
            ),
            return_exceptions=True,
        )
        for task, outcome in zip(result.turns, outcomes, strict=True):
            if isinstance(outcome, BaseException) and not task.state.is_terminal:
                task.error = f"{type(outcome).__name__}: {outcome}"
                task.advance(AgentTurnState.FAILED)

        logger.info(
            "chat_finished",
            room_id=str(room_id),
            completed=len(result.completed),
            failed=len(result.failed),
        )
        return result

    # ----- one agent turn -----

    async def _run_turn(
        self,
        task: AgentTurnTask,
        agent: AgentProfile,
        human_message: str,
        mode: ChatMode,
        cancellation: asyncio.Event | None,
    ) -> None:
        log = logger.bind(
            room_id=str(task.room_id),
            agent_id=str(agent.id),
            provider=agent.provider,
        )
        self._active[task.id] = task
        AGENT_TURNS_IN_PROGRESS.inc()
        started = time.monotonic()
        adapter: BaseProviderAdapter | None = None
        owns_adapter = False
        try:
            try:
                adapter = self.registry.resolve(agent.provider, agent.credential_override())
                owns_adapter = not self.registry.is_shared(adapter)
                self._check_ready(agent, adapter)
            except ConfigurationError as exc:
                await self._fail(task, agent, human_message, exc, adapter)
                return

            context = await self.context_manager.get_context(
                task.room_id, agent.id, agent.system_prompt
            )
            history = [
                m
                for m in self._without_echo(context.messages, human_message)
                if m.role != Role.SYSTEM
            ]
            conversation = [*history, CanonicalMessage(role=Role.USER, content=human_message)]

            prompt = human_message
            if mode == ChatMode.SEARCH:
                prompt = build_search_prompt(human_message, await self._search(human_message, log))

            request = GenerationRequest(
                model=agent.model_name,
                messages=self._build_messages(agent, history, prompt, mode),
                temperature=agent.temperature,
                max_output_tokens=agent.max_tokens,
                stream=True,
            )

            task.message_id = await self.message_store.create_agent_message(
                task.room_id, agent.id, ""
            )
            task.advance(AgentTurnState.DISPATCHED)
            await self.notifier.notify(
                task.room_id,
                NotificationTopic.TYPING,
                {
                    "messageId": str(task.message_id),
                    "agentId": str(agent.id),
                    "agentName": agent.display_name,
                    "isTyping": True,
                },
            )

            callbacks = self._callbacks(task, agent, human_message, conversation, adapter)
            await adapter.stream_message(request, callbacks, cancellation=cancellation)
        except Exception as exc:
            # Store or notifier failure; the turn still has to end
            log.exception("agent_turn_crashed", error=type(exc).__name__)
            if not task.state.is_terminal:
                await self._fail(task, agent, human_message, exc, adapter)
        finally:
            if owns_adapter and adapter is not None:
                await adapter.aclose()
            self._active.pop(task.id, None)
            AGENT_TURNS_IN_PROGRESS.dec()
            outcome = task.state.value if task.state.is_terminal else AgentTurnState.FAILED.value
            record_agent_turn(agent.provider, outcome, time.monotonic() - started)

    def _callbacks(
        self,
        task: AgentTurnTask,
        agent: AgentProfile,
        human_message: str,
        conversation: list[CanonicalMessage],
        adapter: BaseProviderAdapter,
    ) -> StreamCallbacks:
        async def on_delta(delta: StreamDelta) -> None:
            if task.state == AgentTurnState.DISPATCHED:
                task.advance(AgentTurnState.STREAMING)
            task.content += delta.content
            await self.notifier.notify(
                task.room_id,
                NotificationTopic.DELTA,
                {
                    "messageId": str(task.message_id),
                    "agentId": str(agent.id),
                    "chunk": delta.content,
                    "isTyping": True,
                },
            )

        async def on_complete(text: str) -> None:
            assert task.message_id is not None
            await self.message_store.update_content(task.message_id, text)
            task.content = text
            task.advance(AgentTurnState.COMPLETED)
            await self.notifier.notify(
                task.room_id,
                NotificationTopic.COMPLETE,
                {
                    "messageId": str(task.message_id),
                    "agentId": str(agent.id),
                    "content": text,
                    "isTyping": False,
                },
            )
            await self.context_manager.save_context(task.room_id, agent.id, conversation, text)
            logger.info(
                "agent_turn_completed",
                room_id=str(task.room_id),
                agent_id=str(agent.id),
                provider=agent.provider,
                chars=len(text),
            )

        async def on_error(exc: Exception) -> None:
            await self._fail(task, agent, human_message, exc, adapter)

        return StreamCallbacks(on_delta=on_delta, on_complete=on_complete, on_error=on_error)

    async def _fail(
        self,
        task: AgentTurnTask,
        agent: AgentProfile,
        human_message: str,
        exc: Exception,
        adapter: BaseProviderAdapter | None,
    ) -> None:
        cause = exc.message if isinstance(exc, PolymindError) else str(exc) or type(exc).__name__
        description = scrub(
            f"Agent '{agent.display_name}' ({agent.id}) in room {task.room_id} failed: {cause}",
            agent.api_key,
            adapter.credential.api_key if adapter is not None else None,
            adapter.credential.secret_key if adapter is not None else None,
        )
        task.error = description
        if not task.state.is_terminal:
            task.advance(AgentTurnState.FAILED)

        logger.warning(
            "agent_turn_failed",
            room_id=str(task.room_id),
            agent_id=str(agent.id),
            provider=agent.provider,
            error_type=type(exc).__name__,
            error=description,
            message_preview=human_message[:MESSAGE_PREVIEW_CHARS],
        )

        if task.message_id is not None:
            await self.message_store.update_content(task.message_id, FALLBACK_REPLY)
        await self.notifier.notify(
            task.room_id,
            NotificationTopic.ERROR,
            {
                "messageId": str(task.message_id) if task.message_id else None,
                "agentId": str(agent.id),
                "content": FALLBACK_REPLY if task.message_id else None,
                "error": description,
                "isTyping": False,
            },
        )

    # ----- prompt assembly -----

    @staticmethod
    def _check_ready(agent: AgentProfile, adapter: BaseProviderAdapter) -> None:
        if not (adapter.credential.api_key or "").strip():
            raise ConfigurationError(
                f"No API key configured for provider '{agent.provider}'",
                details={"agent_id": str(agent.id), "provider": agent.provider},
            )
        if not (agent.model_name or "").strip():
            raise ConfigurationError(
                f"Agent '{agent.display_name}' has no model configured",
                details={"agent_id": str(agent.id), "provider": agent.provider},
            )

    @staticmethod
    def _without_echo(
        history: list[CanonicalMessage], human_message: str
    ) -> list[CanonicalMessage]:
        # History rebuilt from room messages already ends with the new message
        if history and history[-1].role == Role.USER and history[-1].text == human_message:
            return history[:-1]
        return history

    @staticmethod
    def _build_messages(
        agent: AgentProfile,
        history: list[CanonicalMessage],
        prompt: str,
        mode: ChatMode,
    ) -> list[CanonicalMessage]:
        messages: list[CanonicalMessage] = []
        if agent.system_prompt:
            messages.append(CanonicalMessage(role=Role.SYSTEM, content=agent.system_prompt))
        if mode == ChatMode.DEEP_THINK:
            messages.append(CanonicalMessage(role=Role.SYSTEM, content=DEEP_THINK_DIRECTIVE))
        messages.extend(history)
        messages.append(CanonicalMessage(role=Role.USER, content=prompt))
        return messages

    async def _search(
        self, query: str, log: structlog.stdlib.BoundLogger
    ) -> list[SearchResult]:
        if self.search is None:
            return []
        try:
            results = await self.search.search(query, self.search_top_k)
        except Exception as exc:
            log.warning("search_failed", error=type(exc).__name__)
            return []
        log.debug("search_results", count=len(results))
        return list(results)
